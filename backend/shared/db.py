import os
from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

# Tables read or written by the notification pipeline
PREFERENCES_TABLE = "email_preferences"
TRANSACTIONS_TABLE = "transactions"
CATEGORIES_TABLE = "categories"
USERS_TABLE = "user_profiles"


def get_supabase_client() -> Client:
    """Create a Supabase client (service role)."""
    url: str | None = os.getenv("SUPABASE_URL")
    key: str | None = os.getenv("SUPABASE_SERVICE_KEY")

    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

    return create_client(url, key)
