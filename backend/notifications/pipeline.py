"""
Process-level wiring for the notification pipeline.

Builds each component once and hands it to the components that need it.
Nothing here is a module-level singleton; callers own the returned pipeline
and its lifecycle.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from notifications.digest_queue import DigestQueue
from notifications.dispatch import BackgroundDispatcher, notify_after_transaction_write
from notifications.email_sender import EmailGateway
from notifications.notification_engine import NotificationEngine
from notifications.preference_store import PreferenceStore, SupabasePreferenceBackend
from notifications.scheduler import NotificationScheduler
from shared.db import get_supabase_client
from shared.finance_data import SupabaseFinanceData


def print_transport(params: Dict[str, Any]) -> Dict[str, Any]:
    """Dry-run transport: print the email instead of sending it."""
    print(f"  [DRY RUN] Would send '{params['subject']}' to {params['to']}")
    return {"id": "dry-run"}


@dataclass
class NotificationPipeline:
    store: PreferenceStore
    gateway: EmailGateway
    engine: NotificationEngine
    scheduler: NotificationScheduler
    dispatcher: BackgroundDispatcher

    def after_transaction_write(self, transaction_id: str, user_id: str, category_name: str) -> None:
        """Hook for the transaction controller; returns without waiting on email."""
        notify_after_transaction_write(
            self.dispatcher, self.engine, transaction_id, user_id, category_name
        )

    def shutdown(self) -> None:
        if self.scheduler.is_running:
            self.scheduler.stop()
        self.dispatcher.shutdown(wait=True)


def build_pipeline(supabase: Optional[Any] = None, dry_run: bool = False) -> NotificationPipeline:
    """
    Construct every pipeline component from environment configuration.

    Raises:
        ValueError: Supabase settings missing (see shared.db)
    """
    supabase = supabase or get_supabase_client()
    finance = SupabaseFinanceData(supabase)
    store = PreferenceStore(SupabasePreferenceBackend(supabase))
    gateway = EmailGateway(transport=print_transport if dry_run else None)
    engine = NotificationEngine(store, gateway, finance, digest_queue=DigestQueue())
    scheduler = NotificationScheduler(engine, store, finance)

    return NotificationPipeline(
        store=store,
        gateway=gateway,
        engine=engine,
        scheduler=scheduler,
        dispatcher=BackgroundDispatcher(),
    )
