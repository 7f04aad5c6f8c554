"""Exceptions raised inside the notification pipeline."""


class NotificationError(Exception):
    """Base class for notification pipeline errors."""


class PreferenceValidationError(NotificationError):
    """A preference update contained unknown groups or invalid values."""


class UnknownUnsubscribeTypeError(NotificationError):
    """An unsubscribe request named an email class that does not exist."""

    def __init__(self, kind: str):
        super().__init__(f"Unknown unsubscribe type: {kind!r}")
        self.kind = kind


class UnknownTemplateError(NotificationError):
    """A send was requested against a template outside the registered set."""

    def __init__(self, template_name: str):
        super().__init__(f"Email template {template_name!r} is not registered")
        self.template_name = template_name
