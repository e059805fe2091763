# MessagingApp/conf.py
from django.conf import settings

DEFAULTS = {
    "TYPING_TIMEOUT_SECONDS": 3.0,
    "DEFAULT_PAGE_SIZE": 50,
    "MAX_PAGE_SIZE": 200,
    "DELETED_PLACEHOLDER": "This message was deleted",
    "PREVIEW_LENGTH": 100,
}


def messaging_setting(name: str):
    """Reads MESSAGING[name] at call time so override_settings applies."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown messaging setting: {name}")
    return getattr(settings, "MESSAGING", {}).get(name, DEFAULTS[name])
