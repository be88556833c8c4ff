"""Request field helpers shared by the JSON endpoints."""
import re

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def get_trimmed_string(value) -> str:
    if not isinstance(value, str):
        return ''
    return value.strip()


def get_optional_trimmed_string(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def is_valid_email(value: str) -> bool:
    return bool(value) and bool(EMAIL_PATTERN.match(value))


def get_positive_int(value):
    """Return `value` as a positive int, or None when it is not one."""
    if isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def get_object(value) -> dict:
    return value if isinstance(value, dict) else {}
