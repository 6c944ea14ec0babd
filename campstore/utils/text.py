"""Text normalization helpers."""
from typing import Optional


def clean_text(value) -> Optional[str]:
    """Strip a value to a string, mapping blanks to None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None
