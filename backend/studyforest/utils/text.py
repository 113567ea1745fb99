"""Text normalization applied to names at the store boundary."""

import unicodedata
from typing import Optional


def normalize_name(value) -> Optional[str]:
    """Return `value` as an NFC-normalized string, or None when empty.

    Emoji and habit names arrive from several clients that do not agree
    on composed vs decomposed forms; comparing NFC strings makes equal
    names compare equal in SQL.
    """
    if value is None:
        return None
    text = unicodedata.normalize("NFC", str(value))
    return text if text.strip() else None
