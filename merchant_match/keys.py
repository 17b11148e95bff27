"""Key normalization shared by every comparison in merchant-match."""

from __future__ import annotations

import math
import re
from typing import Any

NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def stringify(value: Any) -> str:
    """Render a cell value as text the way a spreadsheet user would type it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def safe_trim(value: Any) -> str:
    return stringify(value).strip()


def normalize_key(value: Any) -> str:
    """Lower-case and drop everything outside ``[a-z0-9]``.

    Total over any input: ``None`` and empty values give ``""``. Apply it to both
    sides of a comparison; never compare a normalized key with a raw string.
    """
    return NON_ALNUM_RE.sub("", stringify(value).lower())


def is_blank(value: Any) -> bool:
    return safe_trim(value) == ""
