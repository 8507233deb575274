"""Helpers for reading configuration values whose env placeholders may be unresolved."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict, List, Optional


def get_config_section(source: Any, section: str) -> Dict:
    """Return a dictionary section from Config, SectionProxy, or plain dict objects."""
    if source is None:
        return {}

    getter = getattr(source, 'get', None)
    if callable(getter):
        candidate = getter(section, {})
        if isinstance(candidate, Mapping):
            return dict(candidate)

    return {}


def is_unset(value: Any) -> bool:
    """True for None, blank strings and ``${VAR}`` placeholders left by the loader."""
    if value is None:
        return True
    if isinstance(value, str):
        stripped = value.strip()
        return not stripped or (stripped.startswith('${') and stripped.endswith('}'))
    return False


def optional_str(value: Any, default: Optional[str] = None) -> Optional[str]:
    if is_unset(value):
        return default
    return str(value).strip()


def as_int(value: Any, default: int = 0) -> int:
    if is_unset(value):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def as_float(value: Any, default: float = 0.0) -> float:
    if is_unset(value):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_wallet_list(value: Any) -> List[str]:
    """Accept a YAML list or a comma/whitespace separated string of addresses.

    Order is preserved and repeated addresses are dropped.
    """
    if is_unset(value):
        return []
    if isinstance(value, (list, tuple)):
        raw = [str(item) for item in value if not is_unset(item)]
    else:
        raw = str(value).replace(',', ' ').split()

    wallets: List[str] = []
    seen = set()
    for item in raw:
        address = item.strip().strip('\'"[]')
        if not address:
            continue
        key = address.lower()
        if key in seen:
            continue
        seen.add(key)
        wallets.append(address)
    return wallets
