from __future__ import annotations

from typing import Optional, Tuple


def canonicalize_number(value: Optional[object]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    if text.lower().startswith("tel:"):
        text = text[4:].strip()

    digits = [char for char in text if char.isdigit()]
    if digits:
        prefix = "+" if text.startswith("+") else ""
        return prefix + "".join(digits)

    # Short codes and alphanumeric sender ids ("BANK-ALERT") are kept verbatim.
    return text.lower() or None


def contact_pair(caller: str, receiver: str) -> Tuple[str, str]:
    """Order the two parties of an event so (A, B) and (B, A) aggregate together."""
    return (caller, receiver) if caller <= receiver else (receiver, caller)


def contact_pair_key(caller: str, receiver: str) -> str:
    low, high = contact_pair(caller, receiver)
    return f"{low}|{high}"
