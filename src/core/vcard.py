"""Minimal vCard 3.0 handling for contact exchange."""

from __future__ import annotations

import re
from typing import Optional

_TEL_LINE = re.compile(r"^TEL[^:]*:(?P<number>.+)$", re.IGNORECASE | re.MULTILINE)
_FN_LINE = re.compile(r"^FN:(?P<name>.+)$", re.IGNORECASE | re.MULTILINE)


def build_vcard(phone_number: str, first_name: str, last_name: str = "") -> str:
    full_name = f"{first_name} {last_name}".strip() or phone_number
    return "\n".join(
        [
            "BEGIN:VCARD",
            "VERSION:3.0",
            f"N:{last_name};{first_name};;;",
            f"FN:{full_name}",
            f"TEL;TYPE=CELL:{phone_number}",
            "END:VCARD",
        ]
    )


def parse_phone(vcard: str) -> Optional[str]:
    """First TEL value with formatting stripped, keeping a leading '+'."""

    match = _TEL_LINE.search(vcard or "")
    if match is None:
        return None
    raw = match.group("number").strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return None
    return f"+{digits}" if raw.startswith("+") else digits


def parse_name(vcard: str) -> Optional[str]:
    match = _FN_LINE.search(vcard or "")
    if match is None:
        return None
    return match.group("name").strip() or None
