"""
Input validation helpers shared by the alert store and the CLI.
"""

import re
from typing import Iterable, Optional, Union

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
EMAIL_SEPARATORS = re.compile(r"[\s,;]+")


def is_valid_email(address: str) -> bool:
    return bool(EMAIL_PATTERN.match(address))


def parse_email_list(raw: Optional[Union[str, Iterable[str]]]) -> tuple[list[str], list[str]]:
    """
    Split an email list on whitespace, commas or semicolons.

    Args:
        raw: Free-text list or an iterable of addresses

    Returns:
        (valid, invalid) address lists, duplicates removed, order kept
    """
    if not raw:
        return [], []

    if isinstance(raw, str):
        parts = EMAIL_SEPARATORS.split(raw)
    else:
        parts = []
        for item in raw:
            parts.extend(EMAIL_SEPARATORS.split(str(item)))

    valid: list[str] = []
    invalid: list[str] = []
    for part in parts:
        address = part.strip()
        if not address:
            continue
        target = valid if is_valid_email(address) else invalid
        if address not in target:
            target.append(address)
    return valid, invalid


def parse_id_list(raw: Optional[Union[str, Iterable]]) -> list[int]:
    """Parse user ids from a comma separated string or an iterable."""
    if not raw:
        return []
    items = raw.split(",") if isinstance(raw, str) else raw
    ids = []
    for item in items:
        text = str(item).strip()
        if text.isdigit() and int(text) not in ids:
            ids.append(int(text))
    return ids
