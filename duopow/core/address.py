"""Address parsing, extraction from bio text, and the bio-rewrite policy."""

from __future__ import annotations

import re
from typing import Optional

from web3 import Web3

from .errors import MalformedInput
from .models import Address

ADDRESS_PATTERN = re.compile(r"0x[0-9a-fA-F]{40}")
_FULL_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _checksum_ok(candidate: str) -> bool:
    digits = candidate[2:]
    if digits == digits.lower() or digits == digits.upper():
        return True
    return Web3.is_checksum_address(candidate)


def extract(text: Optional[str]) -> Optional[Address]:
    """Return the first valid address embedded in ``text``, if any."""
    if not text:
        return None
    for match in ADDRESS_PATTERN.finditer(text):
        candidate = match.group(0)
        if _checksum_ok(candidate):
            return Address.from_hex(candidate)
    return None


def parse_address(text: str) -> Address:
    candidate = (text or "").strip()
    if not _FULL_ADDRESS.match(candidate):
        raise MalformedInput(f"not an address: {candidate[:64]!r}")
    if not _checksum_ok(candidate):
        raise MalformedInput(f"bad address checksum: {candidate}")
    return Address.from_hex(candidate)


def _keep_first(text: str, replacement: str) -> str:
    seen = False

    def _substitute(match: "re.Match[str]") -> str:
        nonlocal seen
        if seen:
            return ""
        seen = True
        return replacement

    return ADDRESS_PATTERN.sub(_substitute, text)


def rewrite_bio(bio: str, address: Address) -> str:
    """Substitute the embedded address in ``bio`` or append one.

    The first embedded candidate is replaced by ``address`` and any further
    candidates are dropped, so the result always carries exactly one.
    """
    bio = bio or ""
    replacement = address.checksum
    if not ADDRESS_PATTERN.search(bio):
        if not bio or bio[-1].isspace():
            return f"{bio}{replacement}"
        return f"{bio} {replacement}"

    result = _keep_first(bio, replacement)
    # Dropping a candidate can splice its neighbours into a new one.
    while len(ADDRESS_PATTERN.findall(result)) > 1:
        result = _keep_first(result, replacement)
    return result
