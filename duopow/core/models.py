from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from web3 import Web3


@dataclass(frozen=True)
class Address:
    """20-byte account address; equality is byte-wise, never textual."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != 20:
            raise ValueError(f"address must be 20 bytes, got {len(self.raw)}")

    @classmethod
    def from_hex(cls, text: str) -> "Address":
        return cls(bytes.fromhex(text[2:] if text[:2].lower() == "0x" else text))

    @property
    def checksum(self) -> str:
        return Web3.to_checksum_address("0x" + self.raw.hex())

    @property
    def is_zero(self) -> bool:
        return self.raw == bytes(20)

    def __str__(self) -> str:
        return self.checksum


ZERO_ADDRESS = Address(bytes(20))


@dataclass(frozen=True)
class Identity:
    external_id: int
    handle: str
    bio: str
    total_xp: int
    name: str = ""
    streak: int = 0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Identity":
        total_xp = payload.get("totalXp")
        if total_xp is None:
            courses = payload.get("courses") or []
            total_xp = sum(int(course.get("xp") or 0) for course in courses if isinstance(course, dict))
        return cls(
            external_id=int(payload["id"]),
            handle=str(payload.get("username") or ""),
            bio=str(payload.get("bio") or ""),
            total_xp=int(total_xp),
            name=str(payload.get("name") or ""),
            streak=int(payload.get("streak") or 0),
        )


@dataclass(frozen=True)
class Registration:
    """On-chain record for one external id."""

    address: Address
    xp_reported: int

    @property
    def registered(self) -> bool:
        return not self.address.is_zero


@dataclass(frozen=True)
class SubmittedTx:
    """A write accepted by the node. Not a guarantee of inclusion."""

    operation: str
    tx_hash: str
    external_id: Optional[int] = None
