import dataclasses
import itertools
from typing import Dict, List, Tuple

import jwt
import pytest

from duopow.core.errors import RemoteNotFound, RemoteTransportError
from duopow.core.messages import Messages
from duopow.core.models import ZERO_ADDRESS, Address, Identity, Registration, SubmittedTx

ALICE_ADDRESS = "0x1111111111111111111111111111111111111111"
OTHER_ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


def make_token(external_id, secret: str = "not-checked") -> str:
    return jwt.encode({"sub": str(external_id)}, secret, algorithm="HS256")


class FakeProfiles:
    """In-memory platform that records every call."""

    def __init__(self) -> None:
        self.identities: Dict[int, Identity] = {}
        self.xp: Dict[int, int] = {}
        self.calls: List[Tuple] = []
        self.failing = set()

    def add(self, identity: Identity, xp: int = None) -> Identity:
        self.identities[identity.external_id] = identity
        self.xp[identity.external_id] = identity.total_xp if xp is None else xp
        return identity

    def _check(self, name: str) -> None:
        if name in self.failing:
            raise RemoteTransportError(f"{name} unavailable")

    def calls_to(self, name: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == name]

    async def fetch_by_handle(self, handle: str) -> Identity:
        self.calls.append(("fetch_by_handle", handle))
        self._check("fetch_by_handle")
        for identity in self.identities.values():
            if identity.handle.lower() == handle.lower():
                return identity
        raise RemoteNotFound(handle)

    async def fetch_xp(self, external_id: int) -> int:
        self.calls.append(("fetch_xp", external_id))
        self._check("fetch_xp")
        if external_id not in self.xp:
            raise RemoteNotFound(str(external_id))
        return self.xp[external_id]

    async def fetch_by_id_authenticated(self, external_id: int, credential: str) -> Identity:
        self.calls.append(("fetch_by_id_authenticated", external_id, credential))
        self._check("fetch_by_id_authenticated")
        if external_id not in self.identities:
            raise RemoteNotFound(str(external_id))
        return self.identities[external_id]

    async def write_bio(self, external_id: int, credential: str, new_bio: str) -> None:
        self.calls.append(("write_bio", external_id, credential, new_bio))
        self._check("write_bio")
        self.identities[external_id] = dataclasses.replace(
            self.identities[external_id], bio=new_bio
        )

    async def close(self) -> None:
        self.calls.append(("close",))


class FakeRegistry:
    """In-memory registry contract; writes apply immediately."""

    def __init__(self) -> None:
        self.records: Dict[int, Registration] = {}
        self.calls: List[Tuple] = []
        self.failing = set()
        self._hashes = itertools.count(1)

    def set(self, external_id: int, address: str, xp: int) -> None:
        self.records[external_id] = Registration(Address.from_hex(address), xp)

    @property
    def writes(self) -> List[Tuple]:
        return [call for call in self.calls if call[0] != "lookup"]

    def _tx(self, operation: str, external_id: int) -> SubmittedTx:
        if operation in self.failing:
            raise RemoteTransportError(f"{operation} rejected")
        return SubmittedTx(operation, f"0x{next(self._hashes):064x}", external_id)

    async def lookup(self, external_id: int) -> Registration:
        self.calls.append(("lookup", external_id))
        if "lookup" in self.failing:
            raise RemoteTransportError("rpc down")
        return self.records.get(external_id, Registration(ZERO_ADDRESS, 0))

    async def register(self, external_id: int, address: Address, initial_xp: int) -> SubmittedTx:
        self.calls.append(("register", external_id, address, initial_xp))
        tx = self._tx("register", external_id)
        self.records[external_id] = Registration(address, initial_xp)
        return tx

    async def update_address(self, external_id: int, address: Address) -> SubmittedTx:
        self.calls.append(("update_address", external_id, address))
        tx = self._tx("update_address", external_id)
        previous = self.records[external_id]
        self.records[external_id] = Registration(address, previous.xp_reported)
        return tx

    async def report_xp(self, external_id: int, new_total: int) -> SubmittedTx:
        self.calls.append(("report_xp", external_id, new_total))
        tx = self._tx("report_xp", external_id)
        previous = self.records.get(external_id, Registration(ZERO_ADDRESS, 0))
        assert new_total >= previous.xp_reported
        self.records[external_id] = Registration(previous.address, new_total)
        return tx

    async def unregister(self, external_id: int) -> SubmittedTx:
        self.calls.append(("unregister", external_id))
        tx = self._tx("unregister", external_id)
        self.records.pop(external_id, None)
        return tx


@pytest.fixture
def messages():
    return Messages()


@pytest.fixture
def profiles():
    fake = FakeProfiles()
    fake.add(
        Identity(
            external_id=42,
            handle="alice",
            bio=f"hi {ALICE_ADDRESS}",
            total_xp=500,
        )
    )
    fake.add(Identity(external_id=7, handle="bob", bio="learning french", total_xp=80))
    return fake


@pytest.fixture
def registry():
    return FakeRegistry()
