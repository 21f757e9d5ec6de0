"""Reconciliation of off-chain XP and bio address with the on-chain registry."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .address import extract
from .errors import NoAddressLinked
from .locks import KeyedLocks
from .models import Address, Identity, Registration, SubmittedTx
from .profile_client import ProfileClient
from .registry import RegistryClient

log = logging.getLogger(__name__)


class RegistrationAction(str, Enum):
    REGISTERED = "registered"
    ADDRESS_UPDATED = "address_updated"
    ALREADY_REGISTERED = "already_registered"


class RewardAction(str, Enum):
    MINTED = "minted"
    NOTHING_TO_MINT = "nothing_to_mint"


@dataclass(frozen=True)
class Snapshot:
    """Off-chain and on-chain views read together for one pass."""

    identity: Identity
    off_chain_xp: int
    registration: Registration

    @property
    def delta(self) -> int:
        return max(0, self.off_chain_xp - self.registration.xp_reported)


@dataclass(frozen=True)
class CheckReport:
    snapshot: Snapshot
    bio_address: Address

    @property
    def handle(self) -> str:
        return self.snapshot.identity.handle

    @property
    def chain_address(self) -> Address:
        return self.snapshot.registration.address

    @property
    def addresses_match(self) -> bool:
        return self.bio_address == self.chain_address

    @property
    def delta(self) -> int:
        return self.snapshot.delta


@dataclass(frozen=True)
class RegistrationOutcome:
    action: RegistrationAction
    external_id: int
    address: Address
    xp: int
    previous_address: Optional[Address] = None
    tx: Optional[SubmittedTx] = None


@dataclass(frozen=True)
class RewardOutcome:
    action: RewardAction
    external_id: int
    off_chain_xp: int
    reported_xp: int
    tx: Optional[SubmittedTx] = None

    @property
    def minted(self) -> int:
        if self.action is not RewardAction.MINTED:
            return 0
        return self.off_chain_xp - self.reported_xp


class ReconciliationEngine:
    """Read-then-decide-then-write passes, one write at most per pass.

    The off-chain XP and the on-chain record are read concurrently and both
    awaited before any comparison. Writing passes for the same external id
    are serialised so two conversations cannot both decide to register.
    """

    def __init__(self, profiles: ProfileClient, registry: RegistryClient) -> None:
        self.profiles = profiles
        self.registry = registry
        self._id_locks = KeyedLocks()

    def _lock_for(self, external_id: int):
        return self._id_locks.hold(external_id)

    async def _read_both(self, identity: Identity) -> Snapshot:
        off_chain_xp, registration = await asyncio.gather(
            self.profiles.fetch_xp(identity.external_id),
            self.registry.lookup(identity.external_id),
        )
        return Snapshot(identity=identity, off_chain_xp=off_chain_xp, registration=registration)

    async def _resolve(self, handle: str) -> Tuple[Identity, Address]:
        identity = await self.profiles.fetch_by_handle(handle)
        address = extract(identity.bio)
        if address is None:
            raise NoAddressLinked(identity.handle or handle)
        return identity, address

    async def check(self, handle: str) -> CheckReport:
        identity, address = await self._resolve(handle)
        snapshot = await self._read_both(identity)
        return CheckReport(snapshot=snapshot, bio_address=address)

    async def register_or_update(self, handle: str) -> RegistrationOutcome:
        identity, address = await self._resolve(handle)
        external_id = identity.external_id
        async with self._lock_for(external_id):
            snapshot = await self._read_both(identity)
            current = snapshot.registration.address
            if current.is_zero:
                tx = await self.registry.register(external_id, address, snapshot.off_chain_xp)
                action = RegistrationAction.REGISTERED
            elif current != address:
                tx = await self.registry.update_address(external_id, address)
                action = RegistrationAction.ADDRESS_UPDATED
            else:
                tx = None
                action = RegistrationAction.ALREADY_REGISTERED
        log.info("register pass for %s (%s): %s", handle, external_id, action.value)
        return RegistrationOutcome(
            action=action,
            external_id=external_id,
            address=address,
            xp=snapshot.off_chain_xp,
            previous_address=None if current.is_zero else current,
            tx=tx,
        )

    async def update_rewards(self, handle: str) -> RewardOutcome:
        identity = await self.profiles.fetch_by_handle(handle)
        external_id = identity.external_id
        async with self._lock_for(external_id):
            snapshot = await self._read_both(identity)
            reported = snapshot.registration.xp_reported
            tx = None
            if snapshot.off_chain_xp <= reported:
                action = RewardAction.NOTHING_TO_MINT
            else:
                tx = await self.registry.report_xp(external_id, snapshot.off_chain_xp)
                action = RewardAction.MINTED
        log.info("reward pass for %s (%s): %s", handle, external_id, action.value)
        return RewardOutcome(
            action=action,
            external_id=external_id,
            off_chain_xp=snapshot.off_chain_xp,
            reported_xp=reported,
            tx=tx,
        )

    async def unregister(self, handle: str) -> SubmittedTx:
        identity = await self.profiles.fetch_by_handle(handle)
        async with self._lock_for(identity.external_id):
            return await self.registry.unregister(identity.external_id)
