import logging
from typing import List, Optional

from .errors import DuopowError, NoAddressLinked, RemoteNotFound, RemoteTransportError
from .events import (
    COMMAND_DESCRIPTIONS,
    RECONCILE_COMMANDS,
    Command,
    CommandEvent,
    Event,
    TextEvent,
    parse_event,
)
from .linking import LinkingFlow
from .messages import Messages
from .profile_client import ProfileClient
from .reconcile import (
    ReconciliationEngine,
    RegistrationAction,
    RewardAction,
)
from .registry import RegistryClient
from .sessions import Start, SessionDirectory

log = logging.getLogger(__name__)


class Assistant:
    """Routes conversational events to the linking flow or the engine.

    A recognised command other than ``/cancel`` or ``/help`` arriving
    mid-flow cancels the flow and then runs from the start.
    """

    def __init__(
        self,
        *,
        profiles: ProfileClient,
        registry: RegistryClient,
        sessions: Optional[SessionDirectory] = None,
        messages: Optional[Messages] = None,
        flow: Optional[LinkingFlow] = None,
        engine: Optional[ReconciliationEngine] = None,
    ) -> None:
        self.profiles = profiles
        self.registry = registry
        self.sessions = sessions if sessions is not None else SessionDirectory()
        self.messages = messages or Messages()
        self.flow = flow or LinkingFlow(profiles, self.messages)
        self.engine = engine or ReconciliationEngine(profiles, registry)

    async def close(self) -> None:
        await self.profiles.close()

    def help_text(self) -> str:
        lines = [f"/{command.value} - {text}" for command, text in COMMAND_DESCRIPTIONS.items()]
        return self.messages.get("help", commands="\n".join(lines))

    async def handle_message(self, conversation_id: str, message: str) -> Optional[str]:
        if not message or not message.strip():
            return None
        return await self.handle_event(conversation_id, parse_event(message))

    async def handle_event(self, conversation_id: str, event: Event) -> Optional[str]:
        if isinstance(event, TextEvent):
            return await self._step(conversation_id, event)
        command = event.command
        if command is None:
            state = self.sessions.state(conversation_id)
            return self.messages.get(
                "unknown_command", name=event.name, hint=self.flow.usage(state)
            )
        if command in (Command.HELP, Command.START):
            return self.help_text()
        if command is Command.CANCEL:
            state = self.sessions.state(conversation_id)
            self.sessions.reset(conversation_id)
            return self.messages.get(
                "nothing_to_cancel" if isinstance(state, Start) else "cancelled"
            )

        notes: List[str] = []
        if not isinstance(self.sessions.state(conversation_id), Start):
            self.sessions.reset(conversation_id)
            notes.append(self.messages.get("implicit_cancel"))
        if command is Command.LINK:
            reply = await self._step(conversation_id, event)
        elif command in RECONCILE_COMMANDS:
            reply = await self._reconcile(command, event)
        else:
            raise ValueError(f"unhandled command {command!r}")
        if reply:
            notes.append(reply)
        return "\n".join(notes) if notes else None

    async def _step(self, conversation_id: str, event: Event) -> Optional[str]:
        async with self.sessions.lock(conversation_id):
            state, generation = self.sessions.get(conversation_id)
            try:
                transition = await self.flow.advance(state, event)
            except RemoteTransportError as exc:
                log.warning("link step failed for %s: %s", conversation_id, exc)
                return self.messages.get("failure")
            if not self.sessions.commit(conversation_id, transition.state, generation):
                return None
            return transition.reply

    async def _reconcile(self, command: Command, event: CommandEvent) -> str:
        handle = event.handle
        if not handle:
            return self.messages.get("missing_handle", name=command.value)
        try:
            if command is Command.CHECK:
                return await self._check(handle)
            if command is Command.REGISTER:
                return await self._register(handle)
            if command is Command.UPDATE:
                return await self._update(handle)
            if command is Command.UNREGISTER:
                return await self._unregister(handle)
        except RemoteNotFound:
            return self.messages.get("user_not_found", handle=handle)
        except NoAddressLinked:
            return self.messages.get("no_address_linked", handle=handle)
        except DuopowError as exc:
            log.warning("%s %s failed: %s", command.value, handle, exc)
            return self.messages.get("failure")
        raise ValueError(f"not a reconciliation command: {command!r}")

    async def _check(self, handle: str) -> str:
        report = await self.engine.check(handle)
        snapshot = report.snapshot
        chain_address = (
            "not registered" if report.chain_address.is_zero else report.chain_address.checksum
        )
        lines = [
            self.messages.get(
                "check_report",
                handle=report.handle or handle,
                external_id=snapshot.identity.external_id,
                bio_address=report.bio_address.checksum,
                chain_address=chain_address,
                off_chain_xp=snapshot.off_chain_xp,
                reported_xp=snapshot.registration.xp_reported,
                delta=report.delta,
            )
        ]
        if report.addresses_match:
            lines.append(self.messages.get("check_match"))
        else:
            lines.append(self.messages.get("check_mismatch", handle=handle))
        return "\n".join(lines)

    async def _register(self, handle: str) -> str:
        outcome = await self.engine.register_or_update(handle)
        address = outcome.address.checksum
        if outcome.action is RegistrationAction.REGISTERED:
            return self.messages.get(
                "registered",
                handle=handle,
                address=address,
                xp=outcome.xp,
                tx_hash=outcome.tx.tx_hash,
            )
        if outcome.action is RegistrationAction.ADDRESS_UPDATED:
            return self.messages.get(
                "address_updated",
                handle=handle,
                address=address,
                previous=outcome.previous_address.checksum,
                tx_hash=outcome.tx.tx_hash,
            )
        return self.messages.get("already_registered", handle=handle, address=address)

    async def _update(self, handle: str) -> str:
        outcome = await self.engine.update_rewards(handle)
        if outcome.action is RewardAction.MINTED:
            return self.messages.get(
                "minted",
                handle=handle,
                xp=outcome.off_chain_xp,
                minted=outcome.minted,
                tx_hash=outcome.tx.tx_hash,
            )
        return self.messages.get(
            "nothing_to_mint",
            handle=handle,
            xp=outcome.off_chain_xp,
            reported=outcome.reported_xp,
        )

    async def _unregister(self, handle: str) -> str:
        tx = await self.engine.unregister(handle)
        return self.messages.get("unregistered", handle=handle, tx_hash=tx.tx_hash)
