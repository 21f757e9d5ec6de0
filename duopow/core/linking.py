"""Conversational flow that gets a user's address into their profile bio."""

import logging
from dataclasses import dataclass
from typing import Callable

from .address import extract, parse_address, rewrite_bio
from .credentials import decode_external_id
from .errors import MalformedInput, RemoteNotFound
from .events import Command, CommandEvent, Event, TextEvent
from .messages import Messages
from .models import Address
from .profile_client import ProfileClient
from .sessions import (
    START,
    AwaitingAddress,
    AwaitingCredential,
    AwaitingHandle,
    LinkState,
    Start,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    state: LinkState
    reply: str


class LinkingFlow:
    """Pure transition function over link states.

    ``advance`` never touches the session directory; it returns the next
    state and the reply, and the caller decides whether to commit it.
    Network failures propagate so the caller can keep the old state.
    """

    def __init__(
        self,
        profiles: ProfileClient,
        messages: Messages,
        *,
        address_parser: Callable[[str], Address] = parse_address,
        credential_decoder: Callable[[str], int] = decode_external_id,
    ) -> None:
        self.profiles = profiles
        self.messages = messages
        self._parse_address = address_parser
        self._decode_credential = credential_decoder

    def usage(self, state: LinkState) -> str:
        if isinstance(state, Start):
            return self.messages.get("usage_start")
        if isinstance(state, AwaitingHandle):
            return self.messages.get("usage_handle")
        if isinstance(state, AwaitingAddress):
            return self.messages.get("usage_address")
        if isinstance(state, AwaitingCredential):
            return self.messages.get("usage_credential")
        raise TypeError(f"unknown link state {state!r}")

    async def advance(self, state: LinkState, event: Event) -> Transition:
        if isinstance(event, CommandEvent):
            return self._on_command(state, event)
        if not isinstance(event, TextEvent):
            raise TypeError(f"unknown event {event!r}")
        text = event.text.strip()
        if not text:
            return Transition(state, self.usage(state))
        if isinstance(state, Start):
            return Transition(state, self.usage(state))
        if isinstance(state, AwaitingHandle):
            return await self._on_handle(text)
        if isinstance(state, AwaitingAddress):
            return self._on_address(state, text)
        if isinstance(state, AwaitingCredential):
            return await self._on_credential(state, text)
        raise TypeError(f"unknown link state {state!r}")

    def _on_command(self, state: LinkState, event: CommandEvent) -> Transition:
        command = event.command
        if command is Command.CANCEL:
            key = "nothing_to_cancel" if isinstance(state, Start) else "cancelled"
            return Transition(START, self.messages.get(key))
        if command is Command.LINK:
            return Transition(AwaitingHandle(), self.messages.get("link_prompt"))
        return Transition(
            state,
            self.messages.get("unknown_command", name=event.name, hint=self.usage(state)),
        )

    async def _on_handle(self, handle: str) -> Transition:
        try:
            identity = await self.profiles.fetch_by_handle(handle)
        except RemoteNotFound:
            return Transition(
                AwaitingHandle(), self.messages.get("handle_not_found", handle=handle)
            )
        handle = identity.handle or handle
        current = extract(identity.bio)
        if current is not None:
            reply = self.messages.get(
                "handle_found_with_address", handle=handle, address=current.checksum
            )
        else:
            reply = self.messages.get("handle_found", handle=handle)
        return Transition(AwaitingAddress(handle), reply)

    def _on_address(self, state: AwaitingAddress, text: str) -> Transition:
        try:
            address = self._parse_address(text)
        except MalformedInput:
            return Transition(state, self.messages.get("address_invalid"))
        return Transition(
            AwaitingCredential(state.handle, address),
            self.messages.get("credential_prompt", address=address.checksum),
        )

    async def _on_credential(self, state: AwaitingCredential, credential: str) -> Transition:
        try:
            external_id = self._decode_credential(credential)
        except MalformedInput:
            return Transition(state, self.messages.get("credential_invalid"))
        if credential.lower().startswith("bearer "):
            credential = credential[len("bearer ") :].strip()
        try:
            identity = await self.profiles.fetch_by_id_authenticated(external_id, credential)
        except RemoteNotFound:
            return Transition(state, self.messages.get("credential_invalid"))
        if identity.handle and identity.handle.lower() != state.handle.lower():
            return Transition(
                state,
                self.messages.get(
                    "credential_wrong_account", handle=state.handle, actual=identity.handle
                ),
            )
        address = state.address.checksum
        new_bio = rewrite_bio(identity.bio, state.address)
        if new_bio == identity.bio:
            return Transition(
                START, self.messages.get("linked_unchanged", handle=state.handle, address=address)
            )
        try:
            await self.profiles.write_bio(external_id, credential, new_bio)
        except RemoteNotFound:
            return Transition(state, self.messages.get("credential_invalid"))
        log.info("linked %s to user %s", address, external_id)
        return Transition(START, self.messages.get("linked", handle=state.handle, address=address))
