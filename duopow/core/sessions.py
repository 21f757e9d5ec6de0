"""Linking session states and the per-conversation directory that owns them."""

from __future__ import annotations

import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Tuple, Union

from .locks import KeyedLocks
from .models import Address

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class AwaitingHandle:
    pass


@dataclass(frozen=True)
class AwaitingAddress:
    handle: str


@dataclass(frozen=True)
class AwaitingCredential:
    handle: str
    address: Address


LinkState = Union[Start, AwaitingHandle, AwaitingAddress, AwaitingCredential]

START = Start()


class SessionDirectory:
    """In-memory map of conversation id to linking state.

    A reset while a step holds the conversation lock stamps a fresh
    generation; ``commit`` only applies when the caller's generation is
    still current, so results of a step that was cancelled mid-flight are
    dropped. Idle conversations keep no record at all.
    """

    def __init__(self) -> None:
        self._states: Dict[str, LinkState] = {}
        self._generations: Dict[str, int] = {}
        self._tokens = itertools.count(1)
        self._locks = KeyedLocks()

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._states

    def get(self, conversation_id: str) -> Tuple[LinkState, int]:
        return (
            self._states.get(conversation_id, START),
            self._generations.get(conversation_id, 0),
        )

    def state(self, conversation_id: str) -> LinkState:
        return self._states.get(conversation_id, START)

    @asynccontextmanager
    async def lock(self, conversation_id: str) -> AsyncIterator[None]:
        try:
            async with self._locks.hold(conversation_id):
                yield
        finally:
            if not self._locks.busy(conversation_id):
                self._generations.pop(conversation_id, None)

    def commit(self, conversation_id: str, state: LinkState, generation: int) -> bool:
        if self._generations.get(conversation_id, 0) != generation:
            log.debug("dropping stale session update for %s", conversation_id)
            return False
        if isinstance(state, Start):
            self._states.pop(conversation_id, None)
        else:
            self._states[conversation_id] = state
        return True

    def reset(self, conversation_id: str) -> None:
        self._states.pop(conversation_id, None)
        # Only a step holding or awaiting the lock can carry a stale generation.
        if self._locks.busy(conversation_id):
            self._generations[conversation_id] = next(self._tokens)
        else:
            self._generations.pop(conversation_id, None)
