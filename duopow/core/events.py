"""Inbound conversational events: free text or a slash command."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple, Union


class Command(str, Enum):
    HELP = "help"
    START = "start"
    LINK = "link"
    CANCEL = "cancel"
    CHECK = "check"
    REGISTER = "register"
    UPDATE = "update"
    UNREGISTER = "unregister"

    @property
    def needs_handle(self) -> bool:
        return self in RECONCILE_COMMANDS


RECONCILE_COMMANDS = frozenset(
    {Command.CHECK, Command.REGISTER, Command.UPDATE, Command.UNREGISTER}
)

COMMAND_DESCRIPTIONS = {
    Command.HELP: "display this text again",
    Command.LINK: "put your address into your Duolingo bio",
    Command.CANCEL: "abort the current linking flow",
    Command.CHECK: "compare your profile with the registry",
    Command.REGISTER: "register your Duolingo account",
    Command.UPDATE: "update your XP",
    Command.UNREGISTER: "remove your registration",
}


@dataclass(frozen=True)
class TextEvent:
    text: str


@dataclass(frozen=True)
class CommandEvent:
    name: str
    args: Tuple[str, ...] = ()

    @property
    def command(self) -> Optional[Command]:
        try:
            return Command(self.name)
        except ValueError:
            return None

    @property
    def handle(self) -> Optional[str]:
        return self.args[0] if self.args else None

    @classmethod
    def of(cls, command: Command, args: Sequence[str] = ()) -> "CommandEvent":
        return cls(command.value, tuple(args))


Event = Union[TextEvent, CommandEvent]


def parse_event(text: str) -> Event:
    """Split ``/name@bot arg ...`` into a command event, anything else is text."""
    stripped = (text or "").strip()
    if not stripped.startswith("/") or len(stripped) == 1:
        return TextEvent(stripped)
    head, *args = stripped[1:].split()
    name = head.split("@", 1)[0].lower()
    return CommandEvent(name, tuple(args))
