"""Error taxonomy shared by the clients, the linking flow and the engine."""


class DuopowError(Exception):
    """Base class for every failure raised by duopow."""


class RemoteNotFound(DuopowError):
    """The platform has no account for the requested handle or id."""

    def __init__(self, subject: str):
        super().__init__(f"user not found: {subject}")
        self.subject = subject


UserNotFound = RemoteNotFound


class NoAddressLinked(DuopowError):
    """The profile bio carries no embedded address."""

    def __init__(self, handle: str):
        super().__init__(f"no address in bio of {handle}")
        self.handle = handle


class MalformedInput(DuopowError):
    """User-supplied text could not be parsed (address or credential)."""


class RemoteTransportError(DuopowError):
    """Network, HTTP or RPC failure talking to the platform or the chain."""
