"""Exception hierarchy for score parsing, selection, encoding and device I/O."""


class JingleError(Exception):
    """Base class for every expected failure reported to the user."""


# ── Composition errors ────────────────────────────────────────────────────────

class ParseError(JingleError):
    """The score could not be turned into a usable ScoreModel."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NotParsedError(ParseError):
    """An operation needed a parsed score but none is loaded."""

    def __init__(self) -> None:
        super().__init__("no score has been parsed successfully")


class InvalidRange(JingleError):
    """A setter received a value outside its valid range."""


class SizeExceeded(JingleError):
    """Encoded jingle data would not fit in the device EEPROM."""

    def __init__(self, needed: int, limit: int) -> None:
        super().__init__(
            f"Jingle is too large ({needed}/{limit} bytes). "
            "Try using configuration options to reduce size."
        )
        self.needed = needed
        self.limit = limit


class TransferError(JingleError):
    """A download was aborted because a chunk was not acknowledged."""

    def __init__(self, cause: "LinkError") -> None:
        super().__init__(f"transfer aborted: {cause}")
        self.cause = cause


# ── Device link errors ────────────────────────────────────────────────────────

class LinkError(JingleError):
    """Base class for serial link failures."""


class PortUnavailable(LinkError):
    """The serial port does not exist or could not be opened."""


class PermissionDenied(LinkError):
    """The OS refused access to the serial port."""


class AlreadyOpen(LinkError):
    """open() was called on a link that is already open."""


class NotOpen(LinkError):
    """A command was issued on a closed link."""


class LinkTimeout(LinkError):
    """The device did not produce the expected response in time."""

    def __init__(self, command: str, received: str) -> None:
        super().__init__(
            f"timed out waiting for response to {command.strip()!r} "
            f"(received {received!r})"
        )
        self.command = command
        self.received = received


class ResponseMismatch(LinkError):
    """The device answered with something other than the expected response."""

    def __init__(self, command: str, received: str) -> None:
        super().__init__(f"unexpected response to {command.strip()!r}: {received!r}")
        self.command = command
        self.received = received
