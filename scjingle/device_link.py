"""DeviceLink: line-oriented command/response protocol over a serial port."""

from __future__ import annotations

import errno
import logging
import time
from typing import Any, Callable, Final

import serial

from scjingle.config import LinkConfig
from scjingle.errors import (
    AlreadyOpen,
    LinkError,
    LinkTimeout,
    NotOpen,
    PermissionDenied,
    PortUnavailable,
    ResponseMismatch,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL_S: Final[float] = 0.05    # Serial read timeout between deadline checks

CLEAR_CMD: Final[str] = "jingle clear\n"
CLEAR_OK: Final[str] = "Jingle data cleared successfully."
WRITE_CMD: Final[str] = "jingle write {offset} {payload}\n"
WRITE_OK: Final[str] = "Jingle data written successfully."
PLAY_CMD: Final[str] = "jingle play {slot}\n"
PLAY_OK: Final[str] = "Jingle play started successfully."


def expected_response(command: str, status: str) -> str:
    """The device echoes the command, then prints a status line: ``cmd\\r status\\n\\r``."""
    return f"{command}\r{status}\n\r"


def _common_prefix_len(a: str, b: str) -> int:
    return next((i for i, (x, y) in enumerate(zip(a, b)) if x != y), min(len(a), len(b)))


def _is_permission_error(exc: OSError) -> bool:
    if isinstance(exc, PermissionError) or exc.errno in (errno.EACCES, errno.EPERM):
        return True
    text = str(exc)
    return "PermissionError" in text or "Access is denied" in text


class DeviceLink:
    """
    A single serial endpoint speaking the controller's console protocol.

    The link is either closed or open; ``open()`` on an open link raises
    AlreadyOpen and nothing is ever retried. Every exchange blocks until it
    succeeds, the response diverges, or the timeout elapses. After any
    failure the link stays open so the caller can decide what to do next.

    Usage as a context manager guarantees the port is released:

        with DeviceLink(LinkConfig(port="/dev/ttyACM0")) as link:
            link.clear()
    """

    def __init__(
        self,
        config: LinkConfig,
        serial_factory: Callable[..., Any] = serial.serial_for_url,
    ) -> None:
        self.config = config
        self._serial_factory = serial_factory
        self._serial: Any = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_open(self) -> Any:
        if self._serial is None:
            raise NotOpen(f"{self.config.port} is not open")
        return self._serial

    def _read_some(self, ser: Any) -> str:
        try:
            chunk = ser.read(ser.in_waiting or 1)
        except serial.SerialException as exc:
            raise PortUnavailable(f"{self.config.port}: read failed: {exc}") from exc
        return chunk.decode("ascii", errors="replace")

    def _drain_line(self, ser: Any, received: str, from_idx: int, deadline: float) -> str:
        """Keep reading until a line feed follows ``from_idx`` or the deadline passes."""
        while "\n" not in received[from_idx:] and time.monotonic() < deadline:
            received += self._read_some(ser)
        return received

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._serial is not None

    @property
    def chunk_size(self) -> int:
        return self.config.chunk_size

    def open(self) -> None:
        """
        Acquire the serial port.

        Raises:
            AlreadyOpen: The link is already open.
            PermissionDenied: The OS refused access to the port.
            PortUnavailable: The port does not exist or could not be opened.
        """
        if self._serial is not None:
            raise AlreadyOpen(f"{self.config.port} is already open")

        try:
            ser = self._serial_factory(
                self.config.port,
                baudrate=self.config.baudrate,
                timeout=POLL_INTERVAL_S,
                write_timeout=self.config.timeout,
            )
        except OSError as exc:
            if _is_permission_error(exc):
                raise PermissionDenied(f"Cannot open {self.config.port}: {exc}") from exc
            raise PortUnavailable(f"Cannot open {self.config.port}: {exc}") from exc

        try:
            ser.reset_input_buffer()
            ser.reset_output_buffer()
        except OSError as exc:
            ser.close()
            raise PortUnavailable(f"Cannot reset {self.config.port}: {exc}") from exc

        self._serial = ser
        logger.info("opened %s at %d baud", self.config.port, self.config.baudrate)

    def close(self) -> None:
        """Release the port. Safe to call on a closed link."""
        if self._serial is None:
            return
        ser, self._serial = self._serial, None
        ser.close()
        logger.info("closed %s", self.config.port)

    def send(self, command: str, expected: str) -> str:
        """
        Send one command line and wait for ``expected`` at the head of the reply.

        Returns:
            The matched response text.

        Raises:
            NotOpen: The link is closed.
            LinkTimeout: The full response did not arrive within the timeout.
            ResponseMismatch: The device replied with something else; the
                device's text is carried verbatim.
            ValueError: The command is not a single ASCII line.
        """
        ser = self._require_open()
        if not command.endswith("\n"):
            command += "\n"
        if "\n" in command[:-1]:
            raise ValueError(f"Command must be a single line: {command!r}")
        payload = command.encode("ascii")

        logger.debug("-> %r", command)
        try:
            ser.reset_input_buffer()
            ser.write(payload)
            ser.flush()
        except serial.SerialTimeoutException as exc:
            raise LinkTimeout(command, "") from exc
        except serial.SerialException as exc:
            raise PortUnavailable(f"{self.config.port}: write failed: {exc}") from exc

        deadline = time.monotonic() + self.config.timeout
        received = ""
        while True:
            if received.startswith(expected):
                logger.debug("<- %r", received)
                return expected

            if not expected.startswith(received):
                diverged_at = _common_prefix_len(received, expected)
                received = self._drain_line(ser, received, diverged_at, deadline)
                logger.debug("<- %r (mismatch)", received)
                raise ResponseMismatch(command, received)

            if time.monotonic() >= deadline:
                logger.debug("<- %r (timeout)", received)
                raise LinkTimeout(command, received)

            received += self._read_some(ser)

    def clear(self) -> None:
        """Erase all jingle data on the device."""
        self.send(CLEAR_CMD, expected_response(CLEAR_CMD, CLEAR_OK))
        logger.info("device jingle memory cleared")

    def transfer_chunk(self, offset: int, data: bytes) -> None:
        """
        Write one slice of EEPROM data at ``offset``.

        Raises:
            ValueError: The slice is empty, larger than ``chunk_size`` or the
                offset is negative.
        """
        if offset < 0:
            raise ValueError(f"Offset must be non-negative, got {offset}")
        if not 0 < len(data) <= self.chunk_size:
            raise ValueError(f"Chunk must hold 1-{self.chunk_size} bytes, got {len(data)}")

        command = WRITE_CMD.format(offset=offset, payload=data.hex().upper())
        self.send(command, expected_response(command, WRITE_OK))

    def transfer(self, offset: int, data: bytes) -> None:
        """
        Write ``data`` starting at ``offset`` as a sequence of acknowledged chunks.

        The first failing chunk aborts the transfer and its error propagates.
        Chunks already written are not rolled back: the device contents are
        undefined afterwards and it must be cleared before reuse.
        """
        size = self.chunk_size
        for start in range(0, len(data), size):
            try:
                self.transfer_chunk(offset + start, data[start : start + size])
            except LinkError:
                logger.warning(
                    "transfer aborted at offset %d (%d/%d bytes acknowledged)",
                    offset + start,
                    start,
                    len(data),
                )
                raise
        logger.info("transferred %d byte(s) at offset %d", len(data), offset)

    def play(self, slot: int = 0) -> None:
        """Start playback of the jingle stored in ``slot``."""
        if slot < 0:
            raise ValueError(f"Slot must be non-negative, got {slot}")
        command = PLAY_CMD.format(slot=slot)
        self.send(command, expected_response(command, PLAY_OK))
        logger.info("playing jingle %d", slot)

    def __enter__(self) -> "DeviceLink":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
