"""Serial link configuration."""

from dataclasses import dataclass
from typing import Final

DEFAULT_BAUD_RATE: Final[int] = 115200
DEFAULT_TIMEOUT_S: Final[float] = 2.0
DEFAULT_CHUNK_BYTES: Final[int] = 32

# Device console lines are limited to 128 characters; "jingle write <offset> "
# plus two hex digits per byte must fit.
MAX_CHUNK_BYTES: Final[int] = 48


@dataclass
class LinkConfig:
    """
    Settings for one serial endpoint.

    Attributes:
        port:       Serial port name (``/dev/ttyACM0``, ``COM3``) or a pyserial
                    URL such as ``loop://``.
        baudrate:   Serial speed.
        timeout:    Seconds to wait for each command's response.
        chunk_size: Payload bytes carried by one data-write command.
    """

    port: str
    baudrate: int = DEFAULT_BAUD_RATE
    timeout: float = DEFAULT_TIMEOUT_S
    chunk_size: int = DEFAULT_CHUNK_BYTES

    def __post_init__(self) -> None:
        if not self.port:
            raise ValueError("A serial port name is required.")
        if self.baudrate <= 0:
            raise ValueError(f"Baud rate must be positive, got {self.baudrate}.")
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout}.")
        if not (1 <= self.chunk_size <= MAX_CHUNK_BYTES):
            raise ValueError(f"Chunk size must be in 1-{MAX_CHUNK_BYTES} bytes, got {self.chunk_size}.")
