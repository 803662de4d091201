"""JingleEncoder: serializes two channel streams into the device EEPROM layout."""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from typing import Final, Sequence

from scjingle.channel_selector import StreamNote
from scjingle.errors import InvalidRange, SizeExceeded

# ── Device capacity constants ─────────────────────────────────────────────────
MAX_EEPROM_BYTES: Final[int] = 0x400       # Total EEPROM available for jingles
EEPROM_HDR_NUM_BYTES: Final[int] = 0x44    # Magic + count + MAX_NUM_COMPS slot entries
MAX_NUM_COMPS: Final[int] = 16             # Jingle slots described by the header

JINGLE_MAGIC: Final[int] = 0xCA11

_HDR_FMT: Final[str] = "<HH"       # magic, number of jingles
_SLOT_FMT: Final[str] = "<HBB"     # data offset, left note count, right note count
_RECORD_FMT: Final[str] = "<HHH"   # frequency (Hz), duration (ms), delay (ms)

NOTE_RECORD_NUM_BYTES: Final[int] = struct.calcsize(_RECORD_FMT)
MAX_DATA_BYTES: Final[int] = MAX_EEPROM_BYTES - EEPROM_HDR_NUM_BYTES

_U16_MAX: Final[int] = 0xFFFF

# Standard tuning reference: A4 = MIDI 69 = 440 Hz
A4_MIDI: Final[int] = 69
A4_FREQ_HZ: Final[float] = 440.0
SEMITONES_PER_OCTAVE: Final[int] = 12


def pitch_to_frequency(pitch: float, octave_adjust: float = 0.0) -> int:
    """
    Convert a (possibly fractional) MIDI pitch to the nearest whole frequency.

    ``octave_adjust`` shifts the pitch by that many octaves, so 1.0 doubles the
    frequency and -0.5 lowers it by a tritone. The result is clamped to the
    range a u16 record field can hold (1..65535 Hz).
    """
    semitones = pitch + SEMITONES_PER_OCTAVE * octave_adjust - A4_MIDI
    freq = A4_FREQ_HZ * math.pow(2.0, semitones / SEMITONES_PER_OCTAVE)
    return min(max(int(round(freq)), 1), _U16_MAX)


@dataclass(frozen=True)
class JingleRecords:
    """Encoded note records of one jingle, per channel, without any header."""

    left: bytes
    right: bytes

    @property
    def num_left(self) -> int:
        return len(self.left) // NOTE_RECORD_NUM_BYTES

    @property
    def num_right(self) -> int:
        return len(self.right) // NOTE_RECORD_NUM_BYTES

    @property
    def num_bytes(self) -> int:
        return len(self.left) + len(self.right)


@dataclass(frozen=True)
class EncodedJingle:
    """
    A complete EEPROM image: header followed by every jingle's records.

    Attributes:
        data:  The raw bytes to write to the device starting at EEPROM offset 0.
        slots: ``(num_left, num_right)`` note counts per jingle slot.
    """

    data: bytes
    slots: tuple[tuple[int, int], ...]

    def __len__(self) -> int:
        return len(self.data)


def pack_jingles(jingles: Sequence[JingleRecords]) -> EncodedJingle:
    """
    Lay out one or more jingles behind a single shared header.

    Header layout (little-endian)
    -----------------------------
    ``u16 magic (0xCA11)``, ``u16 number of jingles``, then MAX_NUM_COMPS slot
    entries of ``u16 data offset, u8 left count, u8 right count``. The data
    offset is relative to the end of the header. Unused slots are zero.

    Each jingle's data is its LEFT records followed by its RIGHT records.

    Raises:
        InvalidRange: More than MAX_NUM_COMPS jingles were given.
        SizeExceeded: The image would not fit in MAX_EEPROM_BYTES.
    """
    if len(jingles) > MAX_NUM_COMPS:
        raise InvalidRange(f"at most {MAX_NUM_COMPS} jingles fit in the header, got {len(jingles)}")

    data_bytes = sum(j.num_bytes for j in jingles)
    if data_bytes > MAX_DATA_BYTES:
        raise SizeExceeded(needed=EEPROM_HDR_NUM_BYTES + data_bytes, limit=MAX_EEPROM_BYTES)

    header = bytearray(struct.pack(_HDR_FMT, JINGLE_MAGIC, len(jingles)))
    body = bytearray()
    for jingle in jingles:
        header += struct.pack(_SLOT_FMT, len(body), jingle.num_left, jingle.num_right)
        body += jingle.left
        body += jingle.right
    header += bytes(EEPROM_HDR_NUM_BYTES - len(header))

    return EncodedJingle(
        data=bytes(header + body),
        slots=tuple((j.num_left, j.num_right) for j in jingles),
    )


class JingleEncoder:
    """
    Converts StreamNotes into fixed-size note records.

    Record layout (``NOTE_RECORD_NUM_BYTES`` = 6, little-endian)
    -------------------------------------------------------------
    ``u16 frequency_hz``  pitch after octave adjustment, see pitch_to_frequency
    ``u16 duration_ms``   how long the note sounds
    ``u16 delay_ms``      silence before the note, measured from the end of
                          the previous note on the same channel (or from the
                          start of the range for the first note)

    Timing
    ------
    Quarter lengths are converted to milliseconds using
    ``ms = quarter_lengths × 60000 / bpm``, rounded and clamped to 65535.
    """

    def __init__(self, bpm: int, octave_adjust: float = 0.0) -> None:
        self.bpm = bpm
        self.octave_adjust = octave_adjust

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _quarters_to_ms(self, quarter_lengths: float) -> int:
        ms = quarter_lengths * 60000.0 / self.bpm
        return min(max(int(round(ms)), 0), _U16_MAX)

    def _encode_channel(self, stream: Sequence[StreamNote]) -> bytes:
        out = bytearray()
        prev_end = 0.0
        for note in stream:
            out += struct.pack(
                _RECORD_FMT,
                pitch_to_frequency(note.pitch, self.octave_adjust),
                self._quarters_to_ms(note.duration),
                self._quarters_to_ms(note.start - prev_end),
            )
            prev_end = note.end
        return bytes(out)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def records_size(left: Sequence[StreamNote], right: Sequence[StreamNote]) -> int:
        """Bytes the records of these streams occupy, without encoding them."""
        return NOTE_RECORD_NUM_BYTES * (len(left) + len(right))

    def encode_records(
        self, left: Sequence[StreamNote], right: Sequence[StreamNote]
    ) -> JingleRecords:
        """
        Encode both channel streams into records.

        Raises:
            InvalidRange: If the tempo is not positive.
        """
        if self.bpm <= 0:
            raise InvalidRange(f"tempo must be a positive BPM value, got {self.bpm}")
        return JingleRecords(left=self._encode_channel(left), right=self._encode_channel(right))

    def encode(self, left: Sequence[StreamNote], right: Sequence[StreamNote]) -> EncodedJingle:
        """Encode a single jingle into a complete image occupying slot 0."""
        return pack_jingles([self.encode_records(left, right)])
