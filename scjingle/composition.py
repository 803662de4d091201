"""Composition: a parsed score plus the user's range, channel and tempo selection."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Final, Sequence

from scjingle.channel_selector import NO_VOICE_STR, Channel, ChannelSelector, StreamNote
from scjingle.errors import InvalidRange, LinkError, NotParsedError, TransferError
from scjingle.jingle_encoder import (
    EEPROM_HDR_NUM_BYTES,
    MAX_EEPROM_BYTES,
    EncodedJingle,
    JingleEncoder,
    JingleRecords,
    pack_jingles,
)
from scjingle.score_models import ScoreModel
from scjingle.score_parser import ScoreParser

if TYPE_CHECKING:
    from scjingle.device_link import DeviceLink

logger = logging.getLogger(__name__)

DEFAULT_BPM: Final[int] = 120
DEFAULT_OCTAVE_ADJUST: Final[float] = 0.0


def _channel(channel: Channel | int) -> Channel:
    try:
        return Channel(channel)
    except ValueError as exc:
        raise InvalidRange(f"unknown channel {channel!r}") from exc


@dataclass
class Selection:
    """Mutable per-composition selection. Lists are indexed by ``Channel``."""

    meas_start_idx: int = 0
    meas_end_idx: int = 0
    voices: list[str] = field(default_factory=lambda: [NO_VOICE_STR, NO_VOICE_STR])
    chord_idxs: list[int] = field(default_factory=lambda: [0, 0])
    bpm: int = DEFAULT_BPM
    octave_adjust: float = DEFAULT_OCTAVE_ADJUST


class Composition:
    """
    One score being turned into a jingle.

    A Composition owns exactly one ScoreModel (replaced only by a successful
    ``parse``) and a Selection that setters validate before mutating. Until
    the first successful parse every query raises NotParsedError.

    Typical flow:

        comp = Composition("song.musicxml")
        comp.parse()
        comp.set_voice(Channel.LEFT, "Melody")
        with DeviceLink(LinkConfig(port="/dev/ttyACM0")) as link:
            link.clear()
            comp.download(link)
            link.play(0)
    """

    def __init__(self, path: str | Path | None = None, parser: ScoreParser | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._parser = parser or ScoreParser()
        self._score: ScoreModel | None = None
        self._selector: ChannelSelector | None = None
        self._selection = Selection()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_score(self) -> ScoreModel:
        if self._score is None:
            raise NotParsedError()
        return self._score

    def _require_selector(self) -> ChannelSelector:
        if self._selector is None:
            raise NotParsedError()
        return self._selector

    def _check_meas_idx(self, idx: int) -> None:
        num = self.get_num_measures()
        if not 0 <= idx < num:
            raise InvalidRange(f"measure index {idx} outside 0-{num - 1}")

    def _encoder(self) -> JingleEncoder:
        return JingleEncoder(bpm=self._selection.bpm, octave_adjust=self._selection.octave_adjust)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        """Display name: the score file name without directory or extension."""
        if self.path is None:
            return ""
        return self.path.stem

    def parse(self, path: str | Path | None = None) -> None:
        """
        Parse the score and reset the selection to its defaults.

        On failure the previous score and selection are left untouched.

        Raises:
            ParseError: The score could not be parsed.
        """
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("No score path given.")

        score = self._parser.parse(target)

        self.path = target
        self._score = score
        self._selector = ChannelSelector(score)
        self._selection = Selection(meas_end_idx=score.num_measures - 1)

    @classmethod
    def from_score(cls, score: ScoreModel) -> "Composition":
        """Wrap an already-built ScoreModel, with default selection."""
        comp = cls()
        comp._score = score
        comp._selector = ChannelSelector(score)
        comp._selection = Selection(meas_end_idx=score.num_measures - 1)
        return comp

    @property
    def score(self) -> ScoreModel:
        return self._require_score()

    # ------------------------------------------------------------------
    # Measure range
    # ------------------------------------------------------------------

    def get_num_measures(self) -> int:
        return self._require_score().num_measures

    def get_meas_start_idx(self) -> int:
        self._require_score()
        return self._selection.meas_start_idx

    def set_meas_start_idx(self, idx: int) -> None:
        self._check_meas_idx(idx)
        if idx > self._selection.meas_end_idx:
            raise InvalidRange(
                f"start measure {idx} is after end measure {self._selection.meas_end_idx}"
            )
        self._selection.meas_start_idx = idx

    def get_meas_end_idx(self) -> int:
        self._require_score()
        return self._selection.meas_end_idx

    def set_meas_end_idx(self, idx: int) -> None:
        self._check_meas_idx(idx)
        if idx < self._selection.meas_start_idx:
            raise InvalidRange(
                f"end measure {idx} is before start measure {self._selection.meas_start_idx}"
            )
        self._selection.meas_end_idx = idx

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    @staticmethod
    def get_no_voice_str() -> str:
        return NO_VOICE_STR

    def get_voice_strs(self) -> list[str]:
        """Voice names in score order, not including the no-voice sentinel."""
        return list(self._require_score().voice_names)

    def get_voice(self, channel: Channel) -> str:
        self._require_score()
        return self._selection.voices[_channel(channel)]

    def set_voice(self, channel: Channel, voice_name: str) -> None:
        """Assign a voice (or NO_VOICE_STR) to a channel and reset its chord index."""
        channel = _channel(channel)
        self._require_score()
        if voice_name != NO_VOICE_STR and voice_name not in self.get_voice_strs():
            raise InvalidRange(f"unknown voice '{voice_name}'")
        self._selection.voices[channel] = voice_name
        self._selection.chord_idxs[channel] = 0
        logger.debug("%s voice set to %r", channel.name, voice_name)

    def get_num_chords(self, voice_name: str, meas_start: int, meas_end: int) -> int:
        self._check_meas_idx(meas_start)
        self._check_meas_idx(meas_end)
        if meas_start > meas_end:
            raise InvalidRange(f"start measure {meas_start} is after end measure {meas_end}")
        return self._require_selector().chord_count(voice_name, meas_start, meas_end)

    def get_chord_idx(self, channel: Channel) -> int:
        self._require_score()
        return self._selection.chord_idxs[_channel(channel)]

    def set_chord_idx(self, channel: Channel, idx: int) -> None:
        """
        Select which note of each chord the channel plays (0 = lowest).

        Indexes beyond the current chord count are kept; instants with fewer
        notes fall back to their lowest note.
        """
        channel = _channel(channel)
        self._require_score()
        if idx < 0:
            raise InvalidRange(f"chord index must be non-negative, got {idx}")
        self._selection.chord_idxs[channel] = idx
        logger.debug("%s chord index set to %d", channel.name, idx)

    def resolve_stream(self, channel: Channel) -> list[StreamNote]:
        channel = _channel(channel)
        sel = self._selection
        return self._require_selector().resolve_stream(
            sel.voices[channel], sel.meas_start_idx, sel.meas_end_idx, sel.chord_idxs[channel]
        )

    # ------------------------------------------------------------------
    # Tempo / pitch
    # ------------------------------------------------------------------

    def get_bpm(self) -> int:
        return self._selection.bpm

    def set_bpm(self, bpm: int) -> None:
        if bpm < 0:
            raise InvalidRange(f"BPM must be non-negative, got {bpm}")
        self._selection.bpm = bpm
        logger.debug("BPM set to %d", bpm)

    def get_octave_adjust(self) -> float:
        return self._selection.octave_adjust

    def set_octave_adjust(self, octave_adjust: float) -> None:
        if not math.isfinite(octave_adjust):
            raise InvalidRange(f"octave adjustment must be finite, got {octave_adjust}")
        self._selection.octave_adjust = octave_adjust
        logger.debug("octave scaling factor set to %.2f", octave_adjust)

    # ------------------------------------------------------------------
    # Memory usage and encoding
    # ------------------------------------------------------------------

    def get_record_bytes(self) -> int:
        """Bytes this composition's note records take, excluding the shared header."""
        return JingleEncoder.records_size(
            self.resolve_stream(Channel.LEFT), self.resolve_stream(Channel.RIGHT)
        )

    def get_mem_usage(self) -> int:
        """Size of the encoded jingle including the EEPROM header."""
        return EEPROM_HDR_NUM_BYTES + self.get_record_bytes()

    def get_mem_usage_fraction(self) -> float:
        """Memory usage as a fraction of the EEPROM, capped at 1.0."""
        return min(self.get_mem_usage() / MAX_EEPROM_BYTES, 1.0)

    def encode_records(self) -> JingleRecords:
        return self._encoder().encode_records(
            self.resolve_stream(Channel.LEFT), self.resolve_stream(Channel.RIGHT)
        )

    def encode(self) -> EncodedJingle:
        """
        Encode the current selection as a one-slot EEPROM image.

        Raises:
            SizeExceeded: The jingle does not fit in the EEPROM.
            InvalidRange: The tempo is zero.
        """
        return self._encoder().encode(
            self.resolve_stream(Channel.LEFT), self.resolve_stream(Channel.RIGHT)
        )

    def download(self, link: "DeviceLink", offset: int = 0) -> EncodedJingle:
        """
        Encode the selection and write it to the device through ``link``.

        Capacity is checked before anything is sent. The write is a sequence
        of independently acknowledged chunks; if one fails the device contents
        are undefined and the device should be cleared before reuse.

        Raises:
            SizeExceeded: Nothing was sent because the jingle is too large.
            TransferError: A chunk was not acknowledged.
        """
        jingle = self.encode()
        try:
            link.transfer(offset, jingle.data)
        except LinkError as exc:
            raise TransferError(exc) from exc
        logger.info("downloaded '%s' (%d bytes)", self.name, len(jingle))
        return jingle


def bank_mem_usage(compositions: Sequence[Composition]) -> int:
    """Bytes needed to store every composition behind one shared header."""
    return EEPROM_HDR_NUM_BYTES + sum(comp.get_record_bytes() for comp in compositions)


def encode_bank(compositions: Sequence[Composition]) -> EncodedJingle:
    """
    Encode several compositions into one EEPROM image; slot N holds composition N.

    Raises:
        InvalidRange: More than MAX_NUM_COMPS compositions, or a zero tempo.
        SizeExceeded: The image does not fit in the EEPROM.
    """
    return pack_jingles([comp.encode_records() for comp in compositions])
