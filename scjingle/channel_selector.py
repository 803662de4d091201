"""ChannelSelector: reduces a polyphonic voice to one monophonic note stream."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from scjingle.score_models import Note, ScoreModel

#: Sentinel voice name meaning "this channel plays nothing".
NO_VOICE_STR: Final[str] = "No Voice"

# Onsets closer than this (in quarter lengths) to a note's end do not overlap it.
TIME_EPSILON: Final[float] = 1e-9


class Channel(IntEnum):
    """The two output channels of the device. Values index per-channel state."""

    LEFT = 0
    RIGHT = 1


@dataclass(frozen=True)
class StreamNote:
    """
    One emitted note of a channel stream.

    Attributes:
        pitch:    Semitones (MIDI numbering).
        start:    Onset in quarter lengths from the start of the selected range.
        duration: Length in quarter lengths.
    """

    pitch: float
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class _TimedNote:
    """A Note placed on the range timeline; ``source`` identifies it across instants."""

    source: int
    pitch: float
    start: float
    end: float


class ChannelSelector:
    """
    Derives monophonic channel streams from a ScoreModel.

    Reduction rule
    --------------
    The voice's notes over the measure range are laid on one timeline and cut
    at every note start and note end. Within each segment the sounding notes
    (``start <= t < end``) form the chord, ranked by pitch ascending so that
    index 0 is the lowest note.

    1. The note at the requested chord index is chosen.
    2. If the chord has fewer notes than ``chord_idx + 1``, the **lowest**
       note is chosen instead.
    3. Segments where nothing sounds stay silent. Adjacent segments that pick
       the same source note are merged into one emission.

    The result never contains two overlapping notes, and something is emitted
    wherever at least one note of the voice sounds.
    """

    def __init__(self, score: ScoreModel) -> None:
        self.score = score
        self._offsets = score.measure_offsets()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _timeline(self, voice_name: str, meas_start: int, meas_end: int) -> list[_TimedNote]:
        if voice_name == NO_VOICE_STR:
            return []

        origin = self._offsets[meas_start]
        timed: list[_TimedNote] = []
        for measure in self.score.measures[meas_start : meas_end + 1]:
            base = self._offsets[measure.index] - origin
            for note in measure.notes_for(voice_name):
                timed.append(self._place(len(timed), note, base))
        timed.sort(key=lambda n: (n.start, n.pitch, n.end))
        return timed

    def _place(self, source: int, note: Note, base: float) -> _TimedNote:
        return _TimedNote(
            source=source,
            pitch=note.pitch,
            start=base + note.start,
            end=base + note.end,
        )

    def _instants(self, timed: list[_TimedNote]) -> list[float]:
        return sorted({n.start for n in timed})

    def _boundaries(self, timed: list[_TimedNote]) -> list[float]:
        """Every note start and end, with points closer than TIME_EPSILON folded together."""
        points: list[float] = []
        for point in sorted({n.start for n in timed} | {n.end for n in timed}):
            if not points or point - points[-1] > TIME_EPSILON:
                points.append(point)
        return points

    def _active(self, timed: list[_TimedNote], instant: float) -> list[_TimedNote]:
        active = [
            n for n in timed if n.start <= instant + TIME_EPSILON and instant < n.end - TIME_EPSILON
        ]
        active.sort(key=lambda n: (n.pitch, n.start, n.end))
        return active

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chord_count(self, voice_name: str, meas_start: int, meas_end: int) -> int:
        """
        Maximum number of notes of ``voice_name`` sounding at any one instant.

        Returns 0 when the voice has no notes in the inclusive range.
        """
        timed = self._timeline(voice_name, meas_start, meas_end)
        return max((len(self._active(timed, t)) for t in self._instants(timed)), default=0)

    def resolve_stream(
        self, voice_name: str, meas_start: int, meas_end: int, chord_idx: int
    ) -> list[StreamNote]:
        """Reduce ``voice_name`` over the inclusive range to a monophonic stream."""
        timed = self._timeline(voice_name, meas_start, meas_end)
        points = self._boundaries(timed)

        stream: list[StreamNote] = []
        last_source: int | None = None
        for seg_start, seg_stop in zip(points, points[1:]):
            chord = self._active(timed, seg_start)
            if not chord:
                last_source = None
                continue
            chosen = chord[chord_idx] if chord_idx < len(chord) else chord[0]

            if last_source == chosen.source:
                prev = stream[-1]
                stream[-1] = StreamNote(prev.pitch, prev.start, seg_stop - prev.start)
            else:
                stream.append(StreamNote(chosen.pitch, seg_start, seg_stop - seg_start))
            last_source = chosen.source

        return stream
