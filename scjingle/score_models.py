"""Data models for a parsed score: measures, voices and timed notes."""

from __future__ import annotations

from dataclasses import dataclass, field

from scjingle.errors import ParseError


@dataclass(frozen=True)
class Note:
    """
    A single pitched note.

    Attributes:
        pitch:    Semitones in MIDI numbering (60 = middle C). A float so that
                  microtonal or octave-adjusted values stay representable.
        start:    Onset in quarter lengths from the start of the measure.
        duration: Length in quarter lengths (always > 0).
    """

    pitch: float
    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class Measure:
    """One measure: its position, length and the notes of every voice in it."""

    index: int
    length: float
    voices: dict[str, tuple[Note, ...]] = field(default_factory=dict)

    def notes_for(self, voice_name: str) -> tuple[Note, ...]:
        return self.voices.get(voice_name, ())


@dataclass(frozen=True)
class ScoreModel:
    """
    Neutral score representation consumed by the channel selector.

    Construction validates that measure indices run 0..N-1 without gaps and
    that every voice used by a measure is declared in ``voice_names``. Notes
    must have a positive duration.
    """

    measures: tuple[Measure, ...]
    voice_names: tuple[str, ...]
    title: str = ""

    def __post_init__(self) -> None:
        declared = set(self.voice_names)
        for expected_idx, measure in enumerate(self.measures):
            if measure.index != expected_idx:
                raise ParseError(
                    f"measure indices not contiguous: expected {expected_idx}, got {measure.index}"
                )
            unknown = set(measure.voices) - declared
            if unknown:
                raise ParseError(
                    f"measure {measure.index} references undeclared voice(s): "
                    + ", ".join(sorted(unknown))
                )
            for name, notes in measure.voices.items():
                if any(note.duration <= 0 for note in notes):
                    raise ParseError(
                        f"measure {measure.index} voice '{name}' has a note without duration"
                    )

    @property
    def num_measures(self) -> int:
        return len(self.measures)

    def measure_offsets(self) -> list[float]:
        """Start of every measure in quarter lengths from the top of the score."""
        offsets: list[float] = []
        position = 0.0
        for measure in self.measures:
            offsets.append(position)
            position += measure.length
        return offsets
