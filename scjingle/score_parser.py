"""ScoreParser: converts a MusicXML document into a ScoreModel via music21."""

from __future__ import annotations

import logging
from fractions import Fraction
from pathlib import Path
from typing import Any, Final
from xml.etree.ElementTree import ParseError as XmlParseError

from scjingle.errors import ParseError
from scjingle.score_models import Measure, Note, ScoreModel

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES: Final[set[str]] = {".musicxml", ".xml", ".mxl"}

#: Voice id given to notes that sit directly in a measure rather than in a Voice.
DEFAULT_VOICE_ID: Final[str] = "1"


class ScoreParser:
    """
    Parse a score file into an immutable ScoreModel.

    Voices
    ------
    Every part contributes one voice per music21 ``Voice`` id found in its
    measures. A part with a single voice is named after the part itself
    (``<part-name>``, or the part id when unnamed); a part with several
    voices yields ``"<part>/<voice id>"`` for each of them.

    Failure is all-or-nothing: a ``ParseError`` is raised and no partial
    model is ever returned.
    """

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load(self, path: Path) -> Any:
        from music21 import converter
        from music21.exceptions21 import Music21Exception

        try:
            return converter.parse(str(path), forceSource=True)
        except (Music21Exception, XmlParseError) as exc:
            raise ParseError(f"malformed document: {exc}") from exc
        except OSError as exc:
            raise ParseError(f"cannot read '{path}': {exc}") from exc

    def _parts(self, parsed: Any) -> list[Any]:
        from music21 import stream

        if isinstance(parsed, stream.Score):
            return list(parsed.parts)
        if isinstance(parsed, stream.Part):
            return [parsed]
        raise ParseError(f"unsupported element: expected a score, got {type(parsed).__name__}")

    def _title(self, parsed: Any) -> str:
        metadata = getattr(parsed, "metadata", None)
        title = getattr(metadata, "title", None) if metadata is not None else None
        return str(title) if title else ""

    def _part_label(self, part: Any) -> str:
        name = getattr(part, "partName", None)
        if isinstance(name, str) and name.strip():
            return name.strip()
        return str(part.id)

    def _voice_streams(self, measure: Any) -> list[tuple[str, Any]]:
        """Return ``(voice id, stream)`` pairs for one measure."""
        streams: list[tuple[str, Any]] = []
        if measure.notes:
            streams.append((DEFAULT_VOICE_ID, measure))
        for voice in measure.voices:
            streams.append((str(voice.id), voice))
        return streams

    def _element_notes(self, element: Any, base_offset: float) -> list[Note]:
        from music21 import chord, note

        quarter_length = float(Fraction(element.duration.quarterLength))
        if quarter_length <= 0 or element.duration.isGrace:
            return []

        if isinstance(element, chord.Chord):
            pitches = list(element.pitches)
        elif isinstance(element, note.Note):
            pitches = [element.pitch]
        else:
            return []

        start = base_offset + float(Fraction(element.offset))
        return [Note(pitch=float(p.ps), start=start, duration=quarter_length) for p in pitches]

    def _collect_part(self, part: Any) -> tuple[list[Any], dict[str, list[list[Note]]]]:
        """Return the part's measures and, per voice id, the notes of each measure."""
        from music21 import stream

        measures = list(part.getElementsByClass(stream.Measure))
        by_voice: dict[str, list[list[Note]]] = {}
        for idx, measure in enumerate(measures):
            for voice_id, voice_stream in self._voice_streams(measure):
                base = 0.0 if voice_stream is measure else float(Fraction(voice_stream.offset))
                notes = [
                    n
                    for element in voice_stream.notes
                    for n in self._element_notes(element, base)
                ]
                if not notes:
                    continue
                per_measure = by_voice.setdefault(voice_id, [[] for _ in measures])
                per_measure[idx].extend(notes)
        return measures, by_voice

    def _measure_length(self, measure: Any) -> float:
        length = float(Fraction(measure.highestTime))
        if length > 0:
            return length
        return float(Fraction(measure.barDuration.quarterLength))

    def _build_model(self, parsed: Any) -> ScoreModel:
        parts = self._parts(parsed)

        num_measures = 0
        lengths: list[float] = []
        voice_order: list[str] = []
        voice_notes: dict[str, list[list[Note]]] = {}

        for part in parts:
            measures, by_voice = self._collect_part(part)
            num_measures = max(num_measures, len(measures))
            for idx, measure in enumerate(measures):
                length = self._measure_length(measure)
                if idx < len(lengths):
                    lengths[idx] = max(lengths[idx], length)
                else:
                    lengths.append(length)

            label = self._part_label(part)
            for voice_id, per_measure in by_voice.items():
                name = label if len(by_voice) == 1 else f"{label}/{voice_id}"
                if name in voice_notes:
                    name = f"{name} ({part.id})"
                voice_order.append(name)
                voice_notes[name] = per_measure

        if num_measures == 0:
            raise ParseError("empty score: no measures found")
        if not voice_order:
            raise ParseError("empty score: no voice contains a pitched note")

        measures_out: list[Measure] = []
        for idx in range(num_measures):
            voices = {
                name: tuple(sorted(per_measure[idx], key=lambda n: (n.start, n.pitch)))
                for name, per_measure in voice_notes.items()
                if idx < len(per_measure) and per_measure[idx]
            }
            measures_out.append(Measure(index=idx, length=lengths[idx], voices=voices))

        return ScoreModel(
            measures=tuple(measures_out),
            voice_names=tuple(voice_order),
            title=self._title(parsed),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(self, path: str | Path) -> ScoreModel:
        """
        Read a MusicXML (.musicxml, .xml) or compressed MusicXML (.mxl) file.

        Raises:
            ParseError: If the file is missing, of an unsupported format,
                malformed, or contains no measures or pitched notes.
        """
        path = Path(path)
        if path.suffix.lower() not in SUPPORTED_SUFFIXES:
            supported = ", ".join(sorted(SUPPORTED_SUFFIXES))
            raise ParseError(f"unsupported format '{path.suffix}'. Use one of: {supported}.")
        if not path.is_file():
            raise ParseError(f"file not found: '{path}'")

        model = self._build_model(self._load(path))
        logger.info(
            "parsed %s: %d measure(s), voices %s",
            path.name,
            model.num_measures,
            ", ".join(model.voice_names),
        )
        return model
