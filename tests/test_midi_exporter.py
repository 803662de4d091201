"""Tests for MidiExporter (requires MIDIUtil)."""

import io
from pathlib import Path

import pytest

from scjingle.channel_selector import Channel, StreamNote
from scjingle.midi_exporter import MidiExporter


def _streams() -> dict[Channel, list[StreamNote]]:
    return {
        Channel.LEFT: [StreamNote(60, 0.0, 1.0), StreamNote(64, 1.0, 1.0)],
        Channel.RIGHT: [StreamNote(48, 0.0, 2.0)],
    }


def test_write_produces_standard_midi_file() -> None:
    buffer = io.BytesIO()
    MidiExporter(tempo=120).write(_streams(), buffer)
    data = buffer.getvalue()
    assert data.startswith(b"MThd")
    assert b"Left" in data
    assert b"Right" in data


def test_export_writes_file(tmp_path: Path) -> None:
    out = tmp_path / "preview.mid"
    MidiExporter(tempo=90).export(_streams(), str(out))
    assert out.read_bytes().startswith(b"MThd")


def test_export_accepts_missing_channel(tmp_path: Path) -> None:
    out = tmp_path / "left_only.mid"
    MidiExporter(tempo=120).export({Channel.LEFT: _streams()[Channel.LEFT]}, str(out))
    assert out.exists()


def test_export_rejects_non_positive_tempo(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        MidiExporter(tempo=0).export(_streams(), str(tmp_path / "x.mid"))


def test_midi_pitch_applies_octave_adjust_and_rounds() -> None:
    assert MidiExporter(tempo=120, octave_adjust=1.0)._midi_pitch(60) == 72
    assert MidiExporter(tempo=120, octave_adjust=-0.5)._midi_pitch(60) == 54
    assert MidiExporter(tempo=120)._midi_pitch(60.4) == 60


def test_midi_pitch_is_clamped_to_midi_range() -> None:
    exporter = MidiExporter(tempo=120, octave_adjust=4.0)
    assert exporter._midi_pitch(120) == 127
    assert MidiExporter(tempo=120, octave_adjust=-8.0)._midi_pitch(20) == 0
