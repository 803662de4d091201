"""Shared helpers: MusicXML fixtures and a scripted serial port."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

_HEADER = """<?xml version="1.0" encoding="UTF-8"?>
<score-partwise version="3.1">
  <part-list>
{score_parts}
  </part-list>
{parts}
</score-partwise>
"""

_ATTRIBUTES = (
    "<attributes><divisions>1</divisions>"
    "<time><beats>4</beats><beat-type>4</beat-type></time>"
    "<clef><sign>G</sign><line>2</line></clef></attributes>"
)


def xml_note(step: str, octave: int, duration: int = 4, voice: int = 1, chord: bool = False) -> str:
    """One pitched <note>; ``duration`` is in quarter notes (divisions = 1)."""
    chord_tag = "<chord/>" if chord else ""
    return (
        f"<note>{chord_tag}<pitch><step>{step}</step><octave>{octave}</octave></pitch>"
        f"<duration>{duration}</duration><voice>{voice}</voice></note>"
    )


def xml_rest(duration: int = 4, voice: int = 1) -> str:
    return f"<note><rest/><duration>{duration}</duration><voice>{voice}</voice></note>"


def xml_backup(duration: int = 4) -> str:
    return f"<backup><duration>{duration}</duration></backup>"


def build_musicxml(parts: dict[str, list[str]]) -> str:
    """
    Build a partwise MusicXML document.

    ``parts`` maps a part name to the inner XML of each of its measures, in
    order. Part ids are assigned P1, P2, ... in the given order.
    """
    score_parts = []
    part_bodies = []
    for idx, (name, measures) in enumerate(parts.items(), start=1):
        part_id = f"P{idx}"
        score_parts.append(f'    <score-part id="{part_id}"><part-name>{name}</part-name></score-part>')
        body = []
        for number, content in enumerate(measures, start=1):
            attributes = _ATTRIBUTES if number == 1 else ""
            body.append(f'    <measure number="{number}">{attributes}{content}</measure>')
        part_bodies.append(f'  <part id="{part_id}">\n' + "\n".join(body) + "\n  </part>")
    return _HEADER.format(score_parts="\n".join(score_parts), parts="\n".join(part_bodies))


@pytest.fixture
def write_score(tmp_path: Path) -> Callable[..., Path]:
    """Write a MusicXML document built from ``parts`` and return its path."""

    def _write(parts: dict[str, list[str]], name: str = "song.musicxml") -> Path:
        path = tmp_path / name
        path.write_text(build_musicxml(parts), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def melody_score(write_score: Callable[..., Path]) -> Path:
    """Four measures, one whole note each, in a single-voice part named Melody."""
    return write_score({"Melody": [xml_note(step, 4) for step in "CDEF"]}, name="melody.musicxml")


class FakeSerial:
    """
    In-memory stand-in for a pyserial port.

    ``responder`` receives each written command and returns the bytes the
    device would send back.
    """

    def __init__(self, responder: Callable[[str], str]) -> None:
        self.responder = responder
        self.written: list[str] = []
        self.closed = False
        self._buffer = b""

    @property
    def in_waiting(self) -> int:
        return len(self._buffer)

    def read(self, size: int = 1) -> bytes:
        out, self._buffer = self._buffer[:size], self._buffer[size:]
        return out

    def write(self, data: bytes) -> int:
        command = data.decode("ascii")
        self.written.append(command)
        self._buffer += self.responder(command).encode("ascii")
        return len(data)

    def flush(self) -> None:
        pass

    def reset_input_buffer(self) -> None:
        self._buffer = b""

    def reset_output_buffer(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


def controller_responder(command: str) -> str:
    """Acknowledge every command the way the controller firmware does."""
    status = {
        "jingle clear": "Jingle data cleared successfully.",
        "jingle write": "Jingle data written successfully.",
        "jingle play": "Jingle play started successfully.",
    }
    for prefix, text in status.items():
        if command.startswith(prefix):
            return f"{command}\r{text}\n\r"
    return f"{command}\rUnknown command\n\r"
