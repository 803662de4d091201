"""Unit tests for ChannelSelector chord counting and chord reduction."""

import pytest

from scjingle.channel_selector import NO_VOICE_STR, ChannelSelector, StreamNote
from scjingle.errors import ParseError
from scjingle.score_models import Measure, Note, ScoreModel


def _score(*measures: dict[str, list[Note]], length: float = 4.0) -> ScoreModel:
    names: list[str] = []
    for voices in measures:
        names.extend(name for name in voices if name not in names)
    return ScoreModel(
        measures=tuple(
            Measure(index=i, length=length, voices={k: tuple(v) for k, v in voices.items()})
            for i, voices in enumerate(measures)
        ),
        voice_names=tuple(names),
    )


def _triad(start: float = 0.0, duration: float = 4.0) -> list[Note]:
    return [Note(p, start, duration) for p in (67.0, 60.0, 64.0)]


def _assert_monophonic(stream: list[StreamNote]) -> None:
    for prev, nxt in zip(stream, stream[1:]):
        assert prev.end <= nxt.start


# ── chord_count ────────────────────────────────────────────────────────────────

def test_chord_count_of_triad_is_three() -> None:
    selector = ChannelSelector(_score({"Piano": _triad()}))
    assert selector.chord_count("Piano", 0, 0) == 3


def test_chord_count_is_maximum_over_range() -> None:
    score = _score({"Piano": [Note(60, 0, 4)]}, {"Piano": _triad()}, {"Piano": [Note(62, 0, 4)]})
    selector = ChannelSelector(score)
    assert selector.chord_count("Piano", 0, 0) == 1
    assert selector.chord_count("Piano", 0, 2) == 3
    assert selector.chord_count("Piano", 2, 2) == 1


def test_chord_count_includes_sustained_notes() -> None:
    score = _score({"Piano": [Note(48, 0, 4), Note(72, 1, 1), Note(76, 2, 1)]})
    assert ChannelSelector(score).chord_count("Piano", 0, 0) == 2


def test_chord_count_zero_without_notes_in_range() -> None:
    score = _score({"Piano": [Note(60, 0, 4)]}, {"Bass": [Note(36, 0, 4)]})
    selector = ChannelSelector(score)
    assert selector.chord_count("Piano", 1, 1) == 0
    assert selector.chord_count(NO_VOICE_STR, 0, 1) == 0


# ── resolve_stream ─────────────────────────────────────────────────────────────

def test_single_notes_pass_through() -> None:
    score = _score({"Melody": [Note(60, 0, 1), Note(62, 1, 1), Note(64, 2, 2)]})
    stream = ChannelSelector(score).resolve_stream("Melody", 0, 0, 0)
    assert stream == [StreamNote(60, 0, 1), StreamNote(62, 1, 1), StreamNote(64, 2, 2)]


def test_chord_index_ranks_by_ascending_pitch() -> None:
    selector = ChannelSelector(_score({"Piano": _triad()}))
    assert [selector.resolve_stream("Piano", 0, 0, k)[0].pitch for k in range(3)] == [60, 64, 67]


def test_chord_index_beyond_chord_size_plays_lowest_note() -> None:
    score = _score({"Piano": _triad(0, 2) + [Note(55, 2, 1), Note(59, 2, 1), Note(62, 3, 1)]})
    stream = ChannelSelector(score).resolve_stream("Piano", 0, 0, 2)
    # Triad honours index 2; the dyad and the single note fall back to their lowest note.
    assert [n.pitch for n in stream] == [67, 55, 62]


def test_out_of_range_index_equals_lowest_at_every_instant() -> None:
    score = _score({"Piano": _triad()}, {"Piano": [Note(50, 0, 2), Note(53, 0, 2), Note(57, 2, 2)]})
    selector = ChannelSelector(score)
    assert selector.resolve_stream("Piano", 0, 1, 7) == selector.resolve_stream("Piano", 0, 1, 0)


def test_sustained_note_is_not_split_when_selected() -> None:
    score = _score({"Piano": [Note(48, 0, 4), Note(72, 1, 1)]})
    stream = ChannelSelector(score).resolve_stream("Piano", 0, 0, 0)
    assert stream == [StreamNote(48, 0, 4)]


def test_higher_note_interrupts_sustained_note() -> None:
    score = _score({"Piano": [Note(48, 0, 4), Note(72, 1, 1)]})
    stream = ChannelSelector(score).resolve_stream("Piano", 0, 0, 1)
    # Once the upper note ends the chord index falls back to the held bass.
    assert stream == [StreamNote(48, 0, 1), StreamNote(72, 1, 1), StreamNote(48, 2, 2)]
    _assert_monophonic(stream)


def test_held_note_continues_after_shorter_lower_note() -> None:
    score = _score({"Piano": [Note(60, 0, 1), Note(67, 0, 4)]})
    stream = ChannelSelector(score).resolve_stream("Piano", 0, 0, 0)
    assert stream == [StreamNote(60, 0, 1), StreamNote(67, 1, 3)]


def test_every_sounding_instant_is_covered() -> None:
    score = _score({"Piano": [Note(60, 0, 1), Note(64, 0, 2), Note(67, 0, 4)]})
    selector = ChannelSelector(score)
    for chord_idx in range(4):
        stream = selector.resolve_stream("Piano", 0, 0, chord_idx)
        assert stream[0].start == 0
        assert stream[-1].end == 4
        assert sum(n.duration for n in stream) == 4
        _assert_monophonic(stream)


def test_rests_between_notes_stay_silent() -> None:
    score = _score({"Melody": [Note(60, 0, 1), Note(62, 3, 1)]})
    stream = ChannelSelector(score).resolve_stream("Melody", 0, 0, 0)
    assert stream == [StreamNote(60, 0, 1), StreamNote(62, 3, 1)]


def test_triplet_offsets_do_not_overlap() -> None:
    third = 1 / 3
    notes = [Note(60 + i, i * third, third) for i in range(3)]
    stream = ChannelSelector(_score({"Melody": notes})).resolve_stream("Melody", 0, 0, 0)
    assert [n.pitch for n in stream] == [60, 61, 62]


def test_stream_is_monophonic_for_every_chord_index() -> None:
    score = _score(
        {"Piano": [Note(48, 0, 4), Note(60, 0, 1), Note(64, 0.5, 2), Note(67, 1, 3)]},
        {"Piano": _triad(0, 3) + [Note(72, 1, 0.5)]},
    )
    selector = ChannelSelector(score)
    for chord_idx in range(5):
        _assert_monophonic(selector.resolve_stream("Piano", 0, 1, chord_idx))


def test_stream_times_are_relative_to_range_start() -> None:
    score = _score({"Melody": [Note(60, 1, 1)]}, {"Melody": [Note(62, 2, 1)]})
    selector = ChannelSelector(score)
    assert selector.resolve_stream("Melody", 0, 1, 0) == [StreamNote(60, 1, 1), StreamNote(62, 6, 1)]
    assert selector.resolve_stream("Melody", 1, 1, 0) == [StreamNote(62, 2, 1)]


def test_uneven_measure_lengths_accumulate() -> None:
    score = ScoreModel(
        measures=(
            Measure(0, 1.0, {"Melody": (Note(67, 0, 1),)}),
            Measure(1, 3.0, {"Melody": (Note(60, 0, 3),)}),
        ),
        voice_names=("Melody",),
    )
    stream = ChannelSelector(score).resolve_stream("Melody", 0, 1, 0)
    assert [n.start for n in stream] == [0.0, 1.0]


def test_no_voice_yields_empty_stream() -> None:
    selector = ChannelSelector(_score({"Melody": [Note(60, 0, 4)]}))
    assert selector.resolve_stream(NO_VOICE_STR, 0, 0, 0) == []


def test_score_model_rejects_zero_length_note() -> None:
    with pytest.raises(ParseError, match="without duration"):
        _score({"Melody": [Note(60, 0, 0)]})
