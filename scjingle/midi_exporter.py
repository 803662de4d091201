"""MidiExporter: writes a composition's two channel streams to a MIDI file for audition."""

from typing import BinaryIO

from midiutil import MIDIFile

from scjingle.channel_selector import Channel, StreamNote

# In midiutil Format 1 MIDI, track 0 is the conductor/tempo track.
# Note data written to track 0 is ignored by most players and notation apps.
TRACK_CONDUCTOR = 0  # Tempo only, never receives notes
TRACK_LEFT = 1       # Channel.LEFT
TRACK_RIGHT = 2      # Channel.RIGHT

CHANNEL_TRACKS: dict[Channel, int] = {Channel.LEFT: TRACK_LEFT, Channel.RIGHT: TRACK_RIGHT}

MIDI_PITCH_MIN = 0
MIDI_PITCH_MAX = 127


class MidiExporter:
    """
    Writes the LEFT and RIGHT streams of a jingle as a two-track MIDI file.

    Track layout (Format 1, 3 internal tracks)
    ------------------------------------------
    Track 0: conductor track (tempo only)
    Track 1: "Left"  channel stream
    Track 2: "Right" channel stream

    Stream times are already in quarter lengths, which midiutil treats as
    beats, so no conversion is needed beyond the tempo itself. Pitches are
    shifted by the octave adjustment and rounded to the nearest semitone,
    since MIDI has no fractional notes.
    """

    DEFAULT_VELOCITY = 100

    def __init__(self, tempo: int, octave_adjust: float = 0.0, velocity: int = DEFAULT_VELOCITY) -> None:
        self.tempo = tempo
        self.octave_adjust = octave_adjust
        self.velocity = velocity

    def _midi_pitch(self, pitch: float) -> int:
        shifted = int(round(pitch + 12 * self.octave_adjust))
        return min(max(shifted, MIDI_PITCH_MIN), MIDI_PITCH_MAX)

    def build(self, streams: dict[Channel, list[StreamNote]]) -> MIDIFile:
        midi = MIDIFile(numTracks=3, removeDuplicates=False, deinterleave=False)
        midi.addTempo(TRACK_CONDUCTOR, 0, self.tempo)

        for channel, track in CHANNEL_TRACKS.items():
            midi.addTrackName(track, 0, channel.name.title())
            for note in streams.get(channel, []):
                midi.addNote(
                    track=track,
                    channel=int(channel),
                    pitch=self._midi_pitch(note.pitch),
                    time=note.start,
                    duration=note.duration,
                    volume=self.velocity,
                )
        return midi

    def write(self, streams: dict[Channel, list[StreamNote]], fh: BinaryIO) -> None:
        self.build(streams).writeFile(fh)

    def export(self, streams: dict[Channel, list[StreamNote]], output_path: str) -> None:
        """
        Render both channel streams to a Standard MIDI File.

        Raises:
            ValueError: If the tempo is not positive.
            OSError: If the output file cannot be opened for writing.
        """
        if self.tempo <= 0:
            raise ValueError(f"Tempo must be positive, got {self.tempo}.")
        with open(output_path, "wb") as f:
            self.write(streams, f)
