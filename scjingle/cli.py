"""SCJingle CLI entry point."""

import logging
import sys
from typing import Any, Callable, NoReturn

import click

from scjingle import __version__
from scjingle.channel_selector import NO_VOICE_STR, Channel
from scjingle.composition import Composition, bank_mem_usage, encode_bank
from scjingle.config import DEFAULT_BAUD_RATE, DEFAULT_TIMEOUT_S, LinkConfig
from scjingle.device_link import DeviceLink
from scjingle.errors import JingleError, LinkError, SizeExceeded, TransferError
from scjingle.jingle_encoder import MAX_EEPROM_BYTES, MAX_NUM_COMPS
from scjingle.midi_exporter import MidiExporter

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

#: ``--left`` value meaning "the first voice of the score".
FIRST_VOICE = "first"


def _fail(message: str) -> NoReturn:
    click.echo(f"  ERROR: {message}", err=True)
    sys.exit(1)


def _selection_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the range / channel / tempo options shared by score commands."""
    options = [
        click.option("--start", type=click.IntRange(min=0), default=None, help="First measure (0-based)."),
        click.option("--end", type=click.IntRange(min=0), default=None, help="Last measure (inclusive)."),
        click.option(
            "--left",
            default=FIRST_VOICE,
            show_default=True,
            metavar="VOICE",
            help=f"Voice for the left channel, '{FIRST_VOICE}' or 'none'.",
        ),
        click.option("--right", default="none", show_default=True, metavar="VOICE", help="Voice for the right channel."),
        click.option("--left-chord", type=click.IntRange(min=0), default=0, show_default=True,
                     help="Chord note for the left channel (0 = lowest)."),
        click.option("--right-chord", type=click.IntRange(min=0), default=0, show_default=True,
                     help="Chord note for the right channel (0 = lowest)."),
        click.option("--bpm", type=click.IntRange(min=1), default=None, help="Tempo in BPM. [default: 120]"),
        click.option("--octave", type=float, default=None, help="Octave adjustment, e.g. 1 or -0.5. [default: 0]"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _link_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.option("--port", "-p", required=True, envvar="SCJINGLE_PORT", help="Serial port of the controller."),
        click.option("--baud", type=int, default=DEFAULT_BAUD_RATE, show_default=True, envvar="SCJINGLE_BAUD"),
        click.option("--timeout", type=float, default=DEFAULT_TIMEOUT_S, show_default=True,
                     envvar="SCJINGLE_TIMEOUT", help="Seconds to wait for each response."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _resolve_voice(comp: Composition, value: str) -> str:
    if value.lower() == "none":
        return NO_VOICE_STR
    if value.lower() == FIRST_VOICE:
        return comp.get_voice_strs()[0]
    return value


def _load_composition(score: str, opts: dict[str, Any]) -> Composition:
    """Parse ``score`` and apply the shared selection options."""
    comp = Composition(score)
    comp.parse()

    if opts["start"] is not None:
        comp.set_meas_start_idx(opts["start"])
    if opts["end"] is not None:
        comp.set_meas_end_idx(opts["end"])

    comp.set_voice(Channel.LEFT, _resolve_voice(comp, opts["left"]))
    comp.set_voice(Channel.RIGHT, _resolve_voice(comp, opts["right"]))
    comp.set_chord_idx(Channel.LEFT, opts["left_chord"])
    comp.set_chord_idx(Channel.RIGHT, opts["right_chord"])

    if opts["bpm"] is not None:
        comp.set_bpm(opts["bpm"])
    if opts["octave"] is not None:
        comp.set_octave_adjust(opts["octave"])
    return comp


def _link_config(port: str, baud: int, timeout: float) -> LinkConfig:
    try:
        return LinkConfig(port=port, baudrate=baud, timeout=timeout)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _usage_line(num_bytes: int) -> str:
    return f"{num_bytes}/{MAX_EEPROM_BYTES} bytes used"


# ── CLI group ──────────────────────────────────────────────────────────────────

@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="scjingle")
@click.option("--verbose", "-v", is_flag=True, help="Log every serial exchange and setting change.")
def main(verbose: bool) -> None:
    """SCJingle: turn MusicXML scores into controller jingles."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)


# ── info subcommand ────────────────────────────────────────────────────────────

@main.command()
@click.argument("scores", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, readable=True))
@_selection_options
def info(scores: tuple[str, ...], **opts: Any) -> None:
    """
    Show measures, voices, chord counts and memory usage of one or more scores.

    With several SCORES the total is the usage of storing them all on the
    device together.
    """
    comps: list[Composition] = []
    try:
        for score in scores:
            comp = _load_composition(score, opts)
            comps.append(comp)

            start, end = comp.get_meas_start_idx(), comp.get_meas_end_idx()
            click.echo(f"{comp.name}")
            click.echo(f"  Measures : {comp.get_num_measures()}  (selected {start}-{end})")
            click.echo(f"  Voices   : {', '.join(comp.get_voice_strs())}")
            for channel in Channel:
                voice = comp.get_voice(channel)
                if voice == NO_VOICE_STR:
                    click.echo(f"  {channel.name:<5}    : {NO_VOICE_STR}")
                    continue
                num_chords = comp.get_num_chords(voice, start, end)
                click.echo(
                    f"  {channel.name:<5}    : {voice}  "
                    f"(chord {comp.get_chord_idx(channel)} of {num_chords}, "
                    f"{len(comp.resolve_stream(channel))} notes)"
                )
            click.echo(f"  Memory   : {_usage_line(comp.get_mem_usage())}")
    except JingleError as exc:
        _fail(str(exc))

    if len(comps) > 1:
        click.echo()
        click.echo(f"Total: {_usage_line(bank_mem_usage(comps))}")
        if len(comps) > MAX_NUM_COMPS:
            click.echo(f"  WARNING: only {MAX_NUM_COMPS} jingles fit on the device.", err=True)


# ── preview subcommand ─────────────────────────────────────────────────────────

@main.command()
@click.argument("score", type=click.Path(exists=True, dir_okay=False, readable=True))
@click.option("--output", "-o", default=None, metavar="PATH", help="Destination MIDI file. Defaults to <score>.mid.")
@_selection_options
def preview(score: str, output: str | None, **opts: Any) -> None:
    """Write the reduced LEFT/RIGHT channels of SCORE as a MIDI file to listen to."""
    try:
        comp = _load_composition(score, opts)
    except JingleError as exc:
        _fail(str(exc))

    resolved_output = output if output is not None else f"{comp.path.with_suffix('.mid')}"
    streams = {channel: comp.resolve_stream(channel) for channel in Channel}
    exporter = MidiExporter(tempo=comp.get_bpm(), octave_adjust=comp.get_octave_adjust())
    try:
        exporter.export(streams, resolved_output)
    except OSError as exc:
        _fail(f"Could not write MIDI file: {exc}")

    click.echo(f"Done!  Wrote '{resolved_output}'.")


# ── device subcommands ─────────────────────────────────────────────────────────

@main.command()
@_link_options
def clear(port: str, baud: int, timeout: float) -> None:
    """Erase all jingles stored on the controller."""
    try:
        with DeviceLink(_link_config(port, baud, timeout)) as link:
            link.clear()
    except JingleError as exc:
        _fail(f"Failed to clear Jingle Data. {exc}")
    click.echo("Jingle data cleared.")


@main.command()
@_link_options
@click.option("--slot", type=click.IntRange(0, MAX_NUM_COMPS - 1), default=0, show_default=True)
def play(port: str, baud: int, timeout: float, slot: int) -> None:
    """Play a jingle already stored on the controller."""
    try:
        with DeviceLink(_link_config(port, baud, timeout)) as link:
            link.play(slot)
    except JingleError as exc:
        _fail(f"Failed to send play command. {exc}")
    click.echo(f"Playing jingle {slot}.")


@main.command()
@click.argument("scores", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, readable=True))
@_link_options
@_selection_options
@click.option("--play/--no-play", "play_after", default=True, show_default=True,
              help="Play jingle 0 once the download finishes.")
def download(scores: tuple[str, ...], port: str, baud: int, timeout: float, play_after: bool, **opts: Any) -> None:
    """
    Clear the controller, download SCORES as jingles 0..N-1 and play jingle 0.

    The memory check happens before the port is opened, so an oversized
    jingle never touches the device.

    \b
    Examples:
      scjingle download song.musicxml -p /dev/ttyACM0 --left Melody --bpm 140
      scjingle download a.musicxml b.musicxml -p COM3 --no-play
    """
    config = _link_config(port, baud, timeout)
    try:
        comps = [_load_composition(score, opts) for score in scores]
        if len(comps) > MAX_NUM_COMPS:
            _fail(f"Too many Compositions ({len(comps)}); at most {MAX_NUM_COMPS} fit on the device.")

        needed = bank_mem_usage(comps)
        if needed > MAX_EEPROM_BYTES:
            raise SizeExceeded(needed=needed, limit=MAX_EEPROM_BYTES)
        image = encode_bank(comps) if len(comps) > 1 else None

        click.echo(f"scjingle v{__version__}")
        click.echo(f"  Port   : {port}")
        click.echo(f"  Memory : {_usage_line(needed)}")
        click.echo()

        with DeviceLink(config) as link:
            click.echo("[1/3] Clearing jingle data...")
            link.clear()

            click.echo("[2/3] Downloading...")
            if image is None:
                comps[0].download(link, 0)
            else:
                try:
                    link.transfer(0, image.data)
                except LinkError as exc:
                    raise TransferError(exc) from exc

            if play_after:
                click.echo("[3/3] Starting playback...")
                link.play(0)
    except TransferError as exc:
        _fail(f"Cannot download to {port}. {exc}. Clear the device before retrying.")
    except JingleError as exc:
        _fail(str(exc))

    click.echo()
    click.echo("Done!")
