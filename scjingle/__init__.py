"""SCJingle: MusicXML to controller jingle converter and serial downloader."""

__version__ = "0.1.0"
