"""camrelay: ffmpeg relay control and recorded segment queries."""

__version__ = "0.1.0"
