"""Flight-log extraction and passenger identity resolution."""

__version__ = "0.1.0"
