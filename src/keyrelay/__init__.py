"""keyrelay - signaling relay for peer-to-peer connection setup."""

__version__ = "0.1.0"
