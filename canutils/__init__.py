"""CAN bus tools: bit timing calculation, a broadcast manager server and a full-duplex frame test."""

__version__ = "0.1.0"