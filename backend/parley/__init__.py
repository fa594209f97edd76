"""Parley: real-time multi-room chat coordination backend."""

__version__ = "0.1.0"
