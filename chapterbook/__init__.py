"""Assemble uploaded audio chapters into a single chaptered .m4b audiobook."""

__version__ = "0.1.0"
