"""Inspect Portable Executable images: byte buffers, address mapping, section headers, security and TLS directories, ordinal lookups."""

__version__ = "0.6.0"