"""Codec, node maps, units, signatures, unit store, reliable multicast, terminal and network hub for BFT consensus."""

__version__ = "0.1.0"

__all__ = ["codec", "nodes", "units", "signed", "store", "rmc", "terminal", "network"]