"""Forwarding DNS server answering from a local record table and racing upstream resolvers."""

__version__ = "0.1.0"