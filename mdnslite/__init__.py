"""Multicast DNS service zones, responder and service discovery client."""

__version__ = "0.1.0"
__all__ = ["zone", "server", "client"]