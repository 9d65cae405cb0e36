from __future__ import annotations


class KFilterError(Exception):
    """Base class for errors raised by kfilter components."""


class TransportError(KFilterError):
    """The upstream provider could not be reached or answered with a non-200 status."""


class MalformedPayload(KFilterError):
    """The upstream answered, but the body is not the expected wrapper/JSON shape."""


class StoreError(KFilterError):
    """A persistence read or write failed. Safe to retry."""
