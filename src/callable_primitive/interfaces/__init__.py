"""
Transport interfaces for the Callable Primitive System.

- HTTP: push/pull serial forms with requests

Transports move serial forms only. The callable doesn't know or care
how its source travelled; it is compiled again on arrival.
"""

from .http import TransportError, pull, push

__all__ = [
    "TransportError",
    "pull",
    "push",
]
