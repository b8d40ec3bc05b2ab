"""Exceptions for building and serializing WFS requests.

All errors are raised synchronously to the caller.
They extend :class:`ValueError`, as each one reports input
that can't be turned into a valid request representation.
"""

from __future__ import annotations


class ExternalParsingError(ValueError):
    """Raise a ValueError for a parsing problem.
    This is raised for malformed XML sources, and unresolvable QName prefixes.
    """


class MissingContainerElement(ValueError):
    """The element that should receive a new child is absent.
    For example, adding a query to a document without a ``<wfs:GetFeature>`` element.
    """


class KVPMappingNotSupported(ValueError):
    """The request (or a part of it) has no Key-Value-Pair equivalent."""

    def __init__(self, text: str, locator: str | None = None):
        super().__init__(text)
        self.text = text
        self.locator = locator
