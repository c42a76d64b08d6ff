"""Glimpse exception hierarchy."""

from __future__ import annotations


class GlimpseError(Exception):
    """Base class for errors raised by Glimpse."""


class CollaboratorUnavailableError(GlimpseError):
    """An external collaborator is not configured (missing key, missing backend)."""


class InvalidMediaError(GlimpseError, ValueError):
    """A media payload was rejected at the boundary."""


class DuplicateStreamError(GlimpseError, ValueError):
    """A caller-chosen stream id is empty or already belongs to another stream."""
