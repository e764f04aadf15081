from __future__ import annotations


class GongganError(Exception):
    """Base class for errors raised by gonggan."""


class ArchiveFormatError(GongganError):
    """A space archive is missing a required entry or cannot be parsed."""


class PayloadMissingWarning(UserWarning):
    """A manifest record names binary content that the archive does not contain."""


class GenerationError(GongganError):
    """The model collaborator failed or returned nothing usable."""


class ValidationError(GongganError, ValueError):
    """User input violates a constraint; nothing was changed."""
