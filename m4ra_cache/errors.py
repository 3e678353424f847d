"""Exceptions raised by the cache layer.

Nothing here is retried internally. Failures from the weighting or matching
collaborators are not wrapped and propagate as raised.
"""
from pathlib import Path
from typing import Optional, Sequence


class M4raCacheError(Exception):
    """Base class carrying the city/mode/path context of a failure."""

    def __init__(
        self,
        message: str,
        city: Optional[str] = None,
        mode: Optional[str] = None,
        path: Optional[Path] = None,
    ):
        super().__init__(message)
        self.city = city
        self.mode = mode
        self.path = path


class MalformedNetwork(M4raCacheError, ValueError):
    """Network lacks the structural columns required to fingerprint or weight it."""


class ProfileTemplateMismatch(M4raCacheError):
    """Default weighting-profile document does not have the expected penalty block."""


class ProfileConflict(M4raCacheError):
    """Cached weighting profile holds other motorcar penalties than the ones requested."""


class CityMatchError(M4raCacheError):
    def __init__(self, message: str, city: str, candidates: Sequence[Path] = ()):
        super().__init__(message, city=city)
        self.candidates = list(candidates)


class AmbiguousCityMatch(CityMatchError):
    pass


class NoCityMatch(CityMatchError):
    pass


class MissingPrerequisiteArtifact(M4raCacheError, FileNotFoundError):
    """A per-mode weighted network needed downstream is not in the cache."""


class CacheClaimHeld(M4raCacheError):
    """Another run holds a fresh claim on the same (city, fingerprint)."""


__all__ = [
    "M4raCacheError",
    "MalformedNetwork",
    "ProfileTemplateMismatch",
    "ProfileConflict",
    "CityMatchError",
    "AmbiguousCityMatch",
    "NoCityMatch",
    "MissingPrerequisiteArtifact",
    "CacheClaimHeld",
]
