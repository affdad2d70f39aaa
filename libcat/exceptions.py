"""
Custom exception hierarchy for the library catalog.

Only NotReadyError and ScanInProgressError are allowed to escape a scan;
everything else is recovered per file.
"""


class LibCatError(Exception):
    """Base exception for all library catalog errors."""
    pass


class NotReadyError(LibCatError):
    """Raised when no workspace is unlocked (no store / thumbnail generator)."""
    pass


class ScanInProgressError(LibCatError):
    """Raised when a scan is requested while another one is running."""
    pass


class WalkError(LibCatError):
    """Raised when a directory cannot be enumerated."""
    pass


class GenerationError(LibCatError):
    """Raised when thumbnail generation or custom image import fails."""
    pass


class RemoteError(LibCatError):
    """Raised when the metadata service cannot be reached or answers badly."""
    pass


class NoMatchError(LibCatError):
    """Raised when the metadata service has no candidate for a title."""
    pass


class DatabaseError(LibCatError):
    """Raised when database operations fail."""
    pass


class ConstraintViolation(DatabaseError):
    """Raised when inserting a movie whose file path is already cataloged."""
    pass


class ProfileError(LibCatError):
    """Raised for invalid profile operations (unknown id, bad name, ...)."""
    pass


class MovieNotFoundError(LibCatError):
    """Raised when a movie id does not exist in the active library."""
    pass


class TagNotFoundError(LibCatError):
    """Raised when a tag id or name does not exist in the active library."""
    pass


class ConfigurationError(LibCatError):
    """Raised when a required setting (e.g. the TMDB API key) is missing or invalid."""
    pass


class NotLinkedError(LibCatError):
    """Raised when a TMDB operation needs a movie that is linked, and it is not."""
    pass
