"""
Error taxonomy for chunkpress.

Filesystem failures are not wrapped: they surface as the builtin
``OSError`` family and are fatal to the operation that raised them.
"""


class PressError(Exception):
    """Base class for every user-facing chunkpress failure."""


class ConfigError(PressError):
    """Invalid or missing configuration (chunk size, API key, prompt...)."""


class FileTooLarge(PressError):
    """A file exceeded the byte ceiling at chunk time."""

    def __init__(self, path: str, size: int, limit: int):
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(
            f"File too large: {path} ({size} bytes, max {limit} bytes)")


class PatchFormatError(PressError):
    """The model response could not be decoded at all."""


class UnresolvedPath(PressError):
    """A file named in the patch has no on-disk counterpart."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No original file matches patch path: {path}")


class NoChangesToRollback(PressError):
    """Rollback was requested but no rollback record exists."""

    def __init__(self, message: str = "No changes to rollback"):
        super().__init__(message)


class NoCheckpointToRevert(PressError):
    """Revert was requested but no checkpoint record exists."""

    def __init__(self, message: str = "No checkpoint to revert to"):
        super().__init__(message)
