from pathlib import Path


class StoreError(Exception):
    """Base class for every failure raised by the blob store core."""


class InvalidHashError(StoreError, ValueError):
    pass


class PathEscapeError(StoreError, ValueError):
    pass


class WriteFailureError(StoreError):
    """Staging failed. ``staging_dir`` is the area left behind, if one was created."""

    def __init__(self, message: str, *, staging_dir: Path | None = None) -> None:
        self.staging_dir = staging_dir
        super().__init__(message)


class MoveFailureError(StoreError):
    pass


class StagedContentMismatchError(StoreError):
    """The metadata record handed to commit does not describe the staged file."""


class HashCollisionMismatchError(StoreError):
    """A file already lives at the derived path but its size differs.

    The existing file is left untouched; deciding what to do with it is up to
    the caller.
    """

    def __init__(self, path: Path, *, existing_size: int, declared_size: int) -> None:
        self.path = path
        self.existing_size = existing_size
        self.declared_size = declared_size
        super().__init__(
            "hash collision with different file size "
            f"path={path} existing_size={existing_size} declared_size={declared_size}"
        )
