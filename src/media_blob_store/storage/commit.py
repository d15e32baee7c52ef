"""Publishing staged uploads into the content-addressed tree.

The base directory is the only state shared between concurrent uploads and
there are no locks around it. Correctness rests on two things: publication is
a single atomic no-replace operation (hard link into place, which fails with
``EEXIST`` instead of overwriting), and every writer that finds the
destination already present re-checks its size before calling the upload a
duplicate. A writer that loses the race between probing and publishing sees
``FileExistsError`` and re-runs that check instead of failing.

Staging areas live under ``<base>/tmp`` so source and destination are always
on the same filesystem. Nothing falls back to copy and delete when they are
not; that surfaces as ``MoveFailureError``.
"""

import errno
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from media_blob_store.errors import (
    HashCollisionMismatchError,
    MoveFailureError,
    StagedContentMismatchError,
)
from media_blob_store.events import EventObserver, StoreEvent, emit
from media_blob_store.storage.paths import get_path_from_hash
from media_blob_store.storage.staging import (
    CONTENT_FILENAME,
    StagedFile,
    hash_file,
    make_dirs,
    remove_dir,
)


@dataclass(frozen=True)
class MediaMetadata:
    content_hash: str
    size: int

    @classmethod
    def from_staged(cls, staged: StagedFile) -> "MediaMetadata":
        return cls(content_hash=staged.content_hash, size=staged.size)


@dataclass(frozen=True)
class CommitResult:
    final_path: Path
    is_duplicate: bool


def move_file_with_hash_check(
    staging_dir: Path,
    metadata: MediaMetadata,
    base_path: Path,
    *,
    observer: EventObserver | None = None,
    verify_hash: bool = False,
) -> CommitResult:
    """Move ``<staging_dir>/content`` to the path derived from its hash.

    An existing file of the same size at that path makes this a duplicate
    and nothing is moved. An existing file of a different size raises
    ``HashCollisionMismatchError`` and is left in place. ``staging_dir`` is
    removed in every outcome.
    """
    try:
        return _commit(Path(staging_dir), metadata, base_path, observer, verify_hash)
    finally:
        remove_dir(Path(staging_dir), observer)


def _commit(
    staging_dir: Path,
    metadata: MediaMetadata,
    base_path: Path,
    observer: EventObserver | None,
    verify_hash: bool,
) -> CommitResult:
    final_path = get_path_from_hash(metadata.content_hash, base_path)
    source = staging_dir / CONTENT_FILENAME
    _check_staged(source, metadata, verify_hash)

    result = _check_existing(final_path, metadata, observer)
    if result is not None:
        return result

    try:
        _publish(source, final_path)
    except FileExistsError:
        emit(observer, StoreEvent("race", final_path, "destination appeared before publish"))
        result = _check_existing(final_path, metadata, observer)
        if result is not None:
            return result
        raise MoveFailureError(
            f"destination vanished after failed publish path={final_path}"
        ) from None

    emit(observer, StoreEvent("committed", final_path, f"bytes={metadata.size}"))
    return CommitResult(final_path=final_path, is_duplicate=False)


def _check_staged(source: Path, metadata: MediaMetadata, verify_hash: bool) -> None:
    if metadata.size < 0:
        raise StagedContentMismatchError(f"declared size is not valid size={metadata.size}")
    try:
        staged_size = source.stat().st_size
    except OSError as exc:
        raise StagedContentMismatchError(f"staged content missing path={source}: {exc}") from exc
    if staged_size != metadata.size:
        raise StagedContentMismatchError(
            f"staged size differs from declared size "
            f"staged_size={staged_size} declared_size={metadata.size}"
        )
    if verify_hash:
        staged_hash, _ = hash_file(source)
        if staged_hash != metadata.content_hash:
            raise StagedContentMismatchError(
                f"staged hash differs from declared hash "
                f"staged_hash={staged_hash} declared_hash={metadata.content_hash}"
            )


def _check_existing(
    final_path: Path,
    metadata: MediaMetadata,
    observer: EventObserver | None,
) -> CommitResult | None:
    """Return a duplicate result, raise on mismatch, or None when absent."""
    try:
        st = final_path.stat()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise MoveFailureError(f"failed to probe destination path={final_path}: {exc}") from exc

    if not stat.S_ISREG(st.st_mode):
        raise MoveFailureError(f"destination exists and is not a regular file path={final_path}")

    if st.st_size != metadata.size:
        error = HashCollisionMismatchError(
            final_path,
            existing_size=st.st_size,
            declared_size=metadata.size,
        )
        emit(observer, StoreEvent("collision", final_path, str(error)))
        raise error

    emit(observer, StoreEvent("duplicate", final_path, f"bytes={st.st_size}"))
    return CommitResult(final_path=final_path, is_duplicate=True)


def _publish(source: Path, final_path: Path) -> None:
    try:
        make_dirs(final_path.parent)
    except OSError as exc:
        raise MoveFailureError(f"failed to make directory {final_path.parent}: {exc}") from exc

    try:
        os.link(source, final_path)
    except FileExistsError:
        raise
    except OSError as exc:
        if exc.errno == errno.EXDEV:
            msg = (
                "staging area and destination are on different filesystems "
                f"src={source} dst={final_path}"
            )
        else:
            msg = f"failed to move file to final destination {final_path}: {exc}"
        raise MoveFailureError(msg) from exc
    # The staged name disappears with the staging directory.
