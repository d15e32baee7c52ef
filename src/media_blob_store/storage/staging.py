import base64
import contextlib
import hashlib
import os
import shutil
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from media_blob_store.errors import WriteFailureError
from media_blob_store.events import EventObserver, StoreEvent, emit

CONTENT_FILENAME = "content"
TMP_DIRNAME = "tmp"
DIR_MODE = 0o770
DEFAULT_CHUNK_SIZE = 64 * 1024

# Sentinel for "size unknown"; never a valid declared size.
UNKNOWN_SIZE = -1


@dataclass(frozen=True)
class StagedFile:
    content_hash: str
    size: int
    staging_dir: Path

    @property
    def content_path(self) -> Path:
        return self.staging_dir / CONTENT_FILENAME


def encode_digest(digest: bytes) -> str:
    """Unpadded URL-safe base64, safe to use as a file name."""
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def hash_file(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> tuple[str, int]:
    digest = hashlib.sha256()
    total = 0
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
            total += len(chunk)
    return encode_digest(digest.digest()), total


def make_dirs(path: Path) -> None:
    """Create ``path`` and every missing parent with ``DIR_MODE``.

    ``Path.mkdir(parents=True)`` only applies ``mode`` to the last level.
    """
    missing = []
    current = Path(path)
    while not current.exists():
        missing.append(current)
        current = current.parent
    for directory in reversed(missing):
        directory.mkdir(mode=DIR_MODE, exist_ok=True)
    if not Path(path).is_dir():
        raise NotADirectoryError(f"not a directory: {path}")


def create_staging_dir(base_path: Path) -> Path:
    tmp_root = Path(base_path) / TMP_DIRNAME
    try:
        make_dirs(tmp_root)
        return Path(tempfile.mkdtemp(dir=tmp_root))
    except OSError as exc:
        raise WriteFailureError(f"failed to create staging dir under {tmp_root}: {exc}") from exc


def write_temp_file(
    stream: BinaryIO,
    max_bytes: int,
    base_path: Path,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    fsync: bool = False,
    observer: EventObserver | None = None,
) -> StagedFile:
    """Stage at most ``max_bytes`` of ``stream`` under ``<base_path>/tmp``.

    Bytes past the limit are ignored rather than rejected: the returned hash
    and size describe exactly what was written. On failure the staging
    directory is left behind for the caller to remove; ``staged_upload``
    does that automatically.
    """
    if max_bytes < 0:
        raise ValueError(f"max_bytes must be >= 0, got {max_bytes}")

    staging_dir = create_staging_dir(base_path)
    target = staging_dir / CONTENT_FILENAME
    digest = hashlib.sha256()
    total = 0
    try:
        with target.open("xb", buffering=chunk_size) as handle:
            remaining = max_bytes
            while remaining > 0:
                chunk = stream.read(min(chunk_size, remaining))
                if not chunk:
                    break
                handle.write(chunk)
                digest.update(chunk)
                total += len(chunk)
                remaining -= len(chunk)
            handle.flush()
            if fsync:
                os.fsync(handle.fileno())
    except (OSError, ValueError) as exc:
        # ValueError covers reads from a stream the caller already closed.
        raise WriteFailureError(
            f"failed to write staged file {target}: {type(exc).__name__}: {exc}",
            staging_dir=staging_dir,
        ) from exc

    staged = StagedFile(
        content_hash=encode_digest(digest.digest()),
        size=total,
        staging_dir=staging_dir,
    )
    emit(observer, StoreEvent("staged", staging_dir, f"bytes={total}"))
    return staged


def remove_dir(path: Path, observer: EventObserver | None = None) -> None:
    """Best-effort recursive removal; failures go to the observer, never up."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        emit(observer, StoreEvent("cleanup_failed", path, "failed to remove directory", exc))


@contextlib.contextmanager
def staged_upload(
    stream: BinaryIO,
    max_bytes: int,
    base_path: Path,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    fsync: bool = False,
    observer: EventObserver | None = None,
) -> Iterator[StagedFile]:
    """Stage ``stream`` and always remove the staging area on exit."""
    try:
        staged = write_temp_file(
            stream,
            max_bytes,
            base_path,
            chunk_size=chunk_size,
            fsync=fsync,
            observer=observer,
        )
    except WriteFailureError as exc:
        if exc.staging_dir is not None:
            remove_dir(exc.staging_dir, observer)
        raise

    try:
        yield staged
    finally:
        remove_dir(staged.staging_dir, observer)
