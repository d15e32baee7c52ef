import io
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from media_blob_store.events import EventObserver, StoreEvent, emit
from media_blob_store.settings import StoreSettings
from media_blob_store.storage.commit import MediaMetadata, move_file_with_hash_check
from media_blob_store.storage.paths import get_path_from_hash
from media_blob_store.storage.staging import (
    DEFAULT_CHUNK_SIZE,
    TMP_DIRNAME,
    hash_file,
    make_dirs,
    remove_dir,
    staged_upload,
)


@dataclass(frozen=True)
class StoredBlob:
    content_hash: str
    size: int
    path: Path
    is_duplicate: bool


class BlobStore:
    def __init__(
        self,
        root: Path,
        *,
        max_file_size_bytes: int,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        fsync: bool = False,
        verify_staged_hash: bool = False,
        observer: EventObserver | None = None,
    ) -> None:
        self.root = Path(root).absolute()
        self.max_file_size_bytes = max_file_size_bytes
        self.chunk_size = chunk_size
        self.fsync = fsync
        self.verify_staged_hash = verify_staged_hash
        self.observer = observer
        make_dirs(self.root)

    @classmethod
    def from_settings(
        cls, settings: StoreSettings, observer: EventObserver | None = None
    ) -> "BlobStore":
        return cls(
            settings.base_path,
            max_file_size_bytes=settings.max_file_size_bytes,
            chunk_size=settings.chunk_size,
            fsync=settings.fsync,
            verify_staged_hash=settings.verify_staged_hash,
            observer=observer,
        )

    @property
    def staging_root(self) -> Path:
        return self.root / TMP_DIRNAME

    def put(self, stream: BinaryIO) -> StoredBlob:
        """Store at most ``max_file_size_bytes`` of ``stream``."""
        with staged_upload(
            stream,
            self.max_file_size_bytes,
            self.root,
            chunk_size=self.chunk_size,
            fsync=self.fsync,
            observer=self.observer,
        ) as staged:
            result = move_file_with_hash_check(
                staged.staging_dir,
                MediaMetadata.from_staged(staged),
                self.root,
                observer=self.observer,
                verify_hash=self.verify_staged_hash,
            )
        return StoredBlob(
            content_hash=staged.content_hash,
            size=staged.size,
            path=result.final_path,
            is_duplicate=result.is_duplicate,
        )

    def put_bytes(self, content: bytes) -> StoredBlob:
        return self.put(io.BytesIO(content))

    def path_for(self, content_hash: str) -> Path:
        return get_path_from_hash(content_hash, self.root)

    def exists(self, content_hash: str) -> bool:
        return self.path_for(content_hash).is_file()

    def open(self, content_hash: str) -> BinaryIO:
        return self.path_for(content_hash).open("rb")

    def verify(self, content_hash: str) -> bool:
        """Re-hash the stored file and compare it with the hash it is stored under."""
        actual, _ = hash_file(self.path_for(content_hash), self.chunk_size)
        return actual == content_hash

    def sweep_staging(self, older_than_seconds: float) -> int:
        """Remove staging areas left behind by crashed or failed cleanups."""
        if not self.staging_root.is_dir():
            return 0
        cutoff = time.time() - older_than_seconds
        removed = 0
        for entry in self.staging_root.iterdir():
            if not entry.is_dir():
                continue
            try:
                mtime = _last_modified(entry)
            except FileNotFoundError:
                continue
            if mtime > cutoff:
                continue
            remove_dir(entry, self.observer)
            if not entry.exists():
                removed += 1
                emit(self.observer, StoreEvent("swept", entry))
        return removed


def _last_modified(directory: Path) -> float:
    """Newest mtime of ``directory`` or anything inside it.

    Writes to ``content`` do not touch the directory's own mtime.
    """
    newest = directory.stat().st_mtime
    for child in directory.rglob("*"):
        try:
            newest = max(newest, child.stat().st_mtime)
        except FileNotFoundError:
            continue
    return newest
