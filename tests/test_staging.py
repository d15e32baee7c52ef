import hashlib
import io
import os
import stat
from pathlib import Path

import pytest

from media_blob_store.errors import WriteFailureError
from media_blob_store.events import StoreEvent
from media_blob_store.storage import staging
from media_blob_store.storage.staging import (
    CONTENT_FILENAME,
    encode_digest,
    hash_file,
    make_dirs,
    remove_dir,
    staged_upload,
    write_temp_file,
)

EMPTY_SHA256 = "47DEQpj8HBSa-_TImW-5JCeuQeRkm5NMpJWZG3hSuFU"


class _BrokenStream(io.RawIOBase):
    def __init__(self, good: bytes) -> None:
        self.good = good

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if self.good:
            out, self.good = self.good[:size], self.good[size:]
            return out
        raise ConnectionResetError("peer went away")


def test_writes_content_and_hash(tmp_path: Path) -> None:
    data = os.urandom(200_000)
    staged = write_temp_file(io.BytesIO(data), 1_000_000, tmp_path, chunk_size=4096)

    assert staged.size == len(data)
    assert staged.content_hash == encode_digest(hashlib.sha256(data).digest())
    assert staged.content_path.read_bytes() == data
    assert staged.staging_dir.parent == tmp_path / "tmp"
    assert [p.name for p in staged.staging_dir.iterdir()] == [CONTENT_FILENAME]


def test_truncates_at_max_bytes(tmp_path: Path) -> None:
    data = b"0123456789"
    staged = write_temp_file(io.BytesIO(data), 5, tmp_path)

    assert staged.size == 5
    assert staged.content_path.read_bytes() == b"01234"
    assert staged.content_hash == encode_digest(hashlib.sha256(b"01234").digest())


def test_empty_stream(tmp_path: Path) -> None:
    staged = write_temp_file(io.BytesIO(b""), 10, tmp_path)
    assert staged.size == 0
    assert staged.content_hash == EMPTY_SHA256


def test_hash_is_url_safe_and_unpadded(tmp_path: Path) -> None:
    staged = write_temp_file(io.BytesIO(b"hello world"), 100, tmp_path)
    assert len(staged.content_hash) == 43
    assert not set(staged.content_hash) & set("+/=")


def test_negative_limit_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        write_temp_file(io.BytesIO(b"x"), -1, tmp_path)


def test_concurrent_staging_dirs_are_unique(tmp_path: Path) -> None:
    first = write_temp_file(io.BytesIO(b"same"), 10, tmp_path)
    second = write_temp_file(io.BytesIO(b"same"), 10, tmp_path)
    assert first.staging_dir != second.staging_dir


def test_read_error_leaves_staging_dir(tmp_path: Path) -> None:
    with pytest.raises(WriteFailureError) as excinfo:
        write_temp_file(_BrokenStream(b"abc"), 100, tmp_path, chunk_size=2)

    assert isinstance(excinfo.value.__cause__, ConnectionResetError)
    assert excinfo.value.staging_dir is not None
    assert excinfo.value.staging_dir.exists()


def test_closed_stream_is_a_write_failure(tmp_path: Path) -> None:
    stream = io.BytesIO(b"abc")
    stream.close()
    with pytest.raises(WriteFailureError):
        write_temp_file(stream, 100, tmp_path)


def test_staged_upload_removes_dir(tmp_path: Path) -> None:
    with staged_upload(io.BytesIO(b"abc"), 100, tmp_path) as staged:
        assert staged.content_path.exists()
    assert not staged.staging_dir.exists()


def test_staged_upload_removes_dir_on_write_failure(tmp_path: Path) -> None:
    with pytest.raises(WriteFailureError) as excinfo:
        with staged_upload(_BrokenStream(b"abc"), 100, tmp_path, chunk_size=2):
            pass
    assert not excinfo.value.staging_dir.exists()
    assert list((tmp_path / "tmp").iterdir()) == []


def test_staged_upload_removes_dir_on_caller_error(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError):
        with staged_upload(io.BytesIO(b"abc"), 100, tmp_path) as staged:
            raise RuntimeError("boom")
    assert not staged.staging_dir.exists()


def test_remove_dir_reports_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "stuck"
    target.mkdir()
    events: list[StoreEvent] = []

    def _fail(path: Path) -> None:
        raise PermissionError("denied")

    monkeypatch.setattr(staging.shutil, "rmtree", _fail)
    remove_dir(target, events.append)

    assert [e.kind for e in events] == ["cleanup_failed"]
    assert isinstance(events[0].error, PermissionError)


def test_remove_dir_missing_is_quiet(tmp_path: Path) -> None:
    events: list[StoreEvent] = []
    remove_dir(tmp_path / "nope", events.append)
    assert events == []


def test_hash_file_matches_writer(tmp_path: Path) -> None:
    staged = write_temp_file(io.BytesIO(b"payload"), 100, tmp_path)
    assert hash_file(staged.content_path, chunk_size=3) == (staged.content_hash, 7)


def test_make_dirs_applies_mode_to_every_level(tmp_path: Path) -> None:
    target = tmp_path / "a" / "b" / "c"
    old_umask = os.umask(0o022)
    try:
        make_dirs(target)
    finally:
        os.umask(old_umask)

    for directory in (tmp_path / "a", tmp_path / "a" / "b", target):
        assert stat.S_IMODE(directory.stat().st_mode) == 0o750


def test_make_dirs_blocked_by_file(tmp_path: Path) -> None:
    (tmp_path / "a").write_bytes(b"in the way")
    with pytest.raises(NotADirectoryError):
        make_dirs(tmp_path / "a")
    with pytest.raises(OSError):
        make_dirs(tmp_path / "a" / "b")
