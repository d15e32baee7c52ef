import os
from pathlib import Path

from media_blob_store.errors import InvalidHashError, PathEscapeError

MAX_HASH_LENGTH = 255
SEPARATORS = {"/", os.sep, os.altsep} - {None}


def get_path_from_hash(content_hash: str, base_path: Path | str) -> Path:
    """Map a content hash to its sharded location under ``base_path``.

    Up to two leading characters become single-character subdirectories and
    the remainder is the file name, so ``qwerty`` lands at ``q/w/erty``.
    Never touches the filesystem.
    """
    hash_len = len(content_hash)
    if hash_len < 1:
        raise InvalidHashError("invalid hash: empty")
    if hash_len > MAX_HASH_LENGTH:
        raise InvalidHashError(
            f"invalid hash: too long (max {MAX_HASH_LENGTH} characters) length={hash_len}"
        )
    if "\x00" in content_hash:
        raise InvalidHashError(f"invalid hash: contains NUL {content_hash!r}")

    if hash_len < 2:
        parts = [content_hash]
    elif hash_len < 3:
        parts = [content_hash[0], content_hash[1:]]
    else:
        parts = [content_hash[0], content_hash[1], content_hash[2:]]

    base = os.path.abspath(os.fspath(base_path))
    # Join as plain strings so an absolute-looking piece cannot reset the root.
    candidate = os.path.abspath("/".join([base, *parts]))

    if not _is_strict_descendant(candidate, base):
        raise PathEscapeError(f"invalid path (not within base {base}): {candidate}")
    # Contained but still able to reach into tmp/ or other shards.
    if any(sep in content_hash for sep in SEPARATORS) or any(p in (".", "..") for p in parts):
        raise InvalidHashError(f"invalid hash: contains path segments {content_hash!r}")
    return Path(candidate)


def _is_strict_descendant(candidate: str, base: str) -> bool:
    if candidate == base:
        return False
    try:
        return os.path.commonpath([candidate, base]) == base
    except ValueError:
        return False
