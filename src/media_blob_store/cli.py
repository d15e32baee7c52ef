import logging
import sys
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from media_blob_store.errors import StoreError
from media_blob_store.settings import StoreSettings
from media_blob_store.storage.blob_store import BlobStore

app = typer.Typer()

# Settings errors and an unusable base directory are reported, not traced.
CLI_ERRORS = (StoreError, OSError, ValidationError)


@app.callback()
def main() -> None:
    """Content-addressed media blob store CLI."""


def _open_store() -> BlobStore:
    settings = StoreSettings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )
    return BlobStore.from_settings(settings)


def _fail(exc: Exception) -> typer.Exit:
    typer.echo(f"{type(exc).__name__}: {exc}", err=True)
    return typer.Exit(code=1)


@app.command("put")
def put(
    source: Annotated[str, typer.Argument(help="File to store, or '-' for stdin.")],
) -> None:
    try:
        store = _open_store()
        if source == "-":
            blob = store.put(typer.get_binary_stream("stdin"))
        else:
            with Path(source).open("rb") as handle:
                blob = store.put(handle)
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc

    typer.echo(
        f"hash={blob.content_hash} size={blob.size} "
        f"duplicate={blob.is_duplicate} path={blob.path}"
    )


@app.command("path")
def path(content_hash: Annotated[str, typer.Argument()]) -> None:
    try:
        store = _open_store()
        typer.echo(str(store.path_for(content_hash)))
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc


@app.command("verify")
def verify(content_hash: Annotated[str, typer.Argument()]) -> None:
    try:
        store = _open_store()
        ok = store.verify(content_hash)
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc

    typer.echo("ok" if ok else "corrupt")
    if not ok:
        raise typer.Exit(code=1)


@app.command("sweep")
def sweep(
    older_than: Annotated[float, typer.Option("--older-than")] = 3600.0,
) -> None:
    try:
        store = _open_store()
        removed = store.sweep_staging(older_than)
    except CLI_ERRORS as exc:
        raise _fail(exc) from exc
    typer.echo(f"removed={removed}")


if __name__ == "__main__":
    app()
