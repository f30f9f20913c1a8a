import posixpath
from typing import Iterable, Iterator, Tuple
from zipfile import ZIP_STORED

import anyio.from_thread
from zipstream import ZipStream


def unique_arcnames(names: Iterable[str]) -> Iterator[str]:
    """Yield archive names, suffixing repeats as 'name (1).ext'."""
    seen = set()
    for name in names:
        candidate = name
        stem, ext = posixpath.splitext(name)
        i = 1
        while candidate in seen:
            candidate = f"{stem} ({i}){ext}"
            i += 1
        seen.add(candidate)
        yield candidate


def _object_chunks(store, key: str) -> Iterator[bytes]:
    # Runs in Starlette's worker thread while the response streams;
    # hop back onto the event loop for the async S3 read
    yield anyio.from_thread.run(store.get, key)


def stream_zip(store, entries: Iterable[Tuple[str, str]], base_prefix: str = "") -> ZipStream:
    """
    Lazily build a ZIP of storage objects.

    `entries` are (arcname, storage_key) pairs. Objects are fetched one at a
    time as the archive is iterated, so memory stays at one photo.
    """
    entries = list(entries)
    zs = ZipStream(compress_type=ZIP_STORED)  # photos are already compressed
    for arcname, (_, key) in zip(unique_arcnames(a for a, _ in entries), entries):
        name = f"{base_prefix}/{arcname}" if base_prefix else arcname
        zs.add(_object_chunks(store, key), name)
    return zs
