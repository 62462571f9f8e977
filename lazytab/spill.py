"""Temporary on-disk storage for rows that do not fit in memory.

Records are pickled one after another into temporary files, the way petl's
external sort buffers its runs.
"""
from __future__ import annotations

import logging
import os
import pickle
import tempfile
from typing import Any, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)


def _iter_pickled(path: str) -> Iterator[Any]:
    with open(path, "rb") as f:
        while True:
            try:
                yield pickle.load(f)
            except EOFError:
                return


def write_run(records: Iterable[Any], *, tempdir: Optional[str] = None) -> str:
    """Write ``records`` to a new temporary file and return its path."""
    fd, path = tempfile.mkstemp(prefix="lazytab-run-", suffix=".pkl", dir=tempdir)
    with os.fdopen(fd, "wb") as f:
        for r in records:
            pickle.dump(r, f, protocol=pickle.HIGHEST_PROTOCOL)
    return path


def read_run(path: str) -> Iterator[Any]:
    return _iter_pickled(path)


def remove_files(paths: Iterable[str]) -> None:
    for p in paths:
        try:
            os.remove(p)
        except FileNotFoundError:
            pass


class SpillPartitions:
    """Hash partitions spilled to disk, one temporary file per bucket.

    Use as a context manager so the files are removed afterwards.
    """

    def __init__(self, num_buckets: int = 32, *, tempdir: Optional[str] = None):
        self.num_buckets = num_buckets
        self.tempdir = tempdir
        self._dir = tempfile.mkdtemp(prefix="lazytab-part-", dir=tempdir)
        self._files: List[Any] = [None] * num_buckets
        self.counts: List[int] = [0] * num_buckets

    def _path(self, bucket: int) -> str:
        return os.path.join(self._dir, f"{bucket:04d}.pkl")

    def bucket_of(self, key: Any) -> int:
        return hash(key) % self.num_buckets

    def add(self, key: Any, record: Any) -> None:
        b = self.bucket_of(key)
        f = self._files[b]
        if f is None:
            f = self._files[b] = open(self._path(b), "ab")
        pickle.dump(record, f, protocol=pickle.HIGHEST_PROTOCOL)
        self.counts[b] += 1

    def flush(self) -> None:
        for i, f in enumerate(self._files):
            if f is not None:
                f.close()
                self._files[i] = None

    def bucket(self, b: int) -> Iterator[Any]:
        if not self.counts[b]:
            return iter(())
        return _iter_pickled(self._path(b))

    def close(self) -> None:
        self.flush()
        remove_files(self._path(b) for b in range(self.num_buckets) if self.counts[b])
        try:
            os.rmdir(self._dir)
        except OSError:
            logger.debug("could not remove spill dir %s", self._dir)

    def __enter__(self) -> "SpillPartitions":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
