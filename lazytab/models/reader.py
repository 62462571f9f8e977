from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import count, islice
from typing import Any, Iterator, List, Optional, Tuple

from lazytab.models.sources import Source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeqRow:
    """A data row tagged with the sequence id assigned when it was read."""

    id: int
    values: Tuple[Any, ...]


def resume_rows(source: Source, offset: Optional[int] = None) -> Iterator[SeqRow]:
    """Re-derive the row sequence of ``source`` and skip the first ``offset`` rows.

    Sequence ids are assigned before skipping, so a resumed stream carries the
    same ids as the uninterrupted one.
    """
    rows = (SeqRow(i, values) for i, values in zip(count(), source.rows()))
    if offset:
        return islice(rows, offset, None)
    return rows


class SequenceReader:
    """Pull-based row source with at-least-once resumable checkpoints.

    ``checkpoint()`` returns the number of rows handed out so far; a new reader
    that ``recover``s from that offset continues with exactly the remaining rows.
    """

    def __init__(self, source: Source, *, checkpointing: bool = True):
        self.source = source
        self.checkpointing = checkpointing
        self._rows: Optional[Iterator[SeqRow]] = None
        self._offset = 0
        self._completed = False

    def recover(self, offset: Optional[int] = None) -> "SequenceReader":
        self._completed = False
        if offset:
            logger.info("recovering %s by dropping %d rows", self.source.uri, offset)
        self._rows = resume_rows(self.source, offset)
        self._offset = offset or 0
        return self

    def poll(self) -> Optional[SeqRow]:
        if self._rows is None:
            self.recover(None)
        row = next(self._rows, None)
        if row is None:
            self._completed = True
            return None
        self._offset += 1
        return row

    def poll_batch(self, size: int) -> List[SeqRow]:
        out: List[SeqRow] = []
        while len(out) < size:
            row = self.poll()
            if row is None:
                break
            out.append(row)
        return out

    def checkpoint(self) -> Optional[int]:
        if not self.checkpointing:
            return None
        return self._offset

    def completed(self) -> bool:
        return self._completed

    def __iter__(self) -> Iterator[SeqRow]:
        while True:
            row = self.poll()
            if row is None:
                return
            yield row
