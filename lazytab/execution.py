"""Local execution backend.

A plan is evaluated in one streaming pass: a SequenceReader hands out batches
of rows, a thread pool runs the per-row program on them, and the results are
written to the sink as they come back. Group-by and join stages hash-partition
their records into temporary files first, so only one partition has to fit in
memory at a time.
"""
from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from lazytab.config import ComputeOptions
from lazytab.errors import OperationError, SchemaError
from lazytab.models.join import JoinedTable, JoinSide
from lazytab.models.plan import Plan
from lazytab.models.reader import SeqRow, SequenceReader
from lazytab.models.report import ExecutionReport, RowFailure
from lazytab.models.sinks import Sink
from lazytab.models.stages import GroupAccumulator, JoinIndex, group_record
from lazytab.models.table import Table
from lazytab.spill import SpillPartitions

logger = logging.getLogger(__name__)

DEFAULT_PARTITIONS = 32

BatchResult = Tuple[List[Any], List[RowFailure]]


class LocalBackend:
    """Runs a frozen Plan with a pool of worker threads."""

    def __init__(
        self,
        *,
        num_workers: int = 1,
        raise_on_error: bool = False,
        preserve_order: bool = True,
        tempdir: Optional[str] = None,
        num_partitions: int = DEFAULT_PARTITIONS,
    ):
        self.num_workers = num_workers
        self.raise_on_error = raise_on_error
        self.preserve_order = preserve_order
        self.tempdir = tempdir
        self.num_partitions = num_partitions

    @classmethod
    def from_options(cls, options: ComputeOptions) -> "LocalBackend":
        return cls(
            num_workers=options.num_workers,
            raise_on_error=options.raise_on_error,
            preserve_order=options.preserve_order,
            tempdir=options.tempdir,
        )

    # ---------- failures ----------
    def _failure(self, stage: str, row_id: Optional[int], e: Exception, where: Optional[str] = None) -> RowFailure:
        if where is None:
            where = f"row {row_id}" if row_id is not None else "a group"
        if self.raise_on_error:
            raise OperationError(
                "E_EXECUTION",
                f"{stage} stage failed on {where} (original error: {type(e).__name__}: {e})",
                hint="Use preview() on the table to reproduce, or compute with raise_on_error=False to collect failures.",
            ) from e
        return RowFailure(stage=stage, row_id=row_id, error=f"{type(e).__name__}: {e}")

    # ---------- batching ----------
    def _map_batches(
        self,
        reader: SequenceReader,
        batch_size: int,
        work: Callable[[List[SeqRow]], BatchResult],
    ) -> Iterator[BatchResult]:
        if self.num_workers == 1:
            while True:
                batch = reader.poll_batch(batch_size)
                if not batch:
                    return
                yield work(batch)

        # bounded number of batches in flight
        max_pending = self.num_workers * 2
        with ThreadPoolExecutor(max_workers=self.num_workers, thread_name_prefix="lazytab") as pool:
            pending: List[Future] = []
            exhausted = False
            while True:
                while not exhausted and len(pending) < max_pending:
                    batch = reader.poll_batch(batch_size)
                    if batch:
                        pending.append(pool.submit(work, batch))
                    else:
                        exhausted = True
                if not pending:
                    return
                if self.preserve_order:
                    done = pending.pop(0)
                else:
                    finished, _ = wait(pending, return_when=FIRST_COMPLETED)
                    done = next(iter(finished))
                    pending.remove(done)
                yield done.result()

    def _collect(self, results: Iterator[BatchResult], report: ExecutionReport) -> Iterator[Any]:
        for out, failed in results:
            report.failures.extend(failed)
            yield from out

    # ---------- stages ----------
    def _rows(self, plan: Plan, report: ExecutionReport) -> Iterator[Tuple[Any, ...]]:
        def work(batch: List[SeqRow]) -> BatchResult:
            out, failed = [], []
            for r in batch:
                try:
                    row = plan.program.run(r.values)
                except Exception as e:
                    failed.append(self._failure("rows", r.id, e))
                    continue
                if row is not None:
                    out.append(plan.project(row))
            return out, failed

        reader = SequenceReader(plan.source)
        return self._collect(self._map_batches(reader, plan.batch_size, work), report)

    def _aggregate(self, plan: Plan, report: ExecutionReport) -> Iterator[Tuple[Any, ...]]:
        group = plan.group

        def work(batch: List[SeqRow]) -> BatchResult:
            out, failed = [], []
            for r in batch:
                try:
                    row = plan.program.run(r.values)
                    if row is not None:
                        out.append(group_record(group, row))
                except Exception as e:
                    failed.append(self._failure("group", r.id, e))
            return out, failed

        records = self._collect(self._map_batches(SequenceReader(plan.source), plan.batch_size, work), report)
        if group.whole_table:
            acc = GroupAccumulator(group)
            for key, carried in records:
                acc.add(key, carried)
            yield from self._finish(acc, report)
            return

        with SpillPartitions(self.num_partitions, tempdir=self.tempdir) as parts:
            for key, carried in records:
                parts.add(key, (key, carried))
            parts.flush()
            logger.info("group stage spilled %d rows into %d partitions", sum(parts.counts), parts.num_buckets)
            for b in range(parts.num_buckets):
                acc = GroupAccumulator(group)
                for key, carried in parts.bucket(b):
                    acc.add(key, carried)
                yield from self._finish(acc, report)

    def _finish(self, acc: GroupAccumulator, report: ExecutionReport) -> Iterator[Tuple[Any, ...]]:
        for key, columns in acc.groups():
            try:
                result = acc.finish(key, columns)
            except Exception as e:
                report.failures.append(self._failure("aggregate", None, e))
                continue
            yield result

    def _side_records(self, side: JoinSide, stage: str, report: ExecutionReport) -> Iterator[Any]:
        def work(batch: List[SeqRow]) -> BatchResult:
            out, failed = [], []
            for r in batch:
                try:
                    row = side.program.run(r.values)
                    if row is not None:
                        out.append(side.record(row))
                except Exception as e:
                    failed.append(self._failure(stage, r.id, e))
            return out, failed

        reader = SequenceReader(side.source)
        return self._collect(self._map_batches(reader, side.batch_size, work), report)

    def _join(self, plan: Plan, report: ExecutionReport) -> Iterator[Tuple[Any, ...]]:
        jp = plan.join
        n = self.num_partitions
        with SpillPartitions(n, tempdir=self.tempdir) as built, SpillPartitions(n, tempdir=self.tempdir) as probed:
            # the build side is fully partitioned before any probe row is read
            for rec in self._side_records(jp.build, "join-build", report):
                built.add(rec[0], rec)
            built.flush()
            for rec in self._side_records(jp.probe, "join-probe", report):
                probed.add(rec[0], rec)
            probed.flush()
            logger.info(
                "%s join partitioned %d build and %d probe rows",
                jp.kind, sum(built.counts), sum(probed.counts),
            )
            for b in range(n):
                if not probed.counts[b]:
                    continue
                try:
                    index = JoinIndex(jp)
                    for rec in built.bucket(b):
                        index.add(rec)
                    index.seal()
                except Exception as e:
                    # the whole partition is lost without its index
                    report.failures.append(self._failure("join", None, e, where=f"partition {b}"))
                    continue
                for rec in probed.bucket(b):
                    try:
                        out = list(index.probe(rec))
                    except Exception as e:
                        report.failures.append(self._failure("join", None, e, where=f"a row of partition {b}"))
                        continue
                    yield from out

    # ---------- entry point ----------
    def execute(self, plan: Plan, sink: Sink) -> ExecutionReport:
        stages = {"rows": self._rows, "aggregate": self._aggregate, "join": self._join}
        if plan.kind not in stages:
            raise SchemaError("E_PLAN_KIND", f"Unknown plan kind {plan.kind!r}.")
        logger.info(
            "evaluating %s plan into %s (workers=%d, batch_size=%d)",
            plan.kind, sink.uri, self.num_workers, plan.batch_size,
        )
        report = ExecutionReport(output=sink.uri)
        report.rows_written = sink.write(plan.names, stages[plan.kind](plan, report))
        if report.failures:
            logger.warning("%d row(s) failed while writing %s; see the report", len(report.failures), sink.uri)
        logger.info("wrote %d rows to %s", report.rows_written, sink.uri)
        return report


def compute(
    obj: Any,
    output: Any,
    *,
    num_workers: int = 1,
    raise_on_error: bool = False,
    preserve_order: bool = True,
    select: Optional[Sequence[str]] = None,
    exclude: Optional[Sequence[str]] = None,
    tempdir: Optional[str] = None,
    backend: Optional[LocalBackend] = None,
) -> ExecutionReport:
    """Evaluate a Table or JoinedTable into the CSV file ``output``.

    Plain tables, whole-table aggregates, grouped aggregates and joins all go
    through here; the plan kind decides which stage runs.
    """
    if not isinstance(obj, (Table, JoinedTable)):
        raise SchemaError(
            "E_COMPUTE_INPUT",
            f"compute expects a lazytab table or joined table, got {type(obj).__name__}.",
        )
    options = ComputeOptions(
        num_workers=num_workers,
        raise_on_error=raise_on_error,
        preserve_order=preserve_order,
        select=select,
        exclude=exclude,
        tempdir=tempdir,
    )
    plan = obj.plan(options)
    sink = Sink(output)
    backend = backend or LocalBackend.from_options(options)
    return backend.execute(plan, sink)
