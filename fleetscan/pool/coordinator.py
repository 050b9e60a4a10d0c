"""Worker pool coordinator: parallel project scanning across OS processes.

Lifecycle of one :meth:`WorkerPool.run` call::

    IDLE → SPAWNING → DISPATCHING → DRAINING → DONE

Any step after IDLE may end in FAILED instead.

Each worker announces ``ready``; the coordinator answers with the next
undispatched directory or ``shutdown``. Results are stored by job id, so the
returned list always follows the input order. A worker ``error`` (or a worker
that dies holding a job) is recovered by scanning that directory in-process;
only a failure of that fallback aborts the batch. One wall-clock timeout
covers the whole batch.
"""

from __future__ import annotations

import multiprocessing
import os
import signal
import sys
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from multiprocessing.connection import Connection, wait
from multiprocessing.context import BaseContext
from typing import Any

import structlog
from pydantic import ValidationError

from fleetscan.config import DEFAULT_BATCH_TIMEOUT, DEFAULT_MAX_WORKERS
from fleetscan.context import RunContext
from fleetscan.exceptions import (
    BatchTimeoutError,
    PoolUnavailableError,
    ProtocolError,
    ScanFailedError,
)
from fleetscan.models import ProjectRecord
from fleetscan.pool.protocol import FROM_WORKER, JobError, JobResult, Ready, ScanJob, Shutdown, encode
from fleetscan.pool.worker import worker_main
from fleetscan.scanner import scan_project, scan_sequential

log = structlog.get_logger("fleetscan.pool")

SIGINT_EXIT_CODE = 130
_JOIN_TIMEOUT = 1.0


def available_cpus() -> int:
    """CPUs this process may run on (affinity-aware where the OS supports it)."""
    if hasattr(os, "sched_getaffinity"):
        try:
            return max(1, len(os.sched_getaffinity(0)))
        except OSError:
            pass
    return os.cpu_count() or 1


class PoolState(str, Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    DISPATCHING = "dispatching"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


class FallbackPolicy:
    """Recover a failed worker job by scanning the directory in-process.

    At most ``max_local_retries`` local attempts are made per job; after that
    the failure propagates as :class:`ScanFailedError`.
    """

    def __init__(
        self,
        scan: Callable[[str], ProjectRecord] = scan_project,
        max_local_retries: int = 1,
    ) -> None:
        self._scan = scan
        self.max_local_retries = max_local_retries

    def recover(self, job_id: int, dir: str, error: str) -> ProjectRecord:
        log.warning("pool.worker_error", job_id=job_id, dir=dir, error=error)
        reason = error
        for attempt in range(1, self.max_local_retries + 1):
            try:
                record = self._scan(dir)
            except Exception as exc:
                reason = f"{type(exc).__name__}: {exc}"
                log.warning("pool.fallback_failed", job_id=job_id, dir=dir, attempt=attempt, error=reason)
                continue
            log.info("pool.fallback_recovered", job_id=job_id, dir=dir)
            return record
        raise ScanFailedError(dir, reason)


@dataclass
class _Worker:
    index: int
    process: Any  # multiprocessing.Process from the configured context
    conn: Connection
    job: int | None = None
    open: bool = True


class WorkerPool:
    """Bounded pool of scanner processes for one batch of directories."""

    def __init__(
        self,
        timeout: float = DEFAULT_BATCH_TIMEOUT,
        max_workers: int = DEFAULT_MAX_WORKERS,
        cpu_count: int | None = None,
        fallback: FallbackPolicy | None = None,
        mp_context: BaseContext | None = None,
        worker_target: Callable[[Connection], None] = worker_main,
        context: RunContext | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_workers = max_workers
        self.cpu_count = cpu_count if cpu_count is not None else available_cpus()
        self.fallback = fallback or FallbackPolicy()
        self._mp = mp_context or multiprocessing.get_context("spawn")
        self._worker_target = worker_target
        self._ctx = context
        self.state = PoolState.IDLE
        self._workers: list[_Worker] = []

    def pool_size(self, job_count: int) -> int:
        return max(0, min(self.cpu_count, job_count, self.max_workers))

    # ── public API ───────────────────────────────────────────────────────

    def run(self, dirs: Sequence[str | os.PathLike[str]]) -> list[ProjectRecord]:
        """Scan ``dirs`` in parallel; element *i* of the result is ``dirs[i]``."""
        jobs = [os.fspath(d) for d in dirs]
        if not jobs:
            self.state = PoolState.DONE
            return []

        size = self.pool_size(len(jobs))
        self.state = PoolState.SPAWNING
        try:
            self._workers = self._spawn(size)
        except PoolUnavailableError:
            self.state = PoolState.FAILED
            raise
        log.debug("pool.spawned", workers=size, jobs=len(jobs))

        previous_handler = self._install_sigint_handler()
        try:
            self.state = PoolState.DISPATCHING
            results = self._dispatch_loop(jobs)
            self.state = PoolState.DONE
            return [results[i] for i in range(len(jobs))]
        except BaseException:
            self.state = PoolState.FAILED
            raise
        finally:
            self._restore_sigint_handler(previous_handler)
            self._terminate(graceful=self.state is PoolState.DONE)

    # ── internals ────────────────────────────────────────────────────────

    def _spawn(self, size: int) -> list[_Worker]:
        workers: list[_Worker] = []
        try:
            for index in range(size):
                parent_conn, child_conn = self._mp.Pipe(duplex=True)
                process = self._mp.Process(
                    target=self._worker_target,
                    args=(child_conn,),
                    name=f"fleetscan-worker-{index}",
                    daemon=True,
                )
                process.start()
                child_conn.close()
                workers.append(_Worker(index=index, process=process, conn=parent_conn))
        except (OSError, RuntimeError, ValueError) as exc:
            self._workers = workers
            self._terminate(graceful=False)
            raise PoolUnavailableError(f"cannot spawn worker processes: {exc}") from exc
        return workers

    def _dispatch_loop(self, jobs: list[str]) -> dict[int, ProjectRecord]:
        results: dict[int, ProjectRecord] = {}
        next_idx = 0
        deadline = time.monotonic() + self.timeout
        by_conn = {w.conn: w for w in self._workers}

        def dispatch(worker: _Worker) -> None:
            nonlocal next_idx
            if next_idx < len(jobs):
                job_id = next_idx
                next_idx += 1
                worker.job = job_id
                self._send(worker, encode(ScanJob(id=job_id, dir=jobs[job_id])))
            else:
                worker.job = None
                self._send(worker, encode(Shutdown()))
                worker.open = False
                if self.state is PoolState.DISPATCHING:
                    self.state = PoolState.DRAINING

        def record(job_id: int, data: ProjectRecord) -> None:
            results[job_id] = data

        while len(results) < len(jobs):
            open_conns = [w.conn for w in self._workers if w.open]
            if not open_conns:
                # Every worker is gone; finish whatever is left in-process.
                for job_id in range(len(jobs)):
                    if job_id not in results:
                        record(job_id, self.fallback.recover(job_id, jobs[job_id], "no live workers"))
                        self._count("pool.fallbacks")
                break

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BatchTimeoutError(self.timeout, len(results), len(jobs))

            for conn in wait(open_conns, timeout=remaining):
                worker = by_conn[conn]  # type: ignore[index]
                try:
                    raw = worker.conn.recv_bytes()
                except (EOFError, OSError):
                    worker.open = False
                    if worker.job is not None:
                        job_id, worker.job = worker.job, None
                        exitcode = worker.process.exitcode
                        record(job_id, self.fallback.recover(job_id, jobs[job_id], f"worker exited ({exitcode})"))
                        self._count("pool.fallbacks")
                    continue

                try:
                    msg = FROM_WORKER.validate_json(raw)
                except ValidationError as exc:
                    raise ProtocolError(
                        f"worker {worker.index} sent a malformed message: {exc.errors()[0]['msg']}"
                    ) from exc

                if isinstance(msg, Ready):
                    if worker.job is not None:
                        raise ProtocolError(f"worker {worker.index} sent ready while holding job {worker.job}")
                    dispatch(worker)
                elif isinstance(msg, JobResult):
                    self._check_owner(worker, msg.id)
                    worker.job = None
                    record(msg.id, msg.data)
                    dispatch(worker)
                elif isinstance(msg, JobError):
                    self._check_owner(worker, msg.id)
                    worker.job = None
                    record(msg.id, self.fallback.recover(msg.id, jobs[msg.id], msg.error))
                    self._count("pool.fallbacks")
                    dispatch(worker)

        return results

    @staticmethod
    def _check_owner(worker: _Worker, job_id: int) -> None:
        if worker.job != job_id:
            raise ProtocolError(
                f"worker {worker.index} answered job {job_id} but holds {worker.job}"
            )

    def _send(self, worker: _Worker, payload: bytes) -> None:
        try:
            worker.conn.send_bytes(payload)
        except (BrokenPipeError, EOFError, OSError):
            # The worker died; its EOF surfaces on the next wait() and the job
            # it was handed is recovered there.
            log.debug("pool.send_failed", worker=worker.index)

    def _count(self, key: str) -> None:
        if self._ctx is not None:
            self._ctx.metrics[key] += 1

    def _terminate(self, graceful: bool) -> None:
        for worker in self._workers:
            if graceful:
                worker.process.join(_JOIN_TIMEOUT)
            if worker.process.is_alive():
                worker.process.kill()
                worker.process.join(_JOIN_TIMEOUT)
            worker.conn.close()
        self._workers = []

    def _kill_all(self) -> None:
        for worker in self._workers:
            if worker.process.is_alive():
                worker.process.kill()

    def _install_sigint_handler(self) -> Any:
        if threading.current_thread() is not threading.main_thread():
            return None

        def on_sigint(signum: int, frame: Any) -> None:
            log.warning("pool.interrupted", workers=len(self._workers))
            self._kill_all()
            sys.exit(SIGINT_EXIT_CODE)

        return signal.signal(signal.SIGINT, on_sigint)

    @staticmethod
    def _restore_sigint_handler(previous: Any) -> None:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def scan_all(
    dirs: Sequence[str | os.PathLike[str]],
    context: RunContext | None = None,
    pool: WorkerPool | None = None,
) -> list[ProjectRecord]:
    """Scan every directory, in parallel processes when possible.

    Falls back to in-process scanning (same output shape) when IPC is
    disabled or worker processes cannot be spawned. Timeouts, protocol
    errors and unrecoverable scan failures propagate.
    """
    if not dirs:
        return []
    settings = context.settings if context is not None else None
    if settings is not None and not settings.use_ipc:
        log.debug("pool.bypassed", reason="ipc disabled")
        return scan_sequential(dirs)

    if pool is None:
        pool = WorkerPool(
            timeout=settings.batch_timeout if settings else DEFAULT_BATCH_TIMEOUT,
            max_workers=settings.max_workers if settings else DEFAULT_MAX_WORKERS,
            context=context,
        )
    try:
        return pool.run(dirs)
    except PoolUnavailableError as exc:
        log.warning("pool.unavailable", error=str(exc))
        return scan_sequential(dirs)


__all__ = [
    "FallbackPolicy",
    "PoolState",
    "WorkerPool",
    "available_cpus",
    "scan_all",
]
