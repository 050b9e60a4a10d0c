"""Worker process: receive scan jobs over a pipe, reply with ProjectRecords."""

from __future__ import annotations

import signal
from multiprocessing.connection import Connection

from pydantic import ValidationError

from fleetscan.pool.protocol import TO_WORKER, JobError, JobResult, Ready, Shutdown, encode
from fleetscan.scanner import scan_project


def worker_main(conn: Connection) -> None:
    """Serve jobs until told to shut down or the coordinator goes away.

    SIGINT is ignored here; the coordinator owns cancellation and kills
    workers itself.
    """
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        conn.send_bytes(encode(Ready()))
        while True:
            try:
                raw = conn.recv_bytes()
            except (EOFError, OSError):
                return
            try:
                msg = TO_WORKER.validate_json(raw)
            except ValidationError:
                # Coordinator bug; nothing sensible to answer.
                return
            if isinstance(msg, Shutdown):
                return
            try:
                record = scan_project(msg.dir)
            except Exception as exc:
                conn.send_bytes(encode(JobError(id=msg.id, error=f"{type(exc).__name__}: {exc}")))
            else:
                conn.send_bytes(encode(JobResult(id=msg.id, data=record)))
    finally:
        conn.close()
