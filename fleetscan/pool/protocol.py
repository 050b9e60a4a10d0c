"""Coordinator <-> worker messages.

Every message is a JSON object tagged by ``type``. Both directions are
validated against a discriminated union; anything that does not match is a
protocol error rather than something to be parsed on a best-effort basis.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from fleetscan.models import ProjectRecord


class _Message(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ── coordinator → worker ────────────────────────────────────────────────


class ScanJob(_Message):
    type: Literal["scan"] = "scan"
    id: int = Field(ge=0)
    dir: str


class Shutdown(_Message):
    type: Literal["shutdown"] = "shutdown"


# ── worker → coordinator ────────────────────────────────────────────────


class Ready(_Message):
    type: Literal["ready"] = "ready"


class JobResult(_Message):
    type: Literal["result"] = "result"
    id: int = Field(ge=0)
    data: ProjectRecord


class JobError(_Message):
    type: Literal["error"] = "error"
    id: int = Field(ge=0)
    error: str


ToWorker = Annotated[Union[ScanJob, Shutdown], Field(discriminator="type")]
FromWorker = Annotated[Union[Ready, JobResult, JobError], Field(discriminator="type")]

TO_WORKER: TypeAdapter[ScanJob | Shutdown] = TypeAdapter(ToWorker)
FROM_WORKER: TypeAdapter[Ready | JobResult | JobError] = TypeAdapter(FromWorker)


def encode(message: _Message) -> bytes:
    return message.model_dump_json().encode("utf-8")
