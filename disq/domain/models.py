"""
Domain models for disq — backed by Pydantic v2.

Pydantic handles:
  - field validation (non-empty queue names, non-negative counters)
  - str → bytes coercion for job bodies
  - number → timedelta coercion for durations (plain numbers are seconds)

All models are frozen (immutable). A Job carries no reference to the
connection it arrived on; it is a plain value.
"""

from datetime import timedelta
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

StatValue: TypeAlias = str | int | tuple[str, ...]
"""One QSTAT field value: bulk string, integer, or array of bulk strings."""

QueueStats: TypeAlias = dict[str, StatValue]


def _non_negative(v: timedelta) -> timedelta:
    if v < timedelta(0):
        raise ValueError(f"duration must not be negative, got {v!r}")
    return v


class Job(BaseModel):
    """
    A single unit of work delivered by the broker.

    queue                 — queue the job was consumed from
    id                    — broker-assigned identifier, opaque text
    body                  — opaque bytes; disq imposes no structure on it
    nacks                 — NACKs observed across deliveries (WITHCOUNTERS only)
    additional_deliveries — redeliveries beyond the first (WITHCOUNTERS only)
    """

    model_config = ConfigDict(frozen=True)

    queue: str = Field(min_length=1)
    id: str
    body: bytes = b""
    nacks: int = Field(default=0, ge=0)
    additional_deliveries: int = Field(default=0, ge=0)

    @field_validator("body", mode="before")
    @classmethod
    def _coerce_body(cls, v: str | bytes) -> bytes:
        """Accept text bodies as UTF-8; pass bytes through unchanged."""
        match v:
            case bytes():
                return v
            case bytearray() | memoryview():
                return bytes(v)
            case str():
                return v.encode("utf-8")
            case _:
                raise ValueError(
                    f"body must be bytes or str, got {type(v).__name__}"
                )


class AddOptions(BaseModel):
    """
    Producer-side options for ADDJOB.

    async_    — ASYNC: return once accepted locally, before replication
                (field alias ``async``)
    delay     — DELAY in whole seconds; below one second is omitted
    retry     — RETRY in whole seconds; below one second is omitted
    ttl       — TTL in whole seconds; below one second is omitted
    max_len   — MAXLEN; 0 means unset
    replicate — REPLICATE; 0 means broker default
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    async_: bool = Field(default=False, alias="async")
    delay: timedelta = timedelta(0)
    retry: timedelta = timedelta(0)
    ttl: timedelta = timedelta(0)
    max_len: int = Field(default=0, ge=0)
    replicate: int = Field(default=0, ge=0)

    @field_validator("delay", "retry", "ttl")
    @classmethod
    def _check_durations(cls, v: timedelta) -> timedelta:
        return _non_negative(v)


class GetOptions(BaseModel):
    """
    Consumer-side options for GETJOB.

    count         — COUNT; 0 means broker default (one job)
    no_hang       — NOHANG: return an empty result instead of blocking
    timeout       — TIMEOUT in whole milliseconds; below 1 ms is omitted
    with_counters — WITHCOUNTERS: fill Job.nacks / Job.additional_deliveries
    """

    model_config = ConfigDict(frozen=True)

    count: int = Field(default=0, ge=0)
    no_hang: bool = False
    timeout: timedelta = timedelta(0)
    with_counters: bool = False

    @field_validator("timeout")
    @classmethod
    def _check_timeout(cls, v: timedelta) -> timedelta:
        return _non_negative(v)
