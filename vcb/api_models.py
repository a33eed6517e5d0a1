from __future__ import annotations

from pydantic import BaseModel, Field


class CycleSummary(BaseModel):
    trigger: str
    services: int
    error: str | None = None
    finished_at: str
    writes: int = 0
    deletes: int = 0
    pruned: int = 0
    failures: int = 0
    foreign: int = 0


class StatusResponse(BaseModel):
    state: str = Field(..., description="starting|reconciling|waiting|cooldown|stopped")
    cycles: int = Field(..., ge=0, description="Completed (or aborted) reconcile cycles")
    started_at: str
    last_cycle: CycleSummary | None = None


class EventEntry(BaseModel):
    id: int
    ts: str
    level: str
    service_name: str | None = None
    message: str


class CycleEntry(BaseModel):
    id: int
    ts: str
    trigger: str
    services: int
    writes: int
    deletes: int
    pruned: int
    failures: int
    error: str | None = None


class TriggerResponse(BaseModel):
    queued: bool = Field(..., description="False when a rebuild was already pending")
