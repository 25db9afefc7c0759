# Overview: Principals that cause inventory and order changes, recorded on audit rows.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ActorKind(str, Enum):
    APPROVER = "approver"
    SCHEDULED_JOB = "scheduled_job"
    API_CALLER = "api_caller"


@dataclass(frozen=True)
class Actor:
    kind: ActorKind
    id: str | None = None

    @classmethod
    def approver(cls, user_id: int) -> "Actor":
        return cls(ActorKind.APPROVER, str(user_id))

    @classmethod
    def api_caller(cls, user_id: int | None = None) -> "Actor":
        return cls(ActorKind.API_CALLER, str(user_id) if user_id is not None else None)

    @classmethod
    def scheduled_job(cls, job_name: str) -> "Actor":
        return cls(ActorKind.SCHEDULED_JOB, job_name)

    def audit_fields(self) -> dict:
        return {"actor_type": self.kind.value, "actor_id": self.id}
