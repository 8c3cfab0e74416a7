"""
Fact sink — where the engine hands its audit and notification facts.

The engine never persists facts itself; it emits ``Fact`` objects to a sink
and tells the sink how the surrounding unit of work ended:

    emit(fact)   while the operation runs
    commit()     after the database commit succeeded
    rollback()   after the operation failed or was cancelled

``AuditLogFactSink`` writes facts as AuditLog rows in the caller's session
(flush only), so they already commit or roll back with the step graph.
``RecordingFactSink`` buffers facts in memory and only publishes them on
commit, so a rolled-back operation leaves nothing behind in either sink.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from caseflow.models.audit import write_audit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fact:
    event_type: str
    case_id: str | None
    tenant_id: int | None = None
    actor_user_id: int | None = None
    payload: dict = field(default_factory=dict)


class FactSink(Protocol):
    def emit(self, fact: Fact) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class AuditLogFactSink:
    """Persist facts as AuditLog rows inside the current transaction."""

    def emit(self, fact: Fact) -> None:
        write_audit(
            action=fact.event_type,
            case_id=fact.case_id,
            tenant_id=fact.tenant_id,
            actor_user_id=fact.actor_user_id,
            payload=fact.payload,
        )
        logger.debug(
            "Fact %s case=%s", fact.event_type, fact.case_id,
            extra={"event_type": fact.event_type, "case_id": fact.case_id},
        )

    # Rows live in the session; the session's own commit / rollback decides.
    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass


class RecordingFactSink:
    """In-memory sink; ``facts`` only ever holds committed facts."""

    def __init__(self) -> None:
        self.facts: list[Fact] = []
        self._pending: list[Fact] = []

    def emit(self, fact: Fact) -> None:
        self._pending.append(fact)

    def commit(self) -> None:
        self.facts.extend(self._pending)
        self._pending.clear()

    def rollback(self) -> None:
        if self._pending:
            logger.debug("Discarding %d uncommitted fact(s)", len(self._pending))
        self._pending.clear()

    def of_type(self, event_type: str) -> list[Fact]:
        return [f for f in self.facts if f.event_type == event_type]
