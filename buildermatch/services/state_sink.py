# =============================================================================
# State Sink - Best-Effort Orchestration Snapshots
# =============================================================================
#
# The in-memory OrchestrationState is the source of truth during a run. The
# sink only receives snapshots so that an operator can see the last known
# phase of a run, including runs that crashed mid-phase.
#
# StateRecorder turns each snapshot into a background task and returns
# immediately. Writes for one run are chained so they land in order; a
# failed write is logged and never raised. flush() waits (bounded) for the
# pending writes at the end of a run.
#
# ARCHITECTURE:
#   StateSink (Protocol)
#   ├── PgStateSink    - INSERT ... ON CONFLICT DO UPDATE into agent_states
#   └── NullStateSink  - discards snapshots
#   StateRecorder      - fire-and-forget wrapper around any sink
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert

from buildermatch.config import settings
from buildermatch.db.engine import session_scope
from buildermatch.db.models import AgentStateRecord
from buildermatch.models.search import OrchestrationState

logger = logging.getLogger(__name__)


class StateSink(Protocol):
    async def upsert(self, session_id: str, state: dict[str, Any]) -> None:
        """Store the latest snapshot for `session_id`, replacing any previous one."""
        ...


class PgStateSink:
    """Snapshots into the agent_states table, one row per session."""

    async def upsert(self, session_id: str, state: dict[str, Any]) -> None:
        phase = state.get("phase", "planning")
        stmt = insert(AgentStateRecord).values(
            id=session_id,
            session_id=session_id,
            current_phase=phase,
            state=state,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[AgentStateRecord.id],
            set_={
                "current_phase": stmt.excluded.current_phase,
                "state": stmt.excluded.state,
                "updated_at": func.now(),
            },
        )
        async with session_scope() as session:
            await session.execute(stmt)


class NullStateSink:
    async def upsert(self, session_id: str, state: dict[str, Any]) -> None:
        return None


class StateRecorder:
    """
    Fire-and-forget snapshot writer for one orchestration run.

    record() must be called from inside a running event loop. Each write is
    bounded by `write_timeout`; a write that times out is logged and the
    next snapshot proceeds.
    """

    def __init__(
        self,
        sink: StateSink,
        enabled: bool | None = None,
        flush_timeout: float | None = None,
        write_timeout: float | None = None,
    ) -> None:
        self._sink = sink
        self._enabled = settings.state_snapshots_enabled if enabled is None else enabled
        self._flush_timeout = (
            flush_timeout if flush_timeout is not None else settings.state_flush_timeout_seconds
        )
        self._write_timeout = (
            write_timeout if write_timeout is not None
            else settings.external_call_timeout_seconds
        )
        self._pending: set[asyncio.Task] = set()
        self._last: asyncio.Task | None = None

    def record(self, state: OrchestrationState) -> None:
        if not self._enabled:
            return
        snapshot = state.model_dump(mode="json", by_alias=True)
        task = asyncio.create_task(self._write(self._last, state.session_id, snapshot))
        self._last = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(
        self, previous: asyncio.Task | None, session_id: str, snapshot: dict[str, Any],
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await asyncio.wait_for(
                self._sink.upsert(session_id, snapshot), timeout=self._write_timeout,
            )
        except Exception as e:
            logger.warning(
                "State snapshot failed (session=%s, phase=%s): %s",
                session_id, snapshot.get("phase"), e,
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def flush(self) -> None:
        """Wait for outstanding writes, giving up after the flush timeout."""
        if not self._pending:
            return
        _, not_done = await asyncio.wait(set(self._pending), timeout=self._flush_timeout)
        if not_done:
            logger.warning(
                "%d state snapshot(s) still pending after %.1fs",
                len(not_done), self._flush_timeout,
            )
