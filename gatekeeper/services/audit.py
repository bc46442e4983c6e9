"""Fire-and-forget audit trail for privileged state changes.

``AuditSink.record`` never raises and never waits on the database: entries
go onto an asyncio queue drained by a single worker task. Failures are
reported on this module's logger only, so an audit problem can never block
or roll back the change being audited.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from gatekeeper.models.audit import AuditEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    action: str
    entity_type: str
    entity_id: str | None = None
    actor_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink:
    def __init__(self, session_factory: sessionmaker, maxsize: int = 1000) -> None:
        self._session_factory = session_factory
        self._maxsize = maxsize
        self._queue: asyncio.Queue[AuditEntry] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._maxsize)
        self._worker = asyncio.create_task(self._run(), name="audit-sink")

    async def stop(self, timeout: float = 5.0) -> None:
        if self._worker is None or self._queue is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Audit sink stopped with %d pending entries", self._queue.qsize()
            )
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        self._loop = None

    def record(
        self,
        action: str,
        *,
        entity_type: str,
        entity_id: str | None = None,
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Queue an audit entry. Safe to call from worker threads."""
        entry = AuditEntry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            metadata=metadata or {},
        )
        loop = self._loop
        if loop is None or not self.running:
            logger.warning("Audit sink not running; dropped %s", action)
            return
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is loop:
            self._enqueue(entry)
            return
        try:
            loop.call_soon_threadsafe(self._enqueue, entry)
        except RuntimeError:
            logger.warning("Audit loop closed; dropped %s", action)

    def _enqueue(self, entry: AuditEntry) -> None:
        assert self._queue is not None
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            logger.error("Audit queue full; dropped %s", entry.action)

    def _write(self, entry: AuditEntry) -> None:
        db = self._session_factory()
        try:
            db.add(
                AuditEvent(
                    occurred_at=entry.occurred_at,
                    actor_id=entry.actor_id,
                    action=entry.action,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    metadata_=entry.metadata,
                )
            )
            db.commit()
        finally:
            db.close()

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            entry = await self._queue.get()
            try:
                await run_in_threadpool(self._write, entry)
            except Exception:
                logger.exception("Audit write failed for %s", entry.action)
            finally:
                self._queue.task_done()
