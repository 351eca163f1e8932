"""
PackingSessionMonitor -- reverts packing sessions nobody is working on.

Contract:
    ``sweep()`` finds active sessions idle for longer than the configured
    timeout and reverts each order to ``confirmed`` as the ``system``
    role, through ``OrderStateMachine.transition``.  ``run_once()`` is a
    sweep followed by redelivery of pending outbox events; ``start()`` /
    ``stop()`` call it on a background thread.

Architecture: fulfillment_batch/services.  Reads through the kernel
    selectors; writes only through the state machine, so a timeout revert
    and a manual transition for the same order contend on the same lock.

Invariants enforced:
    - All timestamps from the injected Clock.
    - A revert applies only if, under the order lock, the order is still
      in ``packing`` with the *same* session, still idle past the cutoff.
      Otherwise the order is skipped silently.
    - One sweep at a time per monitor: a concurrent ``sweep()`` returns at
      once instead of queueing.
    - A failure on one order is logged and never aborts the batch.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import SYSTEM_ACTOR_ID, SweepReport, TransitionOptions
from fulfillment_kernel.domain.events import PACKING_TIMED_OUT
from fulfillment_kernel.domain.transitions import OrderStatus, Role
from fulfillment_kernel.exceptions import NoSuchEdgeError, StaleSessionConflictError
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.models.packing import PackingSessionModel
from fulfillment_kernel.selectors.order_selector import OrderSelector, PackingSessionDTO
from fulfillment_kernel.services.order_state_machine import (
    OrderStateMachine,
    TransitionContext,
)
from fulfillment_kernel.services.outbox import OutboxDispatcher

logger = get_logger("batch.packing_monitor")


class PackingSessionMonitor:
    """Periodic sweep of idle packing sessions.

    Non-goals:
        - NOT a distributed scheduler; two processes running monitors
          still serialize per order on the order lock, but both will scan.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        state_machine: OrderStateMachine,
        clock: Clock | None = None,
        session_timeout_minutes: int = 30,
        sweep_interval_seconds: int = 300,
        outbox: OutboxDispatcher | None = None,
        redelivery_batch_size: int = 100,
    ):
        self._session_factory = session_factory
        self._machine = state_machine
        self._clock = clock or SystemClock()
        self._timeout = timedelta(minutes=session_timeout_minutes)
        self._interval = sweep_interval_seconds
        self._outbox = outbox
        self._redelivery_batch_size = redelivery_batch_size
        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def sweep(self) -> SweepReport:
        """Revert every stale session (public for schedulers and tests)."""
        started_at = self._clock.now()
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("packing_sweep_skipped_concurrent")
            return SweepReport(started_at=started_at, skipped_concurrent=True)
        try:
            return self._sweep(started_at)
        finally:
            self._sweep_lock.release()

    def run_once(self) -> SweepReport:
        """One loop iteration: sweep, then retry undelivered outbox events."""
        report = self.sweep()
        if self._outbox is not None:
            self._outbox.dispatch_pending(self._redelivery_batch_size)
        return report

    def start(self) -> None:
        """Start sweeping on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="packing-session-monitor",
            daemon=True,
        )
        self._thread.start()
        logger.info("packing_monitor_started", extra={"sweep_interval": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("packing_monitor_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("packing_sweep_exception")
            self._stop_event.wait(timeout=self._interval)

    def _sweep(self, started_at: datetime) -> SweepReport:
        cutoff = started_at - self._timeout
        session = self._session_factory()
        try:
            candidates = OrderSelector(session).list_stale_sessions(cutoff)
        finally:
            session.close()

        reverted: list[UUID] = []
        skipped: list[UUID] = []
        failed: list[UUID] = []

        for candidate in candidates:
            if self._stop_event.is_set():
                break
            with LogContext.bind(order_id=str(candidate.order_id), actor_role=Role.SYSTEM.value):
                try:
                    self._revert(candidate)
                    reverted.append(candidate.order_id)
                except (StaleSessionConflictError, NoSuchEdgeError) as exc:
                    # A manual action got there first; try again next sweep if still stale
                    skipped.append(candidate.order_id)
                    logger.debug("packing_timeout_skipped", extra={"reason": exc.code})
                except Exception:
                    failed.append(candidate.order_id)
                    logger.exception("packing_timeout_failed")

        report = SweepReport(
            started_at=started_at,
            reverted=tuple(reverted),
            skipped=tuple(skipped),
            failed=tuple(failed),
        )
        logger.info(
            "packing_sweep_completed",
            extra={
                "candidates": len(candidates),
                "reverted": len(reverted),
                "skipped": len(skipped),
                "failed": len(failed),
            },
        )
        return report

    def _revert(self, candidate: PackingSessionDTO) -> None:
        timeout = self._timeout

        def still_stale(ctx: TransitionContext) -> None:
            current = ctx.session.get(
                PackingSessionModel, candidate.id, populate_existing=True
            )
            if (
                current is None
                or not current.is_active
                or ctx.order.packing_session_id != candidate.id
            ):
                raise StaleSessionConflictError(
                    str(candidate.order_id), "packing session already ended"
                )
            idle = ctx.now - current.last_activity_at
            if idle <= timeout:
                raise StaleSessionConflictError(
                    str(candidate.order_id), "packing session saw new activity"
                )
            ctx.emit(
                PACKING_TIMED_OUT,
                {
                    "packing_session_id": str(candidate.id),
                    "packer_id": str(candidate.packer_id) if candidate.packer_id else None,
                    "last_activity_at": current.last_activity_at.isoformat(),
                    "idle_seconds": int(idle.total_seconds()),
                },
            )

        self._machine.transition(
            candidate.order_id,
            OrderStatus.CONFIRMED,
            Role.SYSTEM,
            TransitionOptions(
                expected_status=OrderStatus.PACKING,
                actor_id=SYSTEM_ACTOR_ID,
                notes="packing session timed out",
            ),
            before_apply=still_stale,
        )
        logger.info(
            "packing_session_timed_out",
            extra={"packing_session_id": str(candidate.id)},
        )
