"""Supervisor that detects and cancels stuck indexing jobs."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from archrag.cancellation import CancellationToken
from archrag.errors import OperationCancelledError
from archrag.monitoring.metrics import MetricsSink, NullMetrics
from archrag.pipeline.config import WatchdogConfig

logger = logging.getLogger(__name__)


@dataclass
class ProjectIndexingInfo:
    """Watchdog state for one tracked job.

    Attributes:
        project_id: Tracked project
        total_batches: Expected number of batches
        started_at: Monotonic start time
        cancel_token: Token linked to the caller's; cancelled when the job is stuck
        current_batch: Last reported batch number
        current_phase: Last reported phase label
        last_heartbeat: Monotonic time of the last heartbeat or phase update
        stuck_detection_count: Consecutive ticks that found the job stuck
    """

    project_id: str
    total_batches: int
    started_at: float
    cancel_token: CancellationToken
    current_batch: int = 0
    current_phase: str = "Starting"
    last_heartbeat: float = 0.0
    stuck_detection_count: int = 0


class BatchProcessingWatchdog:
    """Tracks long-running batch jobs and cancels the ones that stop progressing.

    A job is stuck when its total run time exceeds
    ``max_project_duration_seconds`` or no heartbeat arrived within
    ``max_heartbeat_interval_seconds``. A job found stuck on
    ``stuck_detection_threshold`` consecutive ticks is cancelled through its
    linked token and removed from tracking. The watchdog never looks at why a
    job is slow, only at heartbeats and elapsed time.
    """

    def __init__(
        self,
        config: WatchdogConfig | None = None,
        metrics: MetricsSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or WatchdogConfig()
        self._metrics = metrics or NullMetrics()
        self._clock = clock

        self._lock = threading.Lock()
        self._tracked: dict[str, ProjectIndexingInfo] = {}

        self._task: Optional[asyncio.Task] = None
        self._stop_token: Optional[CancellationToken] = None

    @property
    def config(self) -> WatchdogConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ----- job side ---------------------------------------------------------

    def track_batch(
        self,
        project_id: str,
        batch_number: int,
        total_batches: int,
        external_token: CancellationToken | None = None,
    ) -> CancellationToken:
        """Start tracking a job.

        Args:
            project_id: Job key
            batch_number: Batch the job starts at
            total_batches: Expected number of batches
            external_token: Caller's token; cancelling it cancels the returned one

        Returns:
            Token linked to ``external_token`` that the watchdog may cancel
        """
        token = CancellationToken(parent=external_token)
        now = self._clock()
        info = ProjectIndexingInfo(
            project_id=project_id,
            total_batches=total_batches,
            started_at=now,
            cancel_token=token,
            current_batch=batch_number,
            last_heartbeat=now,
        )

        with self._lock:
            replaced = self._tracked.get(project_id)
            self._tracked[project_id] = info

        if replaced is not None:
            replaced.cancel_token.detach()
            logger.warning("Watchdog: project %s was already tracked; restarting tracking", project_id)
        logger.info(
            "Watchdog: tracking project %s (batch %d/%d)", project_id, batch_number, total_batches
        )
        return token

    def update_phase(self, project_id: str, phase: str, batch_number: int | None = None) -> None:
        with self._lock:
            info = self._tracked.get(project_id)
            if info is None:
                return
            info.current_phase = phase
            if batch_number is not None:
                info.current_batch = batch_number
            info.last_heartbeat = self._clock()

        logger.debug("Watchdog: project %s phase=%s batch=%s", project_id, phase, batch_number)

    def heartbeat(self, project_id: str) -> None:
        with self._lock:
            info = self._tracked.get(project_id)
            if info is None:
                return
            info.last_heartbeat = self._clock()
            info.stuck_detection_count = 0

    def complete(self, project_id: str) -> float | None:
        """Stop tracking a finished job.

        Returns:
            Total duration in seconds, or None if the job was not tracked
        """
        with self._lock:
            info = self._tracked.pop(project_id, None)
        if info is None:
            return None
        info.cancel_token.detach()

        duration = self._clock() - info.started_at
        self._metrics.histogram("indexing_duration_seconds", duration)
        logger.info(
            "Watchdog: project %s completed in %.1fs (%d/%d batches)",
            project_id, duration, info.current_batch, info.total_batches,
        )
        return duration

    # ----- supervisor side --------------------------------------------------

    def get_tracked_projects(self) -> list[ProjectIndexingInfo]:
        with self._lock:
            return [replace(info) for info in self._tracked.values()]

    def is_project_stuck(self, project_id: str) -> bool:
        with self._lock:
            info = self._tracked.get(project_id)
            if info is None:
                return False
            return self._stuck_reason(info, self._clock()) is not None

    def _stuck_reason(self, info: ProjectIndexingInfo, now: float) -> str | None:
        elapsed = now - info.started_at
        since_heartbeat = now - info.last_heartbeat

        if elapsed > self._config.max_project_duration_seconds:
            return (
                f"exceeded max duration ({elapsed:.0f}s > "
                f"{self._config.max_project_duration_seconds:.0f}s)"
            )
        if since_heartbeat > self._config.max_heartbeat_interval_seconds:
            return (
                f"no heartbeat for {since_heartbeat:.0f}s "
                f"(max {self._config.max_heartbeat_interval_seconds:.0f}s)"
            )
        return None

    def check_stuck_projects(self) -> list[str]:
        """Run one supervisor tick.

        Returns:
            Project ids cancelled on this tick
        """
        now = self._clock()
        to_cancel: list[tuple[ProjectIndexingInfo, str]] = []

        with self._lock:
            for project_id, info in list(self._tracked.items()):
                reason = self._stuck_reason(info, now)
                if reason is None:
                    info.stuck_detection_count = 0
                    continue

                info.stuck_detection_count += 1
                self._metrics.increment("watchdog_stuck_detected")
                logger.warning(
                    "Watchdog: project %s appears STUCK: %s. Batch: %d/%d, Phase: %s, Detection count: %d",
                    project_id, reason, info.current_batch, info.total_batches,
                    info.current_phase, info.stuck_detection_count,
                )

                if (
                    self._config.auto_cancel_stuck
                    and info.stuck_detection_count >= self._config.stuck_detection_threshold
                ):
                    del self._tracked[project_id]
                    to_cancel.append((info, reason))

        for info, reason in to_cancel:
            logger.error(
                "Watchdog: CANCELLING stuck project %s after %d detections. Reason: %s",
                info.project_id, info.stuck_detection_count, reason,
            )
            info.cancel_token.cancel(f"Watchdog cancelled stuck indexing job: {reason}")
            info.cancel_token.detach()
            self._metrics.increment("watchdog_jobs_cancelled")

        return [info.project_id for info, _ in to_cancel]

    def start(self) -> None:
        """Start the supervisor loop on the running event loop."""
        if not self._config.enabled:
            logger.info("Watchdog disabled by configuration")
            return
        if self.running:
            return
        self._stop_token = CancellationToken()
        self._task = asyncio.create_task(self._run(self._stop_token), name="batch-watchdog")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_token.cancel("Watchdog stopping")
        await self._task
        self._task = None

    async def _run(self, stop_token: CancellationToken) -> None:
        logger.info(
            "Watchdog started (interval %.0fs, max duration %.0fs, max heartbeat gap %.0fs)",
            self._config.check_interval_seconds,
            self._config.max_project_duration_seconds,
            self._config.max_heartbeat_interval_seconds,
        )
        while not stop_token.cancelled:
            try:
                await stop_token.sleep(self._config.check_interval_seconds)
            except OperationCancelledError:
                break
            try:
                self.check_stuck_projects()
            except Exception:
                logger.exception("Watchdog check failed")
        logger.info("Watchdog stopped")
