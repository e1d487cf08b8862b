"""Stability watcher that polls the control plane until a deployment settles."""

import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from deploy_pipeline.control_plane.base import ControlPlane, DeploymentHandle, DeploymentStatus
from deploy_pipeline.utils.errors import ErrorContext, WatchError, WatchErrorKind
from deploy_pipeline.utils.logging import get_logger

logger = get_logger(__name__)


class WatchState(Enum):
    """States of a watched deployment."""
    PENDING = "Pending"
    CONVERGING = "Converging"
    DEGRADED = "Degraded"
    STABLE = "Stable"
    TIMED_OUT = "TimedOut"
    ROLLED_BACK = "RolledBack"


@dataclass
class WatchResult:
    """Outcome of a successful watch."""

    state: WatchState
    polls: int
    elapsed: float  # seconds
    history: List[DeploymentStatus] = field(default_factory=list)

    @property
    def final_status(self) -> Optional[DeploymentStatus]:
        return self.history[-1] if self.history else None


@dataclass
class _Progress:
    """Best counts observed so far for the new revision."""

    best_running: int = 0
    best_healthy: int = 0

    def update(self, status: DeploymentStatus) -> None:
        self.best_running = max(self.best_running, status.running_count)
        self.best_healthy = max(self.best_healthy, status.healthy_count)


class StabilityWatcher:
    """Polls deployment status at a fixed interval within an overall deadline.

    State machine over successive DeploymentStatus snapshots:

    - PENDING: nothing of the new revision is running yet
    - CONVERGING: the new revision is making progress towards the target
    - DEGRADED: running or healthy counts fell back, or the rollout ended
      without converging
    - STABLE: running == desired == healthy for the new revision
    - ROLLED_BACK: the control plane reverted to another revision
    - TIMED_OUT: the deadline passed without reaching STABLE
    """

    def __init__(
        self,
        control_plane: ControlPlane,
        jitter: bool = True,
        max_poll_failures: int = 3,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None
    ):
        """Initialize stability watcher.

        Args:
            control_plane: Control plane to poll
            jitter: Add up to 10% random delay to each poll interval
            max_poll_failures: Consecutive status failures tolerated before giving up
            clock: Monotonic clock, replaceable in tests
            sleep: Sleep function, replaceable in tests
            cancel_event: Event that aborts the watch when set
        """
        self.control_plane = control_plane
        self.jitter = jitter
        self.max_poll_failures = max(1, max_poll_failures)
        self.clock = clock or time.monotonic
        self.sleep = sleep
        self.cancel_event = cancel_event

    def watch(self, handle: DeploymentHandle, timeout: float, poll_interval: float) -> WatchResult:
        """Poll until the deployment is stable.

        Args:
            handle: Handle of the submitted deployment
            timeout: Overall deadline in seconds
            poll_interval: Seconds between status checks

        Returns:
            WatchResult in state STABLE

        Raises:
            WatchError: TIMED_OUT, ROLLED_BACK, CONTROL_PLANE_UNAVAILABLE or CANCELLED
        """
        if timeout <= 0 or poll_interval <= 0:
            raise ValueError("timeout and poll_interval must be positive")

        start = self.clock()
        deadline = start + timeout
        state = WatchState.PENDING
        progress = _Progress()
        history: List[DeploymentStatus] = []
        failures = 0
        polls = 0

        logger.info(
            f"Watching deployment {handle.handle_id} of {handle.service_name} "
            f"(timeout {timeout:.0f}s, interval {poll_interval:.0f}s)"
        )

        while True:
            if self._cancelled():
                raise self._error(WatchErrorKind.CANCELLED, "Watch cancelled", handle, history, polls)

            polls += 1
            try:
                status = self.control_plane.get_status(handle)
                failures = 0
            except Exception as e:
                failures += 1
                logger.warning(
                    f"Status poll {polls} failed ({failures}/{self.max_poll_failures}): {e}"
                )
                if failures >= self.max_poll_failures:
                    raise self._error(
                        WatchErrorKind.CONTROL_PLANE_UNAVAILABLE,
                        f"Control plane unavailable after {failures} consecutive failed polls",
                        handle, history, polls, cause=e
                    ) from e
                status = None

            if status is not None:
                history.append(status)
                next_state = self.next_state(state, status, progress, handle)
                progress.update(status)

                if next_state != state:
                    logger.info(
                        f"{state.value} -> {next_state.value} "
                        f"(running {status.running_count}/{handle.desired_count}, "
                        f"healthy {status.healthy_count}, previous {status.previous_running_count})"
                    )
                    state = next_state

                if state == WatchState.STABLE:
                    elapsed = self.clock() - start
                    logger.info(f"Deployment {handle.handle_id} stable after {polls} polls ({elapsed:.0f}s)")
                    return WatchResult(state=state, polls=polls, elapsed=elapsed, history=history)

                if state == WatchState.ROLLED_BACK:
                    raise self._error(
                        WatchErrorKind.ROLLED_BACK,
                        f"Control plane rolled {handle.service_name} back to "
                        f"{status.primary_revision_arn or handle.previous_revision_arn or 'the previous revision'}",
                        handle, history, polls
                    )

            now = self.clock()
            if now >= deadline:
                raise self._error(
                    WatchErrorKind.TIMED_OUT,
                    f"Deployment did not stabilize within {timeout:.0f}s (last state {state.value})",
                    handle, history, polls
                )

            if self._wait(min(self._poll_delay(poll_interval), deadline - now)):
                raise self._error(WatchErrorKind.CANCELLED, "Watch cancelled", handle, history, polls)

    def next_state(
        self,
        state: WatchState,
        status: DeploymentStatus,
        progress: _Progress,
        handle: DeploymentHandle
    ) -> WatchState:
        """Compute the state after observing ``status``."""
        target = handle.desired_count

        if status.converged and status.desired_count == target:
            return WatchState.STABLE

        if (status.terminal
                and status.primary_revision_arn is not None
                and status.primary_revision_arn != handle.revision_arn):
            return WatchState.ROLLED_BACK

        if (progress.best_running > 0
                and status.running_count == 0
                and status.previous_running_count > 0):
            return WatchState.ROLLED_BACK

        if (status.running_count < progress.best_running
                or status.healthy_count < progress.best_healthy
                or status.terminal):
            return WatchState.DEGRADED

        if status.running_count > 0 or status.healthy_count > 0:
            return WatchState.CONVERGING

        return WatchState.PENDING

    def _poll_delay(self, poll_interval: float) -> float:
        if self.jitter:
            return poll_interval + random.uniform(0, poll_interval * 0.1)
        return poll_interval

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _wait(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; return True if cancelled meanwhile."""
        if self.sleep is not None:
            self.sleep(delay)
            return self._cancelled()
        if self.cancel_event is not None:
            return self.cancel_event.wait(delay)
        time.sleep(delay)
        return False

    def _error(
        self,
        kind: WatchErrorKind,
        message: str,
        handle: DeploymentHandle,
        history: List[DeploymentStatus],
        polls: int,
        cause: Optional[Exception] = None
    ) -> WatchError:
        return WatchError(
            message,
            kind=kind,
            history=list(history),
            polls=polls,
            cause=cause,
            context=ErrorContext(
                stage="watch",
                service_name=handle.service_name,
                cluster_name=handle.cluster_name,
                additional_info={'handle_id': handle.handle_id, 'revision_arn': handle.revision_arn}
            )
        )
