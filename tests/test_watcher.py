"""Tests for the stability watcher."""

import threading

import pytest

from deploy_pipeline.orchestrator.watcher import StabilityWatcher, WatchState, _Progress
from deploy_pipeline.utils.errors import DeployError, DeployErrorKind, WatchError, WatchErrorKind

from fakes import PREVIOUS_ARN, REVISION_ARN, FakeControlPlane, status


def make_watcher(control_plane, clock, **kwargs):
    return StabilityWatcher(control_plane, jitter=False, clock=clock, sleep=clock.sleep, **kwargs)


def unavailable():
    return DeployError("Control plane API rate limit exceeded", kind=DeployErrorKind.CONTROL_PLANE_UNAVAILABLE)


class TestStabilityWatcher:
    """Tests for StabilityWatcher.watch."""

    def test_stable_after_convergence(self, clock, handle):
        """Counts climbing to the target end in STABLE on the third poll."""
        control_plane = FakeControlPlane([status(0, 0, 0), status(1, 1, 1), status(2, 2, 2)])

        result = make_watcher(control_plane, clock).watch(handle, timeout=300, poll_interval=15)

        assert result.state == WatchState.STABLE
        assert result.polls == 3
        assert result.elapsed == 30
        assert result.final_status.counts() == (2, 2, 2)
        assert clock.sleeps == [15, 15]

    def test_timed_out(self, clock, handle):
        """A deployment stuck short of its target times out at the deadline."""
        control_plane = FakeControlPlane([status(2, 1, 1)])

        with pytest.raises(WatchError) as exc_info:
            make_watcher(control_plane, clock).watch(handle, timeout=300, poll_interval=15)

        error = exc_info.value
        assert error.kind == WatchErrorKind.TIMED_OUT
        assert error.error_kind == "TimedOut"
        assert error.polls == 21
        assert clock.now == 300
        assert len(error.history) == 21

    def test_deadline_caps_last_wait(self, clock, handle):
        """The final sleep never overshoots the deadline."""
        control_plane = FakeControlPlane([status(2, 0, 0)])

        with pytest.raises(WatchError):
            make_watcher(control_plane, clock).watch(handle, timeout=40, poll_interval=15)

        assert clock.sleeps == [15, 15, 10]

    def test_rolled_back_when_primary_reverts(self, clock, handle):
        """A terminal rollout on another revision is a rollback."""
        control_plane = FakeControlPlane([
            status(2, 1, 0),
            status(2, 0, 0, terminal=True, primary_revision_arn=PREVIOUS_ARN, previous_running_count=2),
        ])

        with pytest.raises(WatchError) as exc_info:
            make_watcher(control_plane, clock).watch(handle, timeout=300, poll_interval=15)

        assert exc_info.value.kind == WatchErrorKind.ROLLED_BACK
        assert exc_info.value.polls == 2
        assert PREVIOUS_ARN in exc_info.value.message

    def test_rolled_back_when_old_tasks_replace_new(self, clock, handle):
        """New tasks vanishing while old ones run is a rollback."""
        control_plane = FakeControlPlane([
            status(2, 1, 1, previous_running_count=1),
            status(2, 0, 0, previous_running_count=2),
        ])

        with pytest.raises(WatchError) as exc_info:
            make_watcher(control_plane, clock).watch(handle, timeout=300, poll_interval=15)

        assert exc_info.value.kind == WatchErrorKind.ROLLED_BACK

    def test_transient_poll_failures_tolerated(self, clock, handle):
        control_plane = FakeControlPlane([status(2, 1, 1), unavailable(), unavailable(), status(2, 2, 2)])

        result = make_watcher(control_plane, clock).watch(handle, timeout=300, poll_interval=15)

        assert result.state == WatchState.STABLE
        assert result.polls == 4
        assert len(result.history) == 2

    def test_control_plane_unavailable(self, clock, handle):
        """Consecutive failed polls end the watch."""
        control_plane = FakeControlPlane([status(2, 1, 1), unavailable()])

        with pytest.raises(WatchError) as exc_info:
            make_watcher(control_plane, clock, max_poll_failures=3).watch(handle, timeout=300, poll_interval=15)

        assert exc_info.value.kind == WatchErrorKind.CONTROL_PLANE_UNAVAILABLE
        assert exc_info.value.polls == 4
        assert isinstance(exc_info.value.cause, DeployError)

    def test_cancelled_before_first_poll(self, clock, handle):
        cancel_event = threading.Event()
        cancel_event.set()
        control_plane = FakeControlPlane([status(2, 2, 2)])

        with pytest.raises(WatchError) as exc_info:
            make_watcher(control_plane, clock, cancel_event=cancel_event).watch(
                handle, timeout=300, poll_interval=15
            )

        assert exc_info.value.kind == WatchErrorKind.CANCELLED
        assert control_plane.status_calls == 0

    def test_cancelled_while_waiting(self, clock, handle):
        """Cancellation during the wait stops before the next poll."""
        cancel_event = threading.Event()
        control_plane = FakeControlPlane([status(2, 0, 0)])

        def sleep(seconds):
            clock.sleep(seconds)
            cancel_event.set()

        watcher = StabilityWatcher(
            control_plane, jitter=False, clock=clock, sleep=sleep, cancel_event=cancel_event
        )

        with pytest.raises(WatchError) as exc_info:
            watcher.watch(handle, timeout=300, poll_interval=15)

        assert exc_info.value.kind == WatchErrorKind.CANCELLED
        assert control_plane.status_calls == 1

    def test_jitter_bounds(self, clock, handle):
        """Jittered intervals stay within 10% above the base interval."""
        control_plane = FakeControlPlane([status(2, 0, 0), status(2, 0, 0), status(2, 2, 2)])
        watcher = StabilityWatcher(control_plane, jitter=True, clock=clock, sleep=clock.sleep)

        watcher.watch(handle, timeout=300, poll_interval=15)

        assert all(15 <= delay <= 16.5 for delay in clock.sleeps)

    @pytest.mark.parametrize("timeout,poll_interval", [(0, 15), (300, 0), (-1, 15)])
    def test_invalid_timing(self, clock, handle, timeout, poll_interval):
        with pytest.raises(ValueError):
            make_watcher(FakeControlPlane([status(2, 2, 2)]), clock).watch(handle, timeout, poll_interval)


class TestNextState:
    """Tests for the watch state transitions."""

    def setup_method(self):
        self.watcher = StabilityWatcher(FakeControlPlane(), jitter=False)

    def next_state(self, handle, snapshot, best_running=0, best_healthy=0, state=WatchState.PENDING):
        progress = _Progress(best_running=best_running, best_healthy=best_healthy)
        return self.watcher.next_state(state, snapshot, progress, handle)

    def test_pending(self, handle):
        assert self.next_state(handle, status(2, 0, 0)) == WatchState.PENDING

    def test_converging(self, handle):
        assert self.next_state(handle, status(2, 1, 0)) == WatchState.CONVERGING

    def test_zero_counts_not_stable(self, handle):
        """A report of zero everything is not convergence for a non-zero target."""
        assert self.next_state(handle, status(0, 0, 0)) == WatchState.PENDING

    def test_stable(self, handle):
        assert self.next_state(handle, status(2, 2, 2, primary_revision_arn=REVISION_ARN)) == WatchState.STABLE

    def test_degraded_when_healthy_drops(self, handle):
        snapshot = status(2, 2, 1)
        state = self.next_state(handle, snapshot, best_running=2, best_healthy=2, state=WatchState.CONVERGING)

        assert state == WatchState.DEGRADED

    def test_degraded_when_rollout_fails_in_place(self, handle):
        snapshot = status(2, 1, 1, terminal=True, primary_revision_arn=REVISION_ARN)

        assert self.next_state(handle, snapshot, best_running=1, best_healthy=1) == WatchState.DEGRADED

    def test_recovers_from_degraded(self, handle):
        state = self.next_state(handle, status(2, 2, 2), best_running=2, best_healthy=2,
                                state=WatchState.DEGRADED)

        assert state == WatchState.STABLE
