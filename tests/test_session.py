import numpy as np
import pytest

from conftest import FakeSource
from eqviz.analysis import AudioStatistics
from eqviz.errors import AcquisitionError, AcquisitionReason
from eqviz.session import SessionController, SessionState, Snapshot


def _running(source, cfg, **kwargs):
    ctl = SessionController(source, cfg, **kwargs)
    assert ctl.start()
    assert ctl.wait_until_settled(2)
    return ctl


def test_start_runs_and_first_tick_is_unsmoothed(small_config, frames):
    ctl = _running(FakeSource(frames), small_config)
    assert ctl.state is SessionState.RUNNING
    snap = ctl.tick()
    assert snap.is_running
    assert snap.state is SessionState.RUNNING
    assert snap.frequency_data.tolist() == frames[0]
    assert len(snap.bars) == 4
    assert ctl.snapshot is snap
    ctl.stop()


def test_second_tick_blends_with_previous(small_config, frames):
    ctl = _running(FakeSource(frames), small_config)
    ctl.tick()
    snap = ctl.tick()
    expected = np.floor(np.array(frames[0]) * 0.6 + np.array(frames[1]) * 0.4 + 0.5)
    assert snap.frequency_data.tolist() == expected.astype(int).tolist()
    third = ctl.tick()
    expected = np.floor(expected * 0.6 + np.array(frames[2]) * 0.4 + 0.5)
    assert third.frequency_data.tolist() == expected.astype(int).tolist()
    ctl.stop()


def test_published_frames_are_read_only_copies(small_config, frames):
    ctl = _running(FakeSource(frames), small_config)
    first = ctl.tick()
    kept = first.frequency_data.tolist()
    ctl.tick()
    ctl.tick()
    assert first.frequency_data.tolist() == kept
    assert not first.frequency_data.flags.writeable
    ctl.stop()


def test_loudness_comes_from_time_domain(small_config):
    source = FakeSource([[0] * 8], time_frames=[[128, 192] * 4])
    ctl = _running(source, small_config)
    snap = ctl.tick()
    assert snap.loudness == pytest.approx(np.sqrt(0.125))
    assert snap.statistics.level.peak == pytest.approx(0.5)
    ctl.stop()


def test_start_is_a_no_op_while_running(small_config, frames):
    source = FakeSource(frames)
    ctl = _running(source, small_config)
    assert not ctl.start()
    assert source.acquire_calls == 1
    ctl.stop()


def test_stop_releases_and_resets(small_config, frames):
    seen = []
    source = FakeSource(frames)
    ctl = _running(source, small_config, on_snapshot=seen.append)
    ctl.tick()
    ctl.stop()
    assert ctl.state is SessionState.IDLE
    assert source.released == source.handles
    assert ctl.tick() is None
    assert seen[-1] == Snapshot()
    assert ctl.snapshot.statistics == AudioStatistics.empty()
    assert ctl.snapshot.loudness == 0.0


def test_restart_does_not_carry_smoothing_across_stop(small_config, frames):
    ctl = _running(FakeSource(frames), small_config)
    first_ever = ctl.tick().frequency_data.tolist()
    ctl.tick()
    ctl.stop()
    assert ctl.start()
    ctl.wait_until_settled(2)
    assert ctl.tick().frequency_data.tolist() == first_ever
    ctl.stop()


def test_permission_denied_fails_without_reading(small_config):
    seen = []
    source = FakeSource(error=AcquisitionError(AcquisitionReason.PERMISSION_DENIED))
    ctl = SessionController(source, small_config, on_snapshot=seen.append)
    ctl.start()
    assert ctl.wait_until_settled(2)
    assert ctl.state is SessionState.FAILED
    assert ctl.failure.reason is AcquisitionReason.PERMISSION_DENIED
    assert source.handles == []
    assert ctl.tick() is None
    assert seen[-1].state is SessionState.FAILED
    assert seen[-1].error == ctl.failure.user_message
    assert "denied" in seen[-1].error


def test_failure_does_not_retry_until_asked(small_config, frames):
    source = FakeSource(frames, error=AcquisitionError(AcquisitionReason.DEVICE_BUSY))
    ctl = SessionController(source, small_config)
    ctl.start()
    ctl.wait_until_settled(2)
    ctl.tick()
    assert source.acquire_calls == 1

    source.error = None
    assert ctl.start()
    ctl.wait_until_settled(2)
    assert ctl.state is SessionState.RUNNING
    assert ctl.failure is None
    ctl.stop()


def test_unexpected_acquisition_error_is_unknown(small_config):
    ctl = SessionController(FakeSource(error=RuntimeError("driver exploded")), small_config)
    ctl.start()
    ctl.wait_until_settled(2)
    assert ctl.state is SessionState.FAILED
    assert ctl.failure.reason is AcquisitionReason.UNKNOWN
    assert ctl.snapshot.error == "driver exploded"


def test_stop_is_safe_from_any_state(small_config):
    seen = []
    ctl = SessionController(FakeSource(error=AcquisitionError(AcquisitionReason.DEVICE_NOT_FOUND)),
                            small_config, on_snapshot=seen.append)
    ctl.stop()
    assert ctl.state is SessionState.IDLE
    assert seen == []

    ctl.start()
    ctl.wait_until_settled(2)
    ctl.stop()
    assert ctl.state is SessionState.IDLE
    assert ctl.failure is None
    assert seen[-1] == Snapshot()


def test_stop_during_acquisition_releases_late_handle(small_config, frames, gate):
    source = FakeSource(frames, gate=gate)
    ctl = SessionController(source, small_config)
    ctl.start()
    assert ctl.state is SessionState.ACQUIRING
    assert not ctl.start()
    ctl.stop()
    assert ctl.state is SessionState.IDLE
    gate.set()
    ctl._worker.join(2)
    assert ctl.state is SessionState.IDLE
    assert len(source.handles) == 1
    assert source.released == source.handles
    assert source.handles[0].reads == 0
    assert ctl.tick() is None


def test_restart_waits_for_cancelled_acquisition(small_config, frames, gate):
    source = FakeSource(frames, gate=gate)
    ctl = SessionController(source, small_config)
    ctl.start()
    ctl.stop()
    assert ctl.start()
    assert ctl.state is SessionState.ACQUIRING
    gate.set()
    assert ctl.wait_until_settled(2)
    assert ctl.state is SessionState.RUNNING
    assert source.acquire_calls == 2
    assert source.max_in_flight == 1
    assert source.max_open == 1
    assert source.released == [source.handles[0]]
    assert ctl.tick().is_running
    ctl.stop()
    assert source.open == 0


def test_restart_cancelled_again_never_acquires(small_config, frames, gate):
    source = FakeSource(frames, gate=gate)
    ctl = SessionController(source, small_config)
    ctl.start()
    ctl.stop()
    ctl.start()
    ctl.stop()
    gate.set()
    ctl._worker.join(2)
    assert source.acquire_calls == 1
    assert source.released == source.handles
    assert ctl.state is SessionState.IDLE


def test_toggle(small_config, frames):
    source = FakeSource(frames)
    ctl = SessionController(source, small_config)
    ctl.toggle()
    ctl.wait_until_settled(2)
    assert ctl.is_running
    ctl.toggle()
    assert ctl.state is SessionState.IDLE
    assert source.released == source.handles


def test_subscriber_errors_do_not_break_ticks(small_config, frames):
    seen = []

    def broken(snap):
        raise RuntimeError("render failed")

    ctl = _running(FakeSource(frames), small_config)
    ctl.subscribe(broken)
    ctl.subscribe(seen.append)
    assert ctl.tick() is not None
    assert len(seen) == 1
    ctl.stop()


def test_subscriber_may_stop_from_callback(small_config, frames):
    source = FakeSource(frames)
    ctl = _running(source, small_config)
    ctl.subscribe(lambda snap: snap.is_running and ctl.stop())
    ctl.tick()
    assert ctl.state is SessionState.IDLE
    assert ctl.tick() is None


def test_test_pattern_bypasses_capture(small_config):
    source = FakeSource()
    ctl = SessionController(source, small_config, rng=np.random.default_rng(0))
    snap = ctl.generate_test_audio("pulse")
    assert source.acquire_calls == 0
    assert ctl.state is SessionState.IDLE
    assert not snap.is_running
    assert snap.loudness == 0.5
    assert snap.frequency_data.size == 256
    assert len(snap.bars) == small_config.num_bars
    assert snap.statistics.level.rms == 0.0
    assert snap.statistics.frequency_range.total > 0


def test_test_pattern_ignored_while_running(small_config, frames):
    ctl = _running(FakeSource(frames), small_config)
    assert ctl.generate_test_audio("sine") is None
    ctl.stop()


def test_context_manager_stops(small_config, frames):
    source = FakeSource(frames)
    with _running(source, small_config) as ctl:
        ctl.tick()
    assert ctl.state is SessionState.IDLE
    assert source.released == source.handles
