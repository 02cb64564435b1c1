import numpy as np
import pytest

from isokalman.belief import LinearBelief
from isokalman.ikalman_filter import (
    GetBeliefStrategy,
    KalmanFilterBase,
    TimeHorizonBuffer,
    str_to_get_belief_strategy,
)
from isokalman.results import MeasData, MeasStatus, ObservationType, ProcessMeasResult
from isokalman.timestamp import Timestamp


def ts(x):
    return Timestamp.from_sec(x)


class ConstVelFilter(KalmanFilterBase):
    def predict_to(self, t_b):
        found = self.get_belief_before_t(t_b)
        if found is None:
            return False
        bel, _ = found
        new = bel.clone()
        new.timestamp = t_b
        self.set_belief_at_t(new, t_b)
        return True

    def propagation_measurement(self, m):
        found = self.get_belief_before_t(m.t_m)
        if found is None:
            return ProcessMeasResult(status=MeasStatus.DISCARED)
        _, t_a = found
        dt = m.t_m.to_sec() - t_a.to_sec()
        late = self.exist_belief_after_t(m.t_m)
        phi = np.array([[1.0, dt], [0.0, 1.0]])
        ok = self.apply_propagation(phi, np.eye(2) * 1e-6, t_a, m.t_m)
        if not ok:
            return ProcessMeasResult(status=MeasStatus.REJECTED)
        return ProcessMeasResult(status=MeasStatus.OUTOFORDER if late else MeasStatus.PROCESSED)

    def local_private_measurement(self, m):
        ok = self.apply_private_observation(np.array([[1.0, 0.0]]), m.r_cov, m.z, m.t_m)
        return ProcessMeasResult(status=MeasStatus.PROCESSED if ok else MeasStatus.REJECTED)


def make_filter(horizon=1.0):
    f = ConstVelFilter(horizon_sec=horizon)
    bel = LinearBelief(np.array([0.0, 1.0]), np.eye(2) * 0.5, ts(0.0))
    f.initialize(bel)
    return f


def prop(t):
    return MeasData(obs_type=ObservationType.PROPAGATION, meas_type="acc", t_m=ts(t), t_p=ts(t))


def test_strategy_names():
    assert str(GetBeliefStrategy.CLOSEST) == "CLOSEST"
    assert str_to_get_belief_strategy("PREDICT_BELIEF") is GetBeliefStrategy.PREDICT_BELIEF
    assert str_to_get_belief_strategy("bogus") is GetBeliefStrategy.EXACT


def test_buffer_insert_replace_and_multi():
    single = TimeHorizonBuffer(1.0)
    single.insert("a", ts(0.1))
    single.insert("b", ts(0.1))
    assert len(single) == 1
    assert single.get_at_t(ts(0.1)) == "b"
    multi = TimeHorizonBuffer(1.0, multi=True)
    multi.insert("a", ts(0.1))
    multi.insert("b", ts(0.1))
    assert list(multi) == ["a", "b"]
    multi.remove_at_t(ts(0.1))
    assert len(multi) == 0


def test_buffer_ordering_queries():
    buf = TimeHorizonBuffer(10.0)
    for x in (0.3, 0.1, 0.2):
        buf.insert(x, ts(x))
    assert list(buf) == [0.1, 0.2, 0.3]
    assert list(reversed(buf)) == [0.3, 0.2, 0.1]
    assert buf.get_before_t(ts(0.2)) == (ts(0.1), 0.1)
    assert buf.get_after_t(ts(0.2)) == (ts(0.3), 0.3)
    assert buf.get_before_t(ts(0.1)) is None
    assert buf.get_after_t(ts(0.3)) is None
    assert buf.get_latest() == 0.3
    assert buf.get_oldest_t() == ts(0.1)
    assert buf.between(ts(0.1), ts(0.2)) == [0.1, 0.2]
    assert buf.accumulate_between(ts(0.1), ts(0.3), [], lambda acc, d: acc + [d]) == [0.1, 0.2, 0.3]
    buf.remove_after_t(ts(0.1))
    assert list(buf) == [0.1]
    assert not buf.exist_after_t(ts(0.1))


def test_buffer_horizon():
    buf = TimeHorizonBuffer(1.0)
    for x in (0.0, 0.5, 1.0, 1.5, 2.0):
        buf.insert(x, ts(x))
    assert buf.horizon() == pytest.approx(2.0)
    restricted = TimeHorizonBuffer(1.0)
    for x in (0.0, 0.5, 1.0, 1.5, 2.0):
        restricted.insert(x, ts(x))
    restricted.check_horizon_restricted(4)
    assert len(restricted) == 4
    buf.check_horizon()
    assert list(buf) == [1.0, 1.5, 2.0]
    assert buf.horizon() <= buf.max_horizon_sec


def test_propagation_keeps_covariance_with_identity():
    f = make_filter()
    q = np.eye(2) * 0.1
    assert f.apply_propagation(np.eye(2), q, ts(0.0), ts(0.1))
    bel = f.get_belief_at_t(ts(0.1))
    np.testing.assert_allclose(bel.sigma, np.eye(2) * 0.5 + q)
    np.testing.assert_allclose(bel.mean, [0.0, 1.0])
    assert bel.timestamp == ts(0.1)
    # the original belief stays untouched
    np.testing.assert_allclose(f.get_sigma_at_t(ts(0.0)), np.eye(2) * 0.5)


def test_propagation_dimension_mismatch():
    f = make_filter()
    assert not f.apply_propagation(np.eye(3), np.eye(3), ts(0.0), ts(0.1))
    assert not f.apply_propagation(np.eye(2), np.eye(2), ts(5.0), ts(6.0))
    assert not f.exist_belief_at_t(ts(0.1))


def test_private_observation_reduces_uncertainty():
    f = make_filter()
    ok = f.apply_private_observation(np.array([[1.0, 0.0]]), np.array([[0.01]]), np.array([0.1]), ts(0.0))
    assert ok
    bel = f.current_belief()
    assert bel.sigma[0, 0] < 0.5
    assert 0.0 < bel.mean[0] < 0.1


def test_outlier_is_rejected():
    f = make_filter()
    ok = f.apply_private_observation(np.array([[1.0, 0.0]]), np.array([[1e-4]]), np.array([100.0]), ts(0.0))
    assert not ok
    np.testing.assert_allclose(f.get_mean_at_t(ts(0.0)), [0.0, 1.0])


def test_iterated_matches_linear_update():
    f1 = make_filter()
    f2 = make_filter()
    h_mat = np.array([[1.0, 0.0]])
    r_cov = np.array([[0.01]])
    z = np.array([0.2])
    assert f1.apply_private_observation(h_mat, r_cov, z, ts(0.0))
    assert f2.apply_private_observation_iterated(
        r_cov, z, ts(0.0), lambda bel, zz: (h_mat, zz - h_mat @ bel.mean)
    )
    np.testing.assert_allclose(f2.current_belief().mean, f1.current_belief().mean, atol=1e-9)
    np.testing.assert_allclose(f2.current_belief().sigma, f1.current_belief().sigma, atol=1e-9)


def test_closest_strategy():
    f = make_filter()
    far = LinearBelief(np.array([5.0, 0.0]), np.eye(2), ts(1.0))
    f.set_belief_at_t(far, ts(1.0))
    assert f.get_belief_at_t(ts(0.3), GetBeliefStrategy.CLOSEST).timestamp == ts(0.0)
    assert f.get_belief_at_t(ts(0.7), GetBeliefStrategy.CLOSEST) is far
    assert f.get_belief_at_t(ts(0.5), GetBeliefStrategy.CLOSEST).timestamp == ts(0.0)
    assert f.get_belief_at_t(ts(2.0), GetBeliefStrategy.CLOSEST) is far
    assert f.get_belief_at_t(ts(0.3)) is None


def test_predict_strategy_inserts_belief():
    f = make_filter()
    bel = f.get_belief_at_t(ts(0.4), GetBeliefStrategy.PREDICT_BELIEF)
    assert bel.timestamp == ts(0.4)
    assert f.exist_belief_at_t(ts(0.4))


def test_missing_belief_raises():
    f = make_filter()
    with pytest.raises(KeyError):
        f.get_mean_at_t(ts(3.0))


def test_delayed_measurement_is_replayed():
    f = make_filter()
    f.process_measurement(prop(0.1))
    f.process_measurement(prop(0.2))
    results = f.process_measurement(prop(0.15))
    assert [r.status for r in results] == [MeasStatus.OUTOFORDER, MeasStatus.PROCESSED]
    assert results[1].t == ts(0.2)
    stamps = [b.timestamp for b in f.hist_belief]
    assert stamps == [ts(0.0), ts(0.1), ts(0.15), ts(0.2)]
    assert len(f.hist_meas) == 3
    assert f.current_t() == ts(0.2)


def test_unknown_observation_is_discarded():
    f = make_filter()
    m = MeasData(obs_type=ObservationType.UNKNOWN, meas_type="x", t_m=ts(0.1))
    results = f.process_measurement(m)
    assert results[0].status is MeasStatus.DISCARED
    assert results[0].meas_type == "x"
    assert len(f.hist_meas) == 0


def test_disable_delayed_handling_clears_history():
    f = make_filter()
    f.process_measurement(prop(0.1))
    assert len(f.hist_meas) == 1
    f.handle_delayed_meas = False
    assert len(f.hist_meas) == 0
    assert not f.insert_measurement(prop(0.3), ts(0.3))


def test_reset_keeps_measurements():
    f = make_filter()
    f.process_measurement(prop(0.1))
    f.reset()
    assert f.current_belief() is None
    assert f.current_t() == Timestamp()
    assert len(f.hist_meas) == 1


def test_correct_belief_at_t():
    f = make_filter()
    assert f.correct_belief_at_t(np.array([1.0, 0.0]), np.eye(2), ts(0.0))
    np.testing.assert_allclose(f.get_mean_at_t(ts(0.0)), [1.0, 1.0])
    assert not f.correct_belief_at_t(np.zeros(2), np.eye(2), ts(9.0))


def test_print_hist_belief_limits_lines():
    f = make_filter()
    f.process_measurement(prop(0.1))
    lines = f.print_hist_belief(max_items=1)
    assert len(lines) == 1
    assert lines[0].startswith("* IBelief")
    meas_lines = f.print_hist_meas(reverse=True)
    assert len(meas_lines) == 1
    assert meas_lines[0].startswith("* MeasData")


def test_apply_propagation_belief_dimension_check():
    f = make_filter()
    bel = LinearBelief(np.zeros(2), np.eye(2), ts(0.0))
    assert f.apply_propagation_belief(bel, np.eye(2), ts(0.0), ts(0.3))
    assert f.get_belief_at_t(ts(0.3)) is bel
    assert not f.apply_propagation_belief(bel, np.eye(3), ts(0.3), ts(0.4))