"""Kalman filter base with a belief history and replay of delayed measurements."""

from __future__ import annotations

import abc
import bisect
import enum
import logging
import time
from typing import Any, Callable, Iterator

import numpy as np

from isokalman.belief import Belief
from isokalman.kalman import (
    CorrectionCfg,
    check_dim_correction,
    check_dim_mean,
    check_dim_propagation,
    check_dim_transition,
    correction_step,
    covariance_propagation,
    stabilize_covariance,
)
from isokalman.nis import check_nis
from isokalman.results import MeasData, MeasStatus, ObservationType, ProcessMeasResult
from isokalman.timestamp import Timestamp

_log = logging.getLogger(__name__)


class GetBeliefStrategy(enum.Enum):
    """How a belief is looked up at a timestamp that may hold none."""

    EXACT = 0  # a belief is expected at the given timestamp
    CLOSEST = 1  # the closest belief in the history, if any
    PREDICT_BELIEF = 2  # a belief is predicted with the filter's model

    def __str__(self) -> str:
        return self.name


def str_to_get_belief_strategy(text: str) -> GetBeliefStrategy:
    """Parse a strategy name; unknown names give EXACT."""
    try:
        return GetBeliefStrategy[text]
    except KeyError:
        return GetBeliefStrategy.EXACT


class TimeHorizonBuffer:
    """Time-ordered buffer that forgets entries older than a horizon.

    With ``multi`` set, several entries may share one timestamp; otherwise an
    insert at an existing timestamp replaces the entry.
    """

    def __init__(self, horizon_sec: float = 1.0, multi: bool = False) -> None:
        self.max_horizon_sec = float(horizon_sec)
        self.multi = multi
        self._stamps: list[Timestamp] = []
        self._data: list[Any] = []

    def __len__(self) -> int:
        return len(self._stamps)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._data))

    def __reversed__(self) -> Iterator[Any]:
        return reversed(list(self._data))

    def items(self) -> Iterator[tuple[Timestamp, Any]]:
        """Yield (timestamp, data) pairs in time order."""
        return iter(list(zip(self._stamps, self._data)))

    def insert(self, data: Any, t: Timestamp) -> None:
        if not self.multi:
            idx = bisect.bisect_left(self._stamps, t)
            if idx < len(self._stamps) and self._stamps[idx] == t:
                self._data[idx] = data
                return
            self._stamps.insert(idx, t)
            self._data.insert(idx, data)
            return
        idx = bisect.bisect_right(self._stamps, t)
        self._stamps.insert(idx, t)
        self._data.insert(idx, data)

    def get_at_t(self, t: Timestamp) -> Any | None:
        """Data at exactly t (the first one in a multi buffer), or None."""
        idx = bisect.bisect_left(self._stamps, t)
        if idx < len(self._stamps) and self._stamps[idx] == t:
            return self._data[idx]
        return None

    def exist_at_t(self, t: Timestamp) -> bool:
        idx = bisect.bisect_left(self._stamps, t)
        return idx < len(self._stamps) and self._stamps[idx] == t

    def exist_before_t(self, t: Timestamp) -> bool:
        return bisect.bisect_left(self._stamps, t) > 0

    def exist_after_t(self, t: Timestamp) -> bool:
        return bisect.bisect_right(self._stamps, t) < len(self._stamps)

    def get_before_t(self, t: Timestamp) -> tuple[Timestamp, Any] | None:
        """Latest (timestamp, data) strictly before t, or None."""
        idx = bisect.bisect_left(self._stamps, t)
        if idx == 0:
            return None
        return self._stamps[idx - 1], self._data[idx - 1]

    def get_after_t(self, t: Timestamp) -> tuple[Timestamp, Any] | None:
        """Earliest (timestamp, data) strictly after t, or None."""
        idx = bisect.bisect_right(self._stamps, t)
        if idx >= len(self._stamps):
            return None
        return self._stamps[idx], self._data[idx]

    def get_latest(self) -> Any | None:
        return self._data[-1] if self._data else None

    def get_latest_t(self) -> Timestamp | None:
        return self._stamps[-1] if self._stamps else None

    def get_oldest_t(self) -> Timestamp | None:
        return self._stamps[0] if self._stamps else None

    def between(self, t1: Timestamp, t2: Timestamp) -> list[Any]:
        """Data with t1 <= timestamp <= t2, in time order."""
        lo = bisect.bisect_left(self._stamps, t1)
        hi = bisect.bisect_right(self._stamps, t2)
        return self._data[lo:hi]

    def accumulate_between(
        self, t1: Timestamp, t2: Timestamp, init: Any, op: Callable[[Any, Any], Any]
    ) -> Any:
        """Fold op(acc, data) over the data between t1 and t2, both included."""
        acc = init
        for data in self.between(t1, t2):
            acc = op(acc, data)
        return acc

    def remove_after_t(self, t: Timestamp) -> None:
        idx = bisect.bisect_right(self._stamps, t)
        del self._stamps[idx:]
        del self._data[idx:]

    def remove_at_t(self, t: Timestamp) -> None:
        lo = bisect.bisect_left(self._stamps, t)
        hi = bisect.bisect_right(self._stamps, t)
        del self._stamps[lo:hi]
        del self._data[lo:hi]

    def clear(self) -> None:
        self._stamps.clear()
        self._data.clear()

    def set_horizon(self, horizon_sec: float) -> None:
        self.max_horizon_sec = float(horizon_sec)

    def horizon(self) -> float:
        """Time span between the oldest and the latest entry."""
        if not self._stamps:
            return 0.0
        return self._stamps[-1].to_sec() - self._stamps[0].to_sec()

    def _outdated_count(self) -> int:
        if not self._stamps:
            return 0
        limit = self._stamps[-1].to_sec() - self.max_horizon_sec
        count = 0
        for stamp in self._stamps:
            if stamp.to_sec() >= limit:
                break
            count += 1
        return count

    def check_horizon(self) -> None:
        """Drop entries older than the horizon behind the latest entry."""
        count = self._outdated_count()
        del self._stamps[:count]
        del self._data[:count]

    def check_horizon_restricted(self, keep: int) -> None:
        """Like check_horizon, but keep at least ``keep`` entries."""
        count = min(self._outdated_count(), max(len(self._stamps) - keep, 0))
        del self._stamps[:count]
        del self._data[:count]


class KalmanFilterBase(abc.ABC):
    """Filter that keeps a belief history and replays delayed measurements."""

    def __init__(
        self,
        horizon_sec: float = 1.0,
        handle_delayed_meas: bool = True,
        bel_0: Belief | None = None,
    ) -> None:
        self.hist_belief = TimeHorizonBuffer(horizon_sec)
        self.hist_meas = TimeHorizonBuffer(horizon_sec, multi=True)
        self.max_time_horizon_sec = float(horizon_sec)
        self._handle_delayed_meas = handle_delayed_meas
        self.enabled = True
        self.corr_cfg = CorrectionCfg()
        if bel_0 is not None:
            self.hist_belief.insert(bel_0, bel_0.timestamp)

    @property
    def handle_delayed_meas(self) -> bool:
        return self._handle_delayed_meas

    @handle_delayed_meas.setter
    def handle_delayed_meas(self, val: bool) -> None:
        self._handle_delayed_meas = val
        if not val:
            self.hist_meas.clear()

    def process_measurement(self, m: MeasData) -> list[ProcessMeasResult]:
        """Process a measurement, replaying later ones if it arrived out of order."""
        res = KalmanFilterBase.delegate_measurement(self, m)
        results = [res]
        if self._handle_delayed_meas:
            if res.status is MeasStatus.OUTOFORDER and self.hist_meas.exist_after_t(m.t_m):
                results.extend(self.redo_updates_after_t(m.t_m))
            if res.status is not MeasStatus.DISCARED:
                self.insert_measurement(m, m.t_m)
                self.hist_meas.check_horizon()
        return results

    def initialize(self, bel_init: Belief, t: Timestamp | None = None) -> None:
        self.reset()
        self.hist_belief.insert(bel_init, bel_init.timestamp if t is None else t)

    def set_horizon(self, t_hor: float) -> None:
        self.max_time_horizon_sec = float(t_hor)
        self.hist_belief.set_horizon(t_hor)
        self.hist_meas.set_horizon(t_hor)

    def reset(self) -> None:
        # measurements are kept on purpose
        self.hist_belief.clear()

    def current_t(self) -> Timestamp:
        latest = self.hist_belief.get_latest_t()
        return Timestamp() if latest is None else latest

    def current_belief(self) -> Belief | None:
        return self.hist_belief.get_latest()

    def exist_belief_at_t(self, t: Timestamp) -> bool:
        return self.hist_belief.exist_at_t(t)

    def exist_belief_before_t(self, t: Timestamp) -> bool:
        return self.hist_belief.exist_before_t(t)

    def exist_belief_after_t(self, t: Timestamp) -> bool:
        return self.hist_belief.exist_after_t(t)

    def get_belief_at_t(
        self, t: Timestamp, strategy: GetBeliefStrategy = GetBeliefStrategy.EXACT
    ) -> Belief | None:
        """Belief at t according to the strategy, or None."""
        bel = self._lookup_belief(t, strategy)
        if bel is None:
            _log.info("get_belief_at_t: could not find belief at t=%s", t)
        return bel

    def _lookup_belief(self, t: Timestamp, strategy: GetBeliefStrategy) -> Belief | None:
        if self.exist_belief_at_t(t):
            return self.hist_belief.get_at_t(t)
        if strategy is GetBeliefStrategy.CLOSEST:
            before = self.hist_belief.get_before_t(t)
            after = self.hist_belief.get_after_t(t)
            if before is not None and after is not None:
                dt_prev = t.stamp_ns() - before[0].stamp_ns()
                dt_after = after[0].stamp_ns() - t.stamp_ns()
                return before[1] if dt_prev <= dt_after else after[1]
            if before is not None:
                return before[1]
            if after is not None:
                return after[1]
            _log.debug("get_belief_at_t: no bounding beliefs for CLOSEST at t=%s", t)
            return None
        if strategy is GetBeliefStrategy.PREDICT_BELIEF:
            if self.predict_to(t):
                return self.hist_belief.get_at_t(t)
            return None
        return None

    def set_belief_at_t(self, bel: Belief, t: Timestamp) -> None:
        self.hist_belief.insert(bel, t)

    def get_belief_before_t(self, t: Timestamp) -> tuple[Belief, Timestamp] | None:
        """Latest belief strictly before t with its timestamp, or None."""
        found = self.hist_belief.get_before_t(t)
        if found is None:
            return None
        stamp, bel = found
        return bel, stamp

    def _require_belief(self, t: Timestamp) -> Belief:
        bel = self.get_belief_at_t(t)
        if bel is None:
            raise KeyError(f"no belief at t={t}")
        return bel

    def get_mean_at_t(self, t: Timestamp) -> np.ndarray:
        return self._require_belief(t).mean

    def get_sigma_at_t(self, t: Timestamp) -> np.ndarray:
        return self._require_belief(t).sigma

    @staticmethod
    def _log_items(items, max_items: int) -> list[str]:
        lines = []
        for item in items:
            if len(lines) >= max_items:
                break
            lines.append(item)
            _log.info(item)
        return lines

    def print_hist_meas(self, max_items: int = 100, reverse: bool = False) -> list[str]:
        """Log up to max_items measurements and return the logged lines."""
        source = reversed(self.hist_meas) if reverse else iter(self.hist_meas)
        return self._log_items((f"* {m}" for m in source), max_items)

    def print_hist_belief(self, max_items: int = 100, reverse: bool = False) -> list[str]:
        """Log up to max_items beliefs and return the logged lines."""
        source = reversed(self.hist_belief) if reverse else iter(self.hist_belief)
        return self._log_items((str(b) for b in source), max_items)

    @abc.abstractmethod
    def predict_to(self, t_b: Timestamp) -> bool:
        """Predict a belief at t_b with the system model, if there is one."""

    @abc.abstractmethod
    def propagation_measurement(self, m: MeasData) -> ProcessMeasResult:
        """Process a propagation (control input) measurement."""

    @abc.abstractmethod
    def local_private_measurement(self, m: MeasData) -> ProcessMeasResult:
        """Process a private observation."""

    def insert_measurement(self, m: MeasData, t: Timestamp) -> bool:
        if self._handle_delayed_meas:
            self.hist_meas.insert(m, t)
        return self._handle_delayed_meas

    def redo_updates_after_t(self, t: Timestamp) -> list[ProcessMeasResult]:
        """Drop beliefs after t and reprocess the stored measurements after t."""
        self.remove_beliefs_after_t(t)
        results: list[ProcessMeasResult] = []
        after = self.hist_meas.get_after_t(t)
        t_last = self.hist_meas.get_latest_t()
        if after is None or t_last is None:
            return results
        t_after, first = after
        _log.debug("redo_updates_after_t() t_after=%s, t_last=%s", t_after, t_last)
        if t_after == t_last:
            results.append(self.delegate_measurement(first))
        else:
            for m in list(self.hist_meas.between(t_after, t_last)):
                results.append(self.delegate_measurement(m))
        return results

    def correct_belief_at_t(self, mean_corr, sigma_apos, t: Timestamp) -> bool:
        bel = self.get_belief_at_t(t)
        if bel is None:
            return False
        bel.correct(mean_corr, sigma_apos)
        return True

    def remove_beliefs_after_t(self, t: Timestamp) -> None:
        self.hist_belief.remove_after_t(t)

    def check_horizon(self) -> None:
        self.hist_belief.check_horizon()
        self.hist_meas.check_horizon()

    def delegate_measurement(self, m: MeasData) -> ProcessMeasResult:
        """Dispatch a measurement by its observation type."""
        res = ProcessMeasResult(status=MeasStatus.DISCARED)
        start = time.perf_counter()
        if m.obs_type is ObservationType.PROPAGATION:
            res = self.propagation_measurement(m)
        elif m.obs_type is ObservationType.PRIVATE_OBSERVATION:
            res = self.local_private_measurement(m)
        res.exec_time = time.perf_counter() - start
        res.t = m.t_m
        res.meas_type = m.meas_type
        res.obs_type = m.obs_type
        return res

    def apply_propagation(self, phi_ab, q_ab, t_a: Timestamp, t_b: Timestamp) -> bool:
        """Linear propagation of the belief at t_a to t_b."""
        bel_a = self.get_belief_at_t(t_a)
        if bel_a is None:
            _log.warning("No belief at t_a=%s! Did you forget to initialize the filter?", t_a)
            return False
        phi = np.atleast_2d(np.asarray(phi_ab, dtype=float))
        if not check_dim_mean(bel_a.mean, phi):
            return False
        mean_b = phi @ bel_a.mean
        return self.apply_propagation_with_mean(bel_a, mean_b, phi, q_ab, t_a, t_b)

    def apply_propagation_with_mean(
        self, bel_a: Belief, mean_b, phi_ab, q_ab, t_a: Timestamp, t_b: Timestamp
    ) -> bool:
        """Propagate the covariance and store a belief with the given mean at t_b."""
        if not check_dim_propagation(bel_a.sigma, phi_ab, q_ab):
            _log.error(
                "Could not set the propagated belief from t_a=%s to t_b=%s! "
                "Maybe dimension mismatch?\nPhi_II_ab=%s\nQ_II_ab=%s\nSigma_II_a=%s\nmean_II_a=%s",
                t_a, t_b, phi_ab, q_ab, bel_a.sigma, bel_a.mean,
            )
            return False
        sigma_b = covariance_propagation(bel_a.sigma, phi_ab, q_ab)
        bel_b = bel_a.clone()
        if check_dim_mean(mean_b, sigma_b) and bel_b.set(mean_b, sigma_b):
            bel_b.timestamp = t_b
            self.set_belief_at_t(bel_b, t_b)
            return True
        return False

    def apply_propagation_belief(
        self, bel_b: Belief, phi_ab, t_a: Timestamp, t_b: Timestamp
    ) -> bool:
        """Store an already propagated belief at t_b."""
        if not check_dim_transition(bel_b.sigma, phi_ab):
            _log.error(
                "Could not set the propagated belief from t_a=%s to t_b=%s! "
                "Maybe dimension mismatch?\nPhi_II_ab=%s\nSigma_II_b=%s\nmean_II_b=%s",
                t_a, t_b, phi_ab, bel_b.sigma, bel_b.mean,
            )
            return False
        bel_b.timestamp = t_b
        self.set_belief_at_t(bel_b, t_b)
        return True

    def apply_private_observation(
        self, h, r_cov, z, t: Timestamp, cfg: CorrectionCfg | None = None
    ) -> bool:
        """Linear observation z = H x of the belief at t."""
        bel = self.get_belief_at_t(t)
        if bel is None:
            return False
        hm = np.atleast_2d(np.asarray(h, dtype=float))
        r = np.asarray(z, dtype=float).reshape(-1) - hm @ bel.mean
        return self.apply_private_observation_belief(bel, hm, r_cov, r, cfg)

    def apply_private_observation_belief(
        self, bel_apri: Belief, h, r_cov, r, cfg: CorrectionCfg | None = None
    ) -> bool:
        """Correct a belief in place with residual r; False if rejected."""
        res = correction_step(h, r_cov, r, bel_apri.sigma, cfg or self.corr_cfg)
        if not res.rejected:
            bel_apri.correct(res.delta_mean, res.sigma_apos)
        return not res.rejected

    def apply_private_observation_iterated(
        self,
        r_cov,
        z,
        t: Timestamp,
        h: Callable[[Belief, np.ndarray], tuple[np.ndarray, np.ndarray]],
        cfg: CorrectionCfg | None = None,
    ) -> bool:
        """Iterated EKF correction; h(belief, z) returns the Jacobian H and residual r."""
        cfg = cfg or self.corr_cfg
        bel_apri = self.get_belief_at_t(t)
        if bel_apri is None:
            return False
        sigma_apri = bel_apri.sigma
        rm = np.atleast_2d(np.asarray(r_cov, dtype=float))
        z = np.asarray(z, dtype=float).reshape(-1)
        bel_idx = bel_apri.clone()
        dim = bel_apri.es_dim()
        mean_idx = bel_apri.mean.copy()
        h_idx = None
        k_idx = None
        for iteration in range(cfg.num_iter):
            h_raw, r_raw = h(bel_idx, z)
            if not check_dim_correction(h_raw, rm, r_raw, sigma_apri):
                return False
            h_idx = np.atleast_2d(np.asarray(h_raw, dtype=float))
            r_idx = np.asarray(r_raw, dtype=float).reshape(-1)
            if iteration > 0:
                r_idx = r_idx - h_idx @ bel_apri.mean + h_idx @ bel_idx.mean
            s_idx = stabilize_covariance(h_idx @ sigma_apri @ h_idx.T + rm, cfg.eps)
            if cfg.use_outlier_rejection and not check_nis(s_idx, r_idx, cfg.confidence_interval):
                return False
            k_idx = sigma_apri @ h_idx.T @ np.linalg.inv(s_idx)
            bel_idx.mean = bel_apri.mean
            bel_idx.correct(k_idx @ r_idx)
            mean_new = bel_idx.mean.copy()
            if np.linalg.norm(mean_idx - mean_new) < cfg.tol_eps:
                break
            mean_idx = mean_new
        if k_idx is None or h_idx is None:
            return False
        u = np.eye(dim) - k_idx @ h_idx
        if cfg.use_josephs_form:
            sigma_apos = u @ sigma_apri @ u.T + k_idx @ rm @ k_idx.T
        else:
            sigma_apos = u @ sigma_apri
        if cfg.numerical_stabilization:
            sigma_apos = stabilize_covariance(sigma_apos, cfg.eps)
        bel_apri.mean = bel_idx.mean
        bel_apri.sigma = sigma_apos
        return True