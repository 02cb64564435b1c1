"""Isolated Kalman filter instance with cross-covariance factor bookkeeping.

An instance keeps its own belief history together with one history of
factorized cross-covariances per correlated instance. Joint observations and
the processing of measurements go through a handler, which knows every
instance. The handler is any object providing ``process_measurement(m)``,
``insert_measurement(m, t)``, ``apply_observation(dict_h, r_cov, r, t, cfg)``
and ``apply_observation_joint(r_cov, z, t, h, ids, cfg)``.
"""

from __future__ import annotations

import abc
import logging
import time
from typing import Any, Callable

import numpy as np

from isokalman.belief import Belief
from isokalman.ikalman_filter import KalmanFilterBase, TimeHorizonBuffer
from isokalman.kalman import CorrectionCfg, correction_step
from isokalman.results import MeasData, MeasStatus, ObservationType, ProcessMeasResult
from isokalman.timestamp import Timestamp

_log = logging.getLogger(__name__)

_KEEP_ELEMS = 4

# h(beliefs by ID, IDs, z) -> (Jacobians by ID, residual)
JointObservationModel = Callable[
    [dict[int, Belief], list[int], np.ndarray], tuple[dict[int, np.ndarray], np.ndarray]
]


def _is_psd(sigma: np.ndarray, tol: float = 1e-12) -> bool:
    s = np.atleast_2d(np.asarray(sigma, dtype=float))
    if s.size == 0 or s.shape[0] != s.shape[1]:
        return False
    eig = np.linalg.eigvalsh(0.5 * (s + s.T))
    return bool(np.all(eig >= -tol))


class IsolatedKalmanFilter(KalmanFilterBase):
    """Filter instance whose joint updates are coordinated by a handler."""

    def __init__(self, handler: Any, id_: int, horizon_sec: float = 1.0, type_: str = "") -> None:
        super().__init__(horizon_sec, handle_delayed_meas=False)
        self.handler = handler
        self.id = id_
        self.type = type_
        self.hist_cross_cov_factors: dict[int, TimeHorizonBuffer] = {}
        _log.info("IsolatedKalmanFilter: horizon_sec=%s, ID=[%s], type=%s", horizon_sec, id_, type_)

    def reset(self) -> None:
        super().reset()
        self.hist_cross_cov_factors.clear()

    def set_horizon(self, t_hor: float) -> None:
        super().set_horizon(t_hor)
        for buf in self.hist_cross_cov_factors.values():
            buf.set_horizon(t_hor)

    def process_measurement(self, m: MeasData) -> list[ProcessMeasResult]:
        """Hand the measurement to the handler."""
        return self.handler.process_measurement(m)

    def get_correlated_ids(self) -> list[int]:
        return list(self.hist_cross_cov_factors)

    def get_correlated_ids_at_t(self, t: Timestamp) -> list[int]:
        return [i for i, buf in self.hist_cross_cov_factors.items() if buf.exist_at_t(t)]

    def get_correlated_ids_after_t(self, t: Timestamp) -> list[int]:
        return [i for i, buf in self.hist_cross_cov_factors.items() if buf.exist_after_t(t)]

    def get_cross_cov_fact_at_t(self, t: Timestamp, id_j: int) -> np.ndarray | None:
        """Cross-covariance factor with instance id_j at t, or None."""
        buf = self.hist_cross_cov_factors.get(id_j)
        if buf is None:
            return None
        return buf.get_at_t(t)

    def get_cross_cov_fact_before_t(self, t: Timestamp, id_j: int) -> np.ndarray | None:
        """Latest cross-covariance factor with id_j strictly before t, or None."""
        buf = self.hist_cross_cov_factors.get(id_j)
        if buf is None:
            return None
        found = buf.get_before_t(t)
        if found is None:
            _log.info("get_cross_cov_fact_before_t(): no element for id=%s at t=%s", id_j, t)
            return None
        return found[1]

    def set_cross_cov_fact_at_t(self, t: Timestamp, id_j: int, ccf) -> None:
        buf = self.hist_cross_cov_factors.get(id_j)
        if buf is None:
            buf = TimeHorizonBuffer(self.max_time_horizon_sec)
            self.hist_cross_cov_factors[id_j] = buf
        buf.insert(np.atleast_2d(np.asarray(ccf, dtype=float)), t)

    def propagate_cross_cov_fact(self, t_a: Timestamp, t_b: Timestamp, m_a_b) -> None:
        """Store M_a_b times each factor at t_a as the factor at t_b."""
        mat = np.atleast_2d(np.asarray(m_a_b, dtype=float))
        for buf in self.hist_cross_cov_factors.values():
            ccf = buf.get_at_t(t_a)
            if ccf is not None:
                buf.insert(mat @ ccf, t_b)

    def apply_correction_at_t(self, t: Timestamp, factor) -> bool:
        """Multiply every cross-covariance factor at t by factor from the left."""
        mat = np.atleast_2d(np.asarray(factor, dtype=float))
        for buf in self.hist_cross_cov_factors.values():
            ccf = buf.get_at_t(t)
            if ccf is not None:
                buf.insert(mat @ ccf, t)
        return True

    def apply_correction_from_covariances(self, t: Timestamp, sigma_apri, sigma_apos) -> bool:
        """Apply the correction Sigma_apos Sigma_apri^-1 at t."""
        lam = np.atleast_2d(np.asarray(sigma_apos, dtype=float)) @ np.linalg.inv(
            np.atleast_2d(np.asarray(sigma_apri, dtype=float))
        )
        return self.apply_correction_at_t(t, lam)

    def set_handler(self, handler: Any) -> bool:
        """Switch the handler at runtime."""
        self.handler = handler
        return True

    def delegate_measurement(self, m: MeasData) -> ProcessMeasResult:
        """Dispatch joint observations here and the rest to the base filter."""
        if m.obs_type is not ObservationType.JOINT_OBSERVATION:
            return super().delegate_measurement(m)
        start = time.perf_counter()
        res = self.local_joint_measurement(m)
        if res is None:
            res = ProcessMeasResult(status=MeasStatus.DISCARED)
        res.exec_time = time.perf_counter() - start
        res.t = m.t_m
        res.meas_type = m.meas_type
        res.obs_type = m.obs_type
        return res

    @abc.abstractmethod
    def local_joint_measurement(self, m: MeasData) -> ProcessMeasResult:
        """Process a joint observation with other instances."""

    def insert_measurement(self, m: MeasData, t: Timestamp) -> bool:
        return self.handler.insert_measurement(m, t)

    def redo_updates_after_t(self, t: Timestamp) -> list[ProcessMeasResult]:
        self.remove_after_t(t)
        return super().redo_updates_after_t(t)

    def remove_after_t(self, t: Timestamp) -> None:
        """Drop beliefs and cross-covariance factors after t."""
        self.remove_beliefs_after_t(t)
        for buf in self.hist_cross_cov_factors.values():
            buf.remove_after_t(t)

    def remove_from_t(self, t: Timestamp) -> None:
        """Drop beliefs and cross-covariance factors at and after t."""
        self.hist_belief.remove_after_t(t)
        self.hist_belief.remove_at_t(t)
        for buf in self.hist_cross_cov_factors.values():
            buf.remove_after_t(t)
            buf.remove_at_t(t)

    def check_horizon(self) -> None:
        self.hist_belief.check_horizon_restricted(_KEEP_ELEMS)
        self.hist_meas.check_horizon_restricted(_KEEP_ELEMS)
        for buf in self.hist_cross_cov_factors.values():
            buf.check_horizon_restricted(_KEEP_ELEMS)

    def add_correction_at_t(self, t_a: Timestamp, t_b: Timestamp, phi_a_b) -> bool:
        """Carry the factors at t_a over to t_b through Phi_a_b."""
        mat = np.atleast_2d(np.asarray(phi_a_b, dtype=float))
        for buf in self.hist_cross_cov_factors.values():
            ccf = buf.get_at_t(t_a)
            if ccf is not None:
                buf.insert(mat @ ccf, t_b)
        return True

    def _after_propagation(self, t_a: Timestamp, t_b: Timestamp, phi_ab) -> bool:
        if self.add_correction_at_t(t_a, t_b, phi_ab):
            self.check_horizon()
            return True
        _log.warning("Could not set the correction factor Phi_II_ab=%s", phi_ab)
        return False

    def apply_propagation(self, phi_ab, q_ab, t_a: Timestamp, t_b: Timestamp) -> bool:
        if super().apply_propagation(phi_ab, q_ab, t_a, t_b):
            return self._after_propagation(t_a, t_b, phi_ab)
        return False

    def apply_propagation_with_mean(
        self, bel_a: Belief, mean_b, phi_ab, q_ab, t_a: Timestamp, t_b: Timestamp
    ) -> bool:
        if super().apply_propagation_with_mean(bel_a, mean_b, phi_ab, q_ab, t_a, t_b):
            return self._after_propagation(t_a, t_b, phi_ab)
        return False

    def apply_propagation_belief(self, bel_b: Belief, phi_ab, t_a: Timestamp, t_b: Timestamp) -> bool:
        if super().apply_propagation_belief(bel_b, phi_ab, t_a, t_b):
            return self._after_propagation(t_a, t_b, phi_ab)
        return False

    def apply_private_observation(
        self, h, r_cov, z, t: Timestamp, cfg: CorrectionCfg | None = None
    ) -> bool:
        bel = self.get_belief_at_t(t)
        if bel is None:
            return False
        hm = np.atleast_2d(np.asarray(h, dtype=float))
        r = np.asarray(z, dtype=float).reshape(-1) - hm @ bel.mean
        return self.apply_private_observation_belief(bel, hm, r_cov, r, cfg)

    def apply_private_observation_belief(
        self, bel_apri: Belief, h, r_cov, r, cfg: CorrectionCfg | None = None
    ) -> bool:
        """Correct a belief in place and apply the correction to the factors at its time."""
        t = bel_apri.timestamp
        if not _is_psd(bel_apri.sigma):
            _log.warning("Apri covariance is not PSD at t=%s", t)
        res = correction_step(h, r_cov, r, bel_apri.sigma, cfg or self.corr_cfg)
        if res.rejected:
            return False
        if not _is_psd(res.sigma_apos):
            _log.warning("Apos covariance is not PSD at t=%s", t)
        # the correction must be applied before the belief is changed in place
        if not self.apply_correction_at_t(t, res.u):
            return False
        bel_apri.correct(res.delta_mean, res.sigma_apos)
        return True

    def apply_observation(
        self, dict_h: dict[int, np.ndarray], r_cov, r, t: Timestamp, cfg: CorrectionCfg | None = None
    ) -> bool:
        """Joint observation through the handler."""
        return self.handler.apply_observation(dict_h, r_cov, r, t, cfg or self.corr_cfg)

    def apply_observation_joint(
        self,
        r_cov,
        z,
        t: Timestamp,
        h: JointObservationModel,
        ids: list[int],
        cfg: CorrectionCfg | None = None,
    ) -> Any:
        """Joint observation with a nonlinear model through the handler."""
        return self.handler.apply_observation_joint(r_cov, z, t, h, ids, cfg or self.corr_cfg)