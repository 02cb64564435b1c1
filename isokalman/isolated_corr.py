"""Isolated Kalman filter that keeps a history of correction terms.

Instead of applying every correction directly to the factorized
cross-covariances, this variant stores the correction terms (state transition
and update factors) in their own buffer. Cross-covariance factors that are out
of date are brought forward on demand by accumulating the stored terms.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from isokalman.ikalman_filter import TimeHorizonBuffer
from isokalman.isolated import IsolatedKalmanFilter
from isokalman.timestamp import Timestamp

_log = logging.getLogger(__name__)


def _format_matrix(mat: np.ndarray) -> str:
    rows = np.atleast_2d(np.asarray(mat, dtype=float))
    return "\n".join(" ".join(f"{v:g}" for v in row) for row in rows)


class IsolatedKalmanFilterCorr(IsolatedKalmanFilter):
    """Isolated filter instance with a buffer of correction terms."""

    def __init__(self, handler: Any, id_: int, horizon_sec: float = 1.0) -> None:
        super().__init__(handler, id_, horizon_sec)
        self.hist_corr = TimeHorizonBuffer(horizon_sec)

    def reset(self) -> None:
        super().reset()
        self.hist_corr.clear()

    def get_cross_cov_fact_at_t(self, t: Timestamp, id_j: int) -> np.ndarray | None:
        """Factor with id_j at t, brought forward from an earlier one if needed.

        A factor that had to be brought forward is stored at t. If the
        correction cannot be computed, the earlier factor is returned as is.
        """
        buf = self.hist_cross_cov_factors.get(id_j)
        if buf is None:
            return None
        mat = buf.get_at_t(t)
        if mat is not None:
            return mat
        before = buf.get_before_t(t)
        if before is None:
            _log.info("get_cross_cov_fact_at_t(): could not find elem for id=%s at t=%s", id_j, t)
            return None
        t_prev, mat_prev = before
        m_a_b = self.compute_correction(t_prev, t)
        if m_a_b is not None and m_a_b.size > 0:
            mat = m_a_b @ mat_prev
            self.set_cross_cov_fact_at_t(t, id_j, mat)
            return mat
        _log.info(
            "get_cross_cov_fact_at_t(): could not compute correction between t_prev=%s and t_curr=%s",
            t_prev,
            t,
        )
        return mat_prev

    def remove_after_t(self, t: Timestamp) -> None:
        super().remove_after_t(t)
        self.hist_corr.remove_after_t(t)

    def remove_from_t(self, t: Timestamp) -> None:
        super().remove_from_t(t)
        self.hist_corr.remove_after_t(t)
        self.hist_corr.remove_at_t(t)

    def set_horizon(self, t_hor: float) -> None:
        super().set_horizon(t_hor)
        self.hist_corr.set_horizon(t_hor * 2)

    def check_correction_horizon(self) -> None:
        """Bring factors forward before their corrections fall out of the buffer."""
        half_horizon = self.hist_corr.max_horizon_sec * 0.5
        if self.hist_corr.horizon() <= half_horizon:
            return
        oldest_t = self.hist_corr.get_oldest_t()
        if oldest_t is None:
            return
        found = self.hist_corr.get_before_t(Timestamp.from_sec(oldest_t.to_sec() + half_horizon))
        middle_t = found[0] if found is not None else Timestamp()
        for buf in self.hist_cross_cov_factors.values():
            latest_t = buf.get_latest_t()
            if latest_t is None or latest_t > middle_t:
                continue
            if not self.hist_corr.exist_at_t(latest_t):
                raise RuntimeError(f"No correction term found at t={latest_t}")
            m_latest_to_mid = self.compute_correction(latest_t, middle_t)
            if m_latest_to_mid is None:
                continue
            buf.insert(m_latest_to_mid @ buf.get_latest(), middle_t)

    def check_horizon(self) -> None:
        # factors must be brought forward before the buffers shrink
        self.check_correction_horizon()
        self.hist_corr.check_horizon()
        super().check_horizon()

    def compute_correction(self, t_a: Timestamp, t_b: Timestamp) -> np.ndarray | None:
        """Product of the correction terms after t_a up to t_b, latest on the left."""
        after = self.hist_corr.get_after_t(t_a)
        t_b_found = t_b
        exist_at_tb = self.hist_corr.exist_at_t(t_b)
        if not exist_at_tb:
            before = self.hist_corr.get_before_t(t_b)
            if before is not None:
                exist_at_tb = True
                t_b_found = before[0]
        if after is not None and exist_at_tb:
            t_after_a, data = after
            max_dim = max(np.atleast_2d(data).shape)
            return self.hist_corr.accumulate_between(
                t_after_a, t_b_found, np.eye(max_dim), lambda acc, term: term @ acc
            )
        _log.warning("compute_correction(): no element found for timestamps:[%s,%s]", t_a, t_b_found)
        return None

    def add_correction_at_t(self, t_a: Timestamp, t_b: Timestamp, phi_a_b) -> bool:
        """Store the transition term at t_b; False if one is already there."""
        if self.hist_corr.exist_at_t(t_b):
            _log.warning(
                "correction term from t_a=%s already exists at t_b=%s! First propagate, then update!",
                t_a,
                t_b,
            )
            self.print_hist_corr(10, True)
            return False
        self.hist_corr.insert(np.atleast_2d(np.asarray(phi_a_b, dtype=float)), t_b)
        return True

    def apply_correction_at_t(self, t: Timestamp, factor) -> bool:
        """Apply factor to the factors at t and fold it into the correction term at t.

        Returns False if there was no correction term at t; the factor is then
        stored as the new term.
        """
        mat = np.atleast_2d(np.asarray(factor, dtype=float))
        if mat.shape[0] != mat.shape[1]:
            _log.warning("Factor must be a square matrix!")
        for buf in self.hist_cross_cov_factors.values():
            ccf = buf.get_at_t(t)
            if ccf is not None:
                buf.insert(mat @ ccf, t)
        existing = self.hist_corr.get_at_t(t)
        if existing is not None:
            self.hist_corr.insert(mat @ existing, t)
            return True
        self.hist_corr.insert(mat, t)
        _log.info("apply_correction_at_t(): no element found for timestamps:[%s]", t)
        return False

    def print_hist_corr(self, max_items: int = 100, reverse: bool = False) -> list[str]:
        """Log up to max_items correction terms and return the logged lines."""
        source = reversed(self.hist_corr) if reverse else iter(self.hist_corr)
        lines: list[str] = []
        for mat in source:
            if len(lines) >= max_items:
                break
            line = f"* {_format_matrix(mat)}"
            lines.append(line)
            _log.debug(line)
        return lines