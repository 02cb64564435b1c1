"""Kalman filter primitives: propagation, correction and covariance intersection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from isokalman.nis import check_nis

_log = logging.getLogger(__name__)


@dataclass
class CorrectionCfg:
    """Settings of a correction step."""

    use_outlier_rejection: bool = True
    use_josephs_form: bool = True
    numerical_stabilization: bool = True
    confidence_interval: float = 0.997  # supported levels: 0.38, 0.5, 0.68, 0.95, 0.997
    eps: float = 1e-16
    num_iter: int = 10  # max. number of iterations of iterated EKF steps
    tol_eps: float = 1e-6  # convergence tolerance of iterated correction steps


@dataclass
class CorrectionResult:
    """Outcome of a correction step."""

    sigma_apos: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    delta_mean: np.ndarray = field(default_factory=lambda: np.zeros(0))
    u: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))  # U = I - K H
    rejected: bool = True


def _matrix(a) -> np.ndarray:
    return np.atleast_2d(np.asarray(a, dtype=float))


def _column(v) -> np.ndarray | None:
    arr = np.asarray(v, dtype=float)
    if arr.ndim == 0:
        return arr.reshape(1)
    if arr.ndim == 1:
        return arr
    if arr.ndim == 2 and arr.shape[1] == 1:
        return arr[:, 0]
    return None


def stabilize_covariance(sigma, eps: float = 1e-16) -> np.ndarray:
    """Symmetrize a covariance and add eps to its diagonal."""
    s = _matrix(sigma)
    s = 0.5 * (s + s.T)
    return s + np.eye(s.shape[0]) * eps


def check_dim_mean(mean, sigma) -> bool:
    """True if mean is a column vector matching the square covariance."""
    vec = _column(mean)
    s = _matrix(sigma)
    if vec is None or vec.shape[0] != s.shape[0] or s.shape[0] != s.shape[1]:
        _log.error(
            "check_dim(): dimensionality mismatch of mean %s and Sigma %s",
            np.shape(mean),
            s.shape,
        )
        return False
    return True


def check_dim_transition(sigma_apri, phi) -> bool:
    """True if phi is square and matches the rows of the covariance."""
    s = _matrix(sigma_apri)
    p = _matrix(phi)
    if s.shape[0] != p.shape[0] or s.shape[0] != p.shape[1]:
        _log.info(
            "check_dim(): dimensionality mismatch of Sigma_apri %s and Phi %s",
            s.shape,
            p.shape,
        )
        return False
    return True


def check_dim_propagation(sigma_apri, phi, q) -> bool:
    """True if phi and q both fit the covariance."""
    good = check_dim_transition(sigma_apri, phi)
    s = _matrix(sigma_apri)
    qm = _matrix(q)
    if s.shape[0] != qm.shape[0] or s.shape[0] != qm.shape[1]:
        _log.info(
            "check_dim(): dimensionality mismatch of Sigma_apri %s and Q %s",
            s.shape,
            qm.shape,
        )
        good = False
    return good


def check_dim_correction(h, r_cov, r, sigma) -> bool:
    """True if H, R, residual and covariance have consistent shapes."""
    hm = _matrix(h)
    rm = _matrix(r_cov)
    s = _matrix(sigma)
    vec = _column(r)
    good = True
    if hm.shape[1] != s.shape[0]:
        _log.info("check_dim(): mismatch of H %s and Sigma %s", hm.shape, s.shape)
        good = False
    if vec is None:
        _log.info("check_dim(): residual must be a column vector! r%s", np.shape(r))
        good = False
    elif hm.shape[0] != vec.shape[0]:
        _log.info("check_dim(): mismatch of H %s and residual %s", hm.shape, vec.shape)
        good = False
    if hm.shape[0] != rm.shape[0] or hm.shape[0] != rm.shape[1]:
        _log.info("check_dim(): mismatch of H %s and R %s", hm.shape, rm.shape)
        good = False
    return good


def covariance_propagation(
    sigma_apri_a, phi_a_b, q_a, numerical_stabilization: bool = False
) -> np.ndarray:
    """Return Phi Sigma Phi^T + Q; raises ValueError on a shape mismatch."""
    if not check_dim_propagation(sigma_apri_a, phi_a_b, q_a):
        raise ValueError("dimension mismatch in covariance propagation")
    s = _matrix(sigma_apri_a)
    phi = _matrix(phi_a_b)
    q = _matrix(q_a)
    if numerical_stabilization:
        result = phi @ stabilize_covariance(s) @ phi.T + stabilize_covariance(q)
        return stabilize_covariance(result)
    return phi @ s @ phi.T + q


def correction_step(h, r_cov, r, sigma_apri, cfg: CorrectionCfg | None = None) -> CorrectionResult:
    """Kalman correction; the result is rejected on a shape mismatch or a failed NIS gate."""
    cfg = cfg or CorrectionCfg()
    res = CorrectionResult()
    if not check_dim_correction(h, r_cov, r, sigma_apri):
        return res
    hm = _matrix(h)
    rm = _matrix(r_cov)
    s_apri = _matrix(sigma_apri)
    vec = _column(r)
    dim = s_apri.shape[0]
    res.rejected = False

    s = stabilize_covariance(hm @ s_apri @ hm.T + rm, cfg.eps)
    if cfg.use_outlier_rejection and not check_nis(s, vec, cfg.confidence_interval):
        res.rejected = True

    k = s_apri @ hm.T @ np.linalg.inv(s)
    res.delta_mean = k @ vec
    res.u = np.eye(dim) - k @ hm
    if cfg.use_josephs_form:
        res.sigma_apos = res.u @ s_apri @ res.u.T + k @ rm @ k.T
    else:
        res.sigma_apos = res.u @ s_apri
    if cfg.numerical_stabilization:
        res.sigma_apos = stabilize_covariance(res.sigma_apos, cfg.eps)
    return res


def covariance_intersection_correction(
    h_ii, h_jj, r_cov, r, sigma_ii_apri, sigma_jj_apri, omega_i: float, cfg: CorrectionCfg | None = None
) -> CorrectionResult:
    """Covariance-intersection EKF update of instance i using instance j's covariance."""
    cfg = cfg or CorrectionCfg()
    res = CorrectionResult()
    if not (
        check_dim_correction(h_ii, r_cov, r, sigma_ii_apri)
        and check_dim_correction(h_jj, r_cov, r, sigma_jj_apri)
    ):
        return res
    hi = _matrix(h_ii)
    hj = _matrix(h_jj)
    rm = _matrix(r_cov)
    s_ii = _matrix(sigma_ii_apri)
    s_jj = _matrix(sigma_jj_apri)
    vec = _column(r)
    res.rejected = False

    omega_j = 1.0 - omega_i
    s = (1.0 / omega_j) * hj @ s_jj @ hj.T + rm
    s = stabilize_covariance(s, cfg.eps)
    if cfg.use_outlier_rejection and not check_nis(s, vec, cfg.confidence_interval):
        res.rejected = True
    s_inv = np.linalg.inv(s)
    res.sigma_apos = (1.0 / omega_i) * s_ii - (1.0 / omega_i**2) * s_ii @ hi.T @ s_inv @ hi @ s_ii
    res.delta_mean = (1.0 / omega_i) * s_ii @ hi.T @ s_inv @ vec
    if cfg.numerical_stabilization:
        res.sigma_apos = stabilize_covariance(res.sigma_apos, cfg.eps)
    return res