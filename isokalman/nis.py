"""Normalized innovation squared test for outlier rejection."""

from __future__ import annotations

import bisect
import logging
import math

import numpy as np

_log = logging.getLogger(__name__)

# chi-square quantiles, keyed by round(p * 1000)
LOOKUP: dict[int, tuple[float, ...]] = {
    380: (
        0.24587, 0.95607, 1.7768, 2.6386, 3.5224, 4.4203, 5.328, 6.2433, 7.1645, 8.0905,
        9.0205, 9.954, 10.8904, 11.8294, 12.7707, 13.7141, 14.6594, 15.6063, 16.5548, 17.5047,
        18.4559, 19.4083, 20.3618, 21.3163, 22.2719, 23.2283, 24.1856, 25.1438, 26.1026, 27.0623,
        28.0226, 28.9835, 29.9451, 30.9073, 31.87, 32.8333, 33.7971, 34.7614, 35.7262, 36.6914,
        37.6571, 38.6232, 39.5898, 40.5567, 41.524, 42.4916, 43.4597, 44.428, 45.3967, 46.3658,
    ),
    500: (
        0.45494, 1.3863, 2.366, 3.3567, 4.3515, 5.3481, 6.3458, 7.3441, 8.3428, 9.3418,
        10.341, 11.3403, 12.3398, 13.3393, 14.3389, 15.3385, 16.3382, 17.3379, 18.3377, 19.3374,
        20.3372, 21.337, 22.3369, 23.3367, 24.3366, 25.3365, 26.3363, 27.3362, 28.3361, 29.336,
        30.3359, 31.3359, 32.3358, 33.3357, 34.3356, 35.3356, 36.3355, 37.3355, 38.3354, 39.3353,
        40.3353, 41.3352, 42.3352, 43.3352, 44.3351, 45.3351, 46.335, 47.335, 48.335, 49.3349,
    ),
    680: (
        0.98895, 2.2789, 3.5059, 4.6954, 5.8608, 7.0092, 8.1448, 9.2704, 10.388, 11.4988,
        12.6039, 13.7041, 14.8001, 15.8922, 16.981, 18.0668, 19.1498, 20.2304, 21.3086, 22.3848,
        23.459, 24.5315, 25.6022, 26.6714, 27.7392, 28.8055, 29.8706, 30.9344, 31.9971, 33.0587,
        34.1193, 35.1788, 36.2374, 37.2952, 38.352, 39.4081, 40.4633, 41.5178, 42.5716, 43.6247,
        44.6771, 45.7289, 46.78, 47.8305, 48.8805, 49.9299, 50.9788, 52.0271, 53.0749, 54.1223,
    ),
    950: (
        3.8415, 5.9915, 7.8147, 9.4877, 11.0705, 12.5916, 14.0671, 15.5073, 16.919, 18.307,
        19.6751, 21.0261, 22.362, 23.6848, 24.9958, 26.2962, 27.5871, 28.8693, 30.1435, 31.4104,
        32.6706, 33.9244, 35.1725, 36.415, 37.6525, 38.8851, 40.1133, 41.3371, 42.557, 43.773,
        44.9853, 46.1943, 47.3999, 48.6024, 49.8018, 50.9985, 52.1923, 53.3835, 54.5722, 55.7585,
        56.9424, 58.124, 59.3035, 60.4809, 61.6562, 62.8296, 64.0011, 65.1708, 66.3386, 67.5048,
    ),
    997: (
        8.8075, 11.6183, 13.9314, 16.0143, 17.9576, 19.8047, 21.5801, 23.2997, 24.9741, 26.6108,
        28.2156, 29.7929, 31.3461, 32.878, 34.3909, 35.8868, 37.3672, 38.8335, 40.2869, 41.7283,
        43.1588, 44.579, 45.9897, 47.3915, 48.7849, 50.1705, 51.5487, 52.9199, 54.2845, 55.6429,
        56.9953, 58.342, 59.6833, 61.0194, 62.3507, 63.6772, 64.9992, 66.3168, 67.6303, 68.9397,
        70.2454, 71.5472, 72.8456, 74.1404, 75.4319, 76.7202, 78.0053, 79.2875, 80.5667, 81.843,
    ),
}

_KEYS = sorted(LOOKUP)


def _as_column(r) -> np.ndarray | None:
    arr = np.asarray(r, dtype=float)
    if arr.ndim == 1:
        return arr
    if arr.ndim == 2 and arr.shape[1] == 1:
        return arr[:, 0]
    return None


def check_dim(r, sigma) -> bool:
    """True if r is a column vector matching the rows of sigma."""
    vec = _as_column(r)
    sigma = np.atleast_2d(np.asarray(sigma, dtype=float))
    if vec is None or vec.shape[0] != sigma.shape[0]:
        _log.info(
            "check_dim(): residual must be a column vector! r%s and Sigma%s",
            np.shape(r),
            sigma.shape,
        )
        return False
    return True


def nis(sigma, r) -> float:
    """Normalized innovation squared r^T Sigma^-1 r, or 0.0 on a shape mismatch."""
    if not check_dim(r, sigma):
        return 0.0
    vec = _as_column(r)
    sigma = np.atleast_2d(np.asarray(sigma, dtype=float))
    return float(vec @ np.linalg.inv(sigma) @ vec)


def chi2inv(p: float, df: int) -> float:
    """Chi-square quantile from the lookup table; 0.0 where the table has no entry."""
    key = math.floor(p * 1000 + 0.5) if p >= 0 else -math.floor(-p * 1000 + 0.5)
    if key not in LOOKUP:
        idx = bisect.bisect_left(_KEYS, key)
        key = _KEYS[min(idx, len(_KEYS) - 1)]
    table = LOOKUP[key]
    if 0 <= df < len(table):
        return table[df]
    return 0.0


def _threshold_exceeded(s: float, r, confidence_interval: float) -> bool:
    vec = _as_column(r)
    rows = vec.shape[0] if vec is not None else np.atleast_2d(np.asarray(r)).shape[0]
    return s > chi2inv(confidence_interval, rows)


def check_nis(s, r, confidence_interval: float = 0.997) -> bool:
    """True if the residual passes the chi-square gate for innovation covariance s."""
    if confidence_interval > 0:
        value = nis(s, r)
        if _threshold_exceeded(value, r, confidence_interval):
            return False
    return True


def check_nis_full(h, r_cov, r, sigma, confidence_interval: float = 0.997) -> bool:
    """Chi-square gate with S = H Sigma H^T + R built from its parts."""
    h = np.atleast_2d(np.asarray(h, dtype=float))
    s = h @ np.asarray(sigma, dtype=float) @ h.T + np.asarray(r_cov, dtype=float)
    s = 0.5 * (s + s.T)
    value = nis(s, r)
    return not _threshold_exceeded(value, r, confidence_interval)