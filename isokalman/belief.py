"""Gaussian beliefs: a mean, a covariance and a timestamp."""

from __future__ import annotations

import abc
import copy
import enum
from dataclasses import dataclass, replace

import numpy as np

from isokalman.kalman import check_dim_mean
from isokalman.timestamp import Timestamp


@dataclass
class BeliefOptions:
    """Flags attached to a belief."""

    is_fixed: bool = False
    do_fej: bool = False


class InitStrategy(enum.Enum):
    """How an initial belief is set up."""

    NONE = 0
    RANDOM = 1


def _fmt(values: np.ndarray) -> str:
    return " ".join(f"{v:.4g}" for v in np.ravel(values))


class Belief(abc.ABC):
    """Base class of beliefs."""

    def __init__(self, mean=None, sigma=None, timestamp: Timestamp | None = None) -> None:
        self.mean = np.zeros(0) if mean is None else mean
        self.sigma = np.zeros((0, 0)) if sigma is None else sigma
        self.timestamp = Timestamp() if timestamp is None else timestamp
        self.options = BeliefOptions()
        self._es_dim = 0
        self._ns_dim = 0

    @property
    def mean(self) -> np.ndarray:
        return self._mean

    @mean.setter
    def mean(self, vec) -> None:
        self._mean = np.array(vec, dtype=float).reshape(-1)

    @property
    def sigma(self) -> np.ndarray:
        return self._sigma

    @sigma.setter
    def sigma(self, cov) -> None:
        arr = np.array(cov, dtype=float)
        self._sigma = arr.reshape(0, 0) if arr.size == 0 else np.atleast_2d(arr)

    def set(self, mean, sigma) -> bool:
        """Set mean and covariance if their shapes agree."""
        if not check_dim_mean(mean, sigma):
            return False
        self.mean = mean
        self.sigma = sigma
        return True

    def es_dim(self) -> int:
        """Error-state size."""
        return self._es_dim

    def ns_dim(self) -> int:
        """Nominal-state size."""
        return self._ns_dim

    def dof(self) -> int:
        return self.es_dim()

    @abc.abstractmethod
    def clone(self) -> "Belief":
        """Return an independent copy."""

    def boxminus(self, right: "Belief") -> np.ndarray:
        return self.mean - right.mean

    def boxplus(self, dx) -> None:
        self.correct(dx)

    def correct(self, dx, sigma_apos=None) -> None:
        """Add dx to the mean in place and optionally replace the covariance."""
        self._mean = self._mean + np.asarray(dx, dtype=float).reshape(-1)
        if sigma_apos is not None:
            self.sigma = sigma_apos

    def plus_jacobian(self, dx) -> np.ndarray:
        dim = self.es_dim()
        return np.eye(dim)

    @staticmethod
    def apply_init_strategy(bel_0: "Belief", strategy: InitStrategy, seed: int = 0) -> None:
        """Apply an initialisation strategy in place; RANDOM samples the mean from the belief."""
        if strategy is InitStrategy.RANDOM:
            rng = np.random.default_rng(seed if seed != 0 else None)
            bel_0.mean = rng.multivariate_normal(bel_0.mean, bel_0.sigma)

    def __str__(self) -> str:
        diag = np.diag(self.sigma) if self.sigma.size else np.zeros(0)
        return (
            f"* IBelief: t={str(self.timestamp):<16}"
            f", mean={_fmt(self.mean)}"
            f", diag(Sigma)={_fmt(diag)}"
            f", fix={int(self.options.is_fixed)}"
        )


class LinearBelief(Belief):
    """Belief on a vector space."""

    def clone(self) -> "LinearBelief":
        other = copy.copy(self)
        other._mean = self._mean.copy()
        other._sigma = self._sigma.copy()
        other.timestamp = Timestamp(self.timestamp.sec, self.timestamp.nsec)
        other.options = replace(self.options)
        return other

    def correct(self, dx, sigma_apos=None) -> None:
        self._mean = self._mean + np.asarray(dx, dtype=float).reshape(-1)
        if sigma_apos is not None:
            self.sigma = sigma_apos

    def es_dim(self) -> int:
        return self._sigma.shape[0]

    def ns_dim(self) -> int:
        return self._sigma.shape[0]