"""Measurement data and results of processing measurements."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from isokalman.timestamp import Timestamp


def _format_array(values: np.ndarray) -> str:
    arr = np.asarray(values, dtype=float)
    if arr.ndim <= 1:
        return "\n".join(f"{v:g}" for v in arr.ravel())
    return "\n".join(" ".join(f"{v:g}" for v in row) for row in arr)


class MeasStatus(enum.Enum):
    """Outcome of processing a measurement."""

    REJECTED = 0  # fused but rejected
    PROCESSED = 1  # fused
    OUTOFORDER = 2  # could not be fused, e.g. beliefs are missing
    DISCARED = 3  # measurement needs to be discarded

    def __str__(self) -> str:
        return self.name


class ObservationType(enum.Enum):
    """Kind of observation a measurement carries."""

    PROPAGATION = 0
    PRIVATE_OBSERVATION = 1
    JOINT_OBSERVATION = 2
    UNKNOWN = 3

    def __str__(self) -> str:
        return self.name


@dataclass
class MeasData:
    """A measurement with its covariance and timestamps."""

    id_sensor: int = 0
    meas_type: str = ""
    meta_info: str = ""
    obs_type: ObservationType = ObservationType.UNKNOWN
    z: np.ndarray = field(default_factory=lambda: np.zeros(0))
    r_cov: np.ndarray = field(default_factory=lambda: np.zeros((0, 0)))
    t_m: Timestamp = field(default_factory=Timestamp)
    t_p: Timestamp = field(default_factory=Timestamp)

    def __str__(self) -> str:
        return (
            f"MeasData: t_m={self.t_m}, t_p={self.t_p}, obs_type={self.obs_type}, "
            f"meas_type={self.meas_type}, meta_info={self.meta_info}, "
            f"id_sensor={self.id_sensor}, z={_format_array(self.z)}, "
            f"R={_format_array(self.r_cov)}"
        )


@dataclass
class ProcessMeasResult:
    """Result of processing one measurement."""

    status: MeasStatus = MeasStatus.REJECTED
    meas_type: str = ""
    obs_type: ObservationType = ObservationType.UNKNOWN
    residual: np.ndarray = field(default_factory=lambda: np.zeros(0))
    id_participants: list[int] = field(default_factory=list)
    t: Timestamp = field(default_factory=Timestamp)
    exec_time: float = 0.0

    def __str__(self) -> str:
        return (
            f"MeasResult: status=:{self.status}"
            f", residual:{_format_array(self.residual)}"
            f", meas_type={self.meas_type}"
            f", #part.: {len(self.id_participants)}"
            f", exec time:{self.exec_time:g}"
        )


def format_results(results: Iterable[ProcessMeasResult]) -> str:
    """Render results one per line."""
    return "".join(f"{r}\n" for r in results)