"""Isolated Kalman filtering: timestamps, beliefs, Kalman primitives, filter bases and trajectory simulation."""

__version__ = "0.1.0"

__all__ = [
    "timestamp",
    "results",
    "nis",
    "kalman",
    "belief",
    "ikalman_filter",
    "isolated",
    "isolated_corr",
    "trajectory",
]