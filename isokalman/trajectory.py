"""Simulated one-dimensional trajectories with position, velocity and acceleration."""

from __future__ import annotations

import numpy as np


def _format_row(arr: np.ndarray) -> str:
    return " ".join(f"{v:g}" for v in arr)


class Trajectory:
    """Sampled trajectory: time, position, velocity and acceleration arrays."""

    def __init__(self, n: int = 0) -> None:
        n = max(int(n), 0)
        self.p_arr = np.zeros(n)
        self.v_arr = np.zeros(n)
        self.a_arr = np.zeros(n)
        self.t_arr = np.zeros(n)

    def size(self) -> int:
        return self.t_arr.size

    def __len__(self) -> int:
        return self.size()

    def __str__(self) -> str:
        return "\n".join(
            (
                f"t_arr={_format_row(self.t_arr)}",
                f"p_arr={_format_row(self.p_arr)}",
                f"v_arr={_format_row(self.v_arr)}",
                f"a_arr={_format_row(self.a_arr)}",
            )
        )

    def plot_trajectory(self, num_fig: int = 0, desc: str = "Trajectory", path=None):
        """Plot p, v and a over time in three stacked axes; save to path if given."""
        import matplotlib.pyplot as plt

        title = f"{desc}{num_fig}"
        fig, axes = plt.subplots(3, 1, num=title)
        fig.suptitle(title, fontsize=12)
        for ax, values, label in zip(axes, (self.p_arr, self.v_arr, self.a_arr), ("p", "v", "a")):
            ax.plot(self.t_arr, values)
            ax.set_ylabel(label)
            ax.set_xlabel("t_{seconds}")
            ax.grid(True)
        if path is not None:
            fig.savefig(path)
        return fig

    @staticmethod
    def _noise(n: int, std_dev: float, rng: np.random.Generator | None) -> np.ndarray:
        rng = rng if rng is not None else np.random.default_rng()
        return rng.normal(0.0, std_dev, n)

    def generate_noisy_pos(self, std_dev: float, rng: np.random.Generator | None = None) -> np.ndarray:
        return self.p_arr + self._noise(self.size(), std_dev, rng)

    def generate_noisy_vel(self, std_dev: float, rng: np.random.Generator | None = None) -> np.ndarray:
        return self.v_arr + self._noise(self.size(), std_dev, rng)

    def generate_noisy_acc(self, std_dev: float, rng: np.random.Generator | None = None) -> np.ndarray:
        return self.a_arr + self._noise(self.size(), std_dev, rng)

    def generate_sine(
        self,
        dt: float,
        duration: float,
        omega: float,
        omega_0: float,
        amplitude: float,
        offset: float = 0.0,
    ) -> None:
        """Fill the arrays with a harmonic motion sampled every dt over duration."""
        if dt <= 0:
            raise ValueError("dt must be positive")
        if duration < 0:
            raise ValueError("duration must not be negative")
        n = int(duration / dt) + 1
        self.t_arr = np.array([float(duration)]) if n == 1 else np.linspace(0.0, duration, n)
        phase = self.t_arr * omega + omega_0
        self.p_arr = np.sin(phase) * amplitude + offset
        self.v_arr = omega * np.cos(phase) * amplitude
        self.a_arr = -omega * omega * np.sin(phase) * amplitude

    def generate_noisy_rel_pos(
        self, other: "Trajectory", std_dev: float, rng: np.random.Generator | None = None
    ) -> np.ndarray:
        """Noisy position of other relative to this trajectory."""
        if self.size() != other.size():
            raise ValueError("Dimension mismatch")
        if np.sum(self.t_arr - other.t_arr) >= 0.1:
            raise ValueError("Time indices mismatch!")
        return other.p_arr - self.p_arr + self._noise(self.size(), std_dev, rng)

    @staticmethod
    def linespace(start: float, step: float, stop: float) -> list[float]:
        """Values from start in increments of step up to stop."""
        n = int((stop - start) / step) + 1
        values: list[float] = []
        val = start
        for _ in range(max(n, 0)):
            values.append(val)
            val += step
        return values