# isokalman

Building blocks for Isolated Kalman Filtering. A full state is split into separate filter instances. Each instance
propagates on its own and keeps, for every other instance it is correlated with, a history of factorized
cross-covariances. Joint observations are handed to a handler object that knows all instances.

## Modules

- `isokalman.timestamp`: `Timestamp`, made of whole seconds and nanoseconds. Build one with `Timestamp(sec, nsec)`,
  `Timestamp.from_sec`, `from_stamp_ms`, `from_stamp_us` or `from_stamp_ns`, and read it back with `to_sec`,
  `stamp_ms`, `stamp_us` and `stamp_ns`. Timestamps compare, hash, add and subtract. `from_sec` raises
  `ValueError` for seconds beyond the 33-bit range, and `stamp_ns` raises `OverflowError` when the value does not
  fit in nanoseconds.
- `isokalman.results`: the `MeasStatus` and `ObservationType` enums, the `MeasData` measurement record (`z`,
  `r_cov`, `t_m`, `t_p`, `obs_type`, `meas_type`, `meta_info`, `id_sensor`), `ProcessMeasResult`, and
  `format_results`, which prints results one per line.
- `isokalman.nis`: Normalized Innovation Squared. `nis(sigma, r)` computes `r^T Sigma^-1 r`. `check_nis` and
  `check_nis_full` gate a residual against `chi2inv(p, df)`. `chi2inv` reads a chi-square quantile from a table
  for p in 0.38, 0.5, 0.68, 0.95 and 0.997 (the nearest key is used otherwise) and df index 0 to 49. It returns
  0.0 where the table has no entry.
- `isokalman.kalman`: `covariance_propagation`, `correction_step` and `covariance_intersection_correction`.
  `CorrectionCfg` sets outlier rejection, Joseph form, stabilisation, the confidence level, eps and the
  iteration limits, and `CorrectionResult` holds the outcome. The module also has `stabilize_covariance` and the
  `check_dim_*` shape checks. `covariance_propagation` raises `ValueError` on a shape mismatch, and
  `correction_step` returns a rejected result instead.
- `isokalman.belief`: the abstract `Belief` and the concrete `LinearBelief`. Each holds a mean, a covariance, a
  timestamp and `BeliefOptions`. `Belief.apply_init_strategy` with `InitStrategy.RANDOM` samples a new mean.
- `isokalman.ikalman_filter`: `TimeHorizonBuffer`, a time-ordered history that drops entries older than a horizon.
  In multi mode it allows several entries per timestamp. `KalmanFilterBase` is an abstract filter that keeps a
  belief history and a measurement history. It dispatches `MeasData` by observation type, and when a subclass
  reports `MeasStatus.OUTOFORDER` it reprocesses the stored measurements after that time. It also provides linear,
  belief-based and iterated (`apply_private_observation_iterated`) correction helpers. `GetBeliefStrategy`
  (`EXACT`, `CLOSEST`, `PREDICT_BELIEF`) controls how `get_belief_at_t` looks up beliefs.
- `isokalman.isolated`: `IsolatedKalmanFilter`, an abstract subclass that keeps cross-covariance factors for each
  correlated instance. It carries them through propagations and applies update corrections to them. It forwards
  `process_measurement`, `insert_measurement`, `apply_observation` and `apply_observation_joint` to its handler.
- `isokalman.isolated_corr`: `IsolatedKalmanFilterCorr` stores correction terms in their own buffer.
  `compute_correction` and `get_cross_cov_fact_at_t` use these terms to bring out-of-date cross-covariance
  factors forward.
- `isokalman.trajectory`: `Trajectory`, a sampled 1D harmonic motion (`generate_sine`). It produces noisy
  position, velocity, acceleration and relative-position samples, each taking an optional
  `numpy.random.Generator`. `plot_trajectory` draws three stacked axes with matplotlib and saves the figure when
  a path is given.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Plain Kalman primitives:

```python
import numpy as np
from isokalman.kalman import CorrectionCfg, correction_step, covariance_propagation

dt = 0.01
phi = np.array([[1.0, dt], [0.0, 1.0]])
sigma_b = covariance_propagation(np.eye(2) * 0.5, phi, np.eye(2) * 1e-6)

h = np.array([[1.0, 0.0]])
r_cov = np.array([[0.05 ** 2]])
res = correction_step(h, r_cov, np.array([0.02]), sigma_b, CorrectionCfg())
if not res.rejected:
    print(res.delta_mean, res.sigma_apos)
```

A concrete filter for a body moving with constant acceleration, where the acceleration is the control input and
the position is observed:

```python
import numpy as np
from isokalman.belief import LinearBelief
from isokalman.ikalman_filter import KalmanFilterBase
from isokalman.results import MeasData, MeasStatus, ObservationType, ProcessMeasResult
from isokalman.timestamp import Timestamp


class ConstAccFilter(KalmanFilterBase):
    def predict_to(self, t_b):
        return False

    def propagation_measurement(self, m):
        found = self.get_belief_before_t(m.t_m)
        if found is None:
            return ProcessMeasResult(status=MeasStatus.DISCARED)
        bel_a, t_a = found
        dt = m.t_m.to_sec() - t_a.to_sec()
        phi = np.array([[1.0, dt], [0.0, 1.0]])
        g = np.array([[0.5 * dt * dt], [dt]])
        mean_b = phi @ bel_a.mean + g @ m.z
        q = g @ m.r_cov @ g.T + np.eye(2) * 1e-6
        ok = self.apply_propagation_with_mean(bel_a, mean_b, phi, q, t_a, m.t_m)
        return ProcessMeasResult(status=MeasStatus.PROCESSED if ok else MeasStatus.REJECTED)

    def local_private_measurement(self, m):
        ok = self.apply_private_observation(np.array([[1.0, 0.0]]), m.r_cov, m.z, m.t_m)
        return ProcessMeasResult(status=MeasStatus.PROCESSED if ok else MeasStatus.REJECTED)


bel0 = LinearBelief(np.zeros(2), np.eye(2) * 0.5, Timestamp.from_sec(0.0))
kf = ConstAccFilter(horizon_sec=5.0, bel_0=bel0)
t = Timestamp.from_sec(0.01)
kf.process_measurement(MeasData(obs_type=ObservationType.PROPAGATION,
                                z=np.array([0.0]), r_cov=np.array([[0.05 ** 2]]), t_m=t, t_p=t))
kf.process_measurement(MeasData(obs_type=ObservationType.PRIVATE_OBSERVATION,
                                z=np.array([0.02]), r_cov=np.array([[0.05 ** 2]]), t_m=t, t_p=t))
print(kf.current_belief())
```

Simulated trajectories:

```python
import numpy as np
from isokalman.trajectory import Trajectory

traj = Trajectory()
traj.generate_sine(dt=0.01, duration=5.0, omega=1.57, omega_0=0.0, amplitude=1.0, offset=0.0)
noisy_p = traj.generate_noisy_pos(0.05, rng=np.random.default_rng(1))
```

## What the package does not do

- It has no handler that coordinates instances. `IsolatedKalmanFilter` and `IsolatedKalmanFilterCorr` need a
  handler object that you supply, with `process_measurement`, `insert_measurement`, `apply_observation` and
  `apply_observation_joint`. The package does not stack beliefs, split covariances or factorize
  cross-covariances across several instances.
- It contains no concrete filter models. You subclass `KalmanFilterBase` or `IsolatedKalmanFilter` and implement
  `predict_to`, `propagation_measurement` and `local_private_measurement`. Isolated filters also need
  `local_joint_measurement`.
- It has no command-line program and no ready-made simulation run. `Trajectory` only generates and plots the data.