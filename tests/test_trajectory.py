import math

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from isokalman.trajectory import Trajectory


def _sine(amplitude=1.2, omega=math.pi / 2, omega_0=0.3, offset=0.0):
    traj = Trajectory()
    traj.generate_sine(0.1, 1.0, omega, omega_0, amplitude, offset)
    return traj


def test_new_trajectory_is_zero():
    traj = Trajectory(5)
    assert traj.size() == 5
    assert not traj.p_arr.any() and not traj.t_arr.any()
    assert Trajectory().size() == 0


def test_generate_sine_samples():
    traj = _sine()
    assert traj.size() == 11
    assert traj.t_arr[0] == pytest.approx(0.0)
    assert traj.t_arr[-1] == pytest.approx(1.0)
    np.testing.assert_allclose(np.diff(traj.t_arr), 0.1)


def test_generate_sine_invariants():
    omega = math.pi / 2
    traj = _sine(amplitude=1.2, omega=omega)
    np.testing.assert_allclose(traj.p_arr**2 + (traj.v_arr / omega) ** 2, 1.2**2)
    np.testing.assert_allclose(traj.a_arr, -omega * omega * traj.p_arr)


def test_generate_sine_offset_shifts_position():
    base = _sine(offset=0.0)
    shifted = _sine(offset=2.0)
    np.testing.assert_allclose(shifted.p_arr - base.p_arr, 2.0)
    np.testing.assert_allclose(shifted.v_arr, base.v_arr)


def test_generate_sine_rejects_bad_step():
    with pytest.raises(ValueError):
        Trajectory().generate_sine(0.0, 1.0, 1.0, 0.0, 1.0)


def test_noisy_with_zero_std_is_exact():
    traj = _sine()
    np.testing.assert_allclose(traj.generate_noisy_pos(0.0), traj.p_arr)
    np.testing.assert_allclose(traj.generate_noisy_vel(0.0), traj.v_arr)
    np.testing.assert_allclose(traj.generate_noisy_acc(0.0), traj.a_arr)


def test_noisy_reproducible_with_seed():
    traj = _sine()
    a = traj.generate_noisy_pos(0.05, np.random.default_rng(7))
    b = traj.generate_noisy_pos(0.05, np.random.default_rng(7))
    np.testing.assert_array_equal(a, b)
    assert a.shape == traj.p_arr.shape
    assert np.max(np.abs(a - traj.p_arr)) < 0.5


def test_rel_pos_zero_noise():
    a = _sine(omega_0=0.0)
    b = _sine(omega_0=0.5)
    np.testing.assert_allclose(a.generate_noisy_rel_pos(b, 0.0), b.p_arr - a.p_arr)


def test_rel_pos_size_mismatch():
    a = _sine()
    with pytest.raises(ValueError):
        a.generate_noisy_rel_pos(Trajectory(3), 0.1)


def test_rel_pos_time_mismatch():
    a = _sine()
    b = _sine()
    b.t_arr = b.t_arr - 1.0
    with pytest.raises(ValueError):
        a.generate_noisy_rel_pos(b, 0.1)


def test_linespace_steps():
    values = Trajectory.linespace(0.0, 0.5, 2.0)
    assert len(values) == 5
    assert values[0] == 0.0
    np.testing.assert_allclose(np.diff(values), 0.5)
    assert Trajectory.linespace(3.0, 1.0, 0.0) == []


def test_str_lists_arrays():
    lines = str(_sine()).splitlines()
    assert [line.split("=")[0] for line in lines] == ["t_arr", "p_arr", "v_arr", "a_arr"]


def test_plot_trajectory_saves(tmp_path):
    import matplotlib.pyplot as plt

    out = tmp_path / "traj.png"
    fig = _sine().plot_trajectory(1, "Err", out)
    try:
        assert len(fig.axes) == 3
        assert [ax.get_ylabel() for ax in fig.axes] == ["p", "v", "a"]
        assert out.exists() and out.stat().st_size > 0
    finally:
        plt.close(fig)