import numpy as np
import pytest

from isokalman.belief import Belief, BeliefOptions, InitStrategy, LinearBelief
from isokalman.timestamp import Timestamp


def make_belief():
    return LinearBelief(np.array([1.0, 2.0]), np.eye(2) * 0.5, Timestamp.from_sec(1.5))


def test_base_is_abstract():
    with pytest.raises(TypeError):
        Belief()


def test_default_options():
    opts = BeliefOptions()
    assert opts.is_fixed is False and opts.do_fej is False


def test_set_success_and_failure():
    bel = LinearBelief()
    assert bel.set(np.zeros(3), np.eye(3))
    assert bel.es_dim() == 3 and bel.ns_dim() == 3 and bel.dof() == 3
    assert not bel.set(np.zeros(2), np.eye(3))
    assert bel.mean.shape == (3,)


def test_clone_is_independent():
    bel = make_belief()
    other = bel.clone()
    other.correct(np.array([1.0, 1.0]), np.eye(2))
    other.timestamp = Timestamp.from_sec(3.0)
    assert np.allclose(bel.mean, [1.0, 2.0])
    assert np.allclose(bel.sigma, np.eye(2) * 0.5)
    assert bel.timestamp == Timestamp.from_sec(1.5)
    assert isinstance(other, LinearBelief)


def test_correct_and_boxminus_roundtrip():
    bel = make_belief()
    ref = bel.clone()
    dx = np.array([0.3, -0.7])
    bel.boxplus(dx)
    assert np.allclose(bel.boxminus(ref), dx)
    assert np.allclose(bel.sigma, ref.sigma)


def test_correct_replaces_sigma():
    bel = make_belief()
    bel.correct(np.zeros(2), np.eye(2) * 2.0)
    assert np.allclose(bel.sigma, np.eye(2) * 2.0)


def test_plus_jacobian_identity():
    bel = make_belief()
    assert np.allclose(bel.plus_jacobian(np.zeros(2)), np.eye(2))


def test_str_format():
    text = str(make_belief())
    assert text.startswith("* IBelief: t=1.500000")
    assert "fix=0" in text
    assert "diag(Sigma)=0.5 0.5" in text


def test_init_strategy_none_keeps_mean():
    bel = make_belief()
    Belief.apply_init_strategy(bel, InitStrategy.NONE, 5)
    assert np.allclose(bel.mean, [1.0, 2.0])


def test_init_strategy_random_reproducible():
    a = make_belief()
    b = make_belief()
    Belief.apply_init_strategy(a, InitStrategy.RANDOM, 42)
    Belief.apply_init_strategy(b, InitStrategy.RANDOM, 42)
    assert np.allclose(a.mean, b.mean)
    assert a.mean.shape == (2,)
    assert not np.allclose(a.mean, [1.0, 2.0])