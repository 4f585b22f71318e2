"""
Shared fixtures for the basicnet tests.
"""
import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from basicnet.nnets import nets


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "integration: tests which train a network")


@pytest.fixture
def xor_data():
    """XOR features and targets as 2D arrays."""
    features = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=np.float64)
    targets = np.array([[0], [1], [1], [0]], dtype=np.float64)
    return features, targets


@pytest.fixture
def xor_net():
    """A 2-4-1 network with a fixed seed."""
    return nets.Network(2, [(4, "tanh"), (1, "sigmoid")], name="XOR", random_state=42)


@pytest.fixture
def deep_net():
    """A 3-5-4-2 network which uses every elementwise activation."""
    return nets.Network(3, [(5, "relu"), (4, "tanh"), (2, "linear")], random_state=7)


def numerical_gradient(func, param, eps=1e-6):
    """Central-difference gradient of the scalar `func()` with respect to
    each element of the array `param`, which is perturbed in place."""
    grad = np.zeros_like(param)
    for idx in np.ndindex(*param.shape):
        original = param[idx]
        param[idx] = original + eps
        plus = func()
        param[idx] = original - eps
        minus = func()
        param[idx] = original
        grad[idx] = (plus - minus) / (2 * eps)
    return grad


def relative_error(analytic, numeric):
    analytic, numeric = np.asarray(analytic), np.asarray(numeric)
    scale = np.maximum(np.abs(analytic) + np.abs(numeric), 1e-5)
    return np.max(np.abs(analytic - numeric) / scale)
