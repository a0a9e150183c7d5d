"""
Test configuration and fixtures for approximate FABIA tests.

Provides common fixtures for synthetic bicluster data and model initial
values, plus helpers for reading the JSON event log.
"""

import json

import numpy as np
import pytest


@pytest.fixture
def random_seed():
    """Fixed random seed for reproducible tests."""
    return 42


@pytest.fixture
def tolerance():
    """Standard numerical tolerance."""
    return 1e-6


@pytest.fixture
def bicluster_data(random_seed):
    """
    Two planted biclusters in Gaussian noise (float32, n=30, l=60).

    Factor 0 loads on variables 0-9 and is active on samples 0-29,
    factor 1 loads on variables 15-24 and is active on samples 30-59.
    """
    rng = np.random.default_rng(random_seed)
    n, l, k = 30, 60, 2
    L_true = np.zeros((n, k))
    L_true[0:10, 0] = rng.uniform(1.0, 2.0, size=10)
    L_true[15:25, 1] = -rng.uniform(1.0, 2.0, size=10)
    Z_true = np.zeros((k, l))
    Z_true[0, 0:30] = rng.choice([-1.0, 1.0], size=30) * rng.uniform(1.0, 2.0, size=30)
    Z_true[1, 30:60] = rng.choice([-1.0, 1.0], size=30) * rng.uniform(1.0, 2.0, size=30)
    X = L_true @ Z_true + 0.1 * rng.standard_normal((n, l))
    return {
        'X': X.astype(np.float32),
        'L_true': L_true,
        'Z_true': Z_true,
        'n': n, 'k': k, 'l': l,
    }


def make_initial_state(X, k, seed=0, dtype=None):
    """Standard initial values: L ~ N(0, 1), Psi = mean(X²), lapla = 1, Z = 0."""
    dtype = dtype or X.dtype
    rng = np.random.default_rng(seed)
    n, l = X.shape
    L = rng.standard_normal((n, k)).astype(dtype)
    Psi = np.maximum(1e-3, np.mean(X.astype(np.float64) ** 2, axis=1)).astype(dtype)
    Z = np.zeros((k, l), dtype=dtype)
    lapla = np.ones((k, l), dtype=dtype)
    return Psi, L, Z, lapla


def log_events(text):
    """Parse JSON log lines captured from stdout."""
    events = []
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("{"):
            events.append(json.loads(line))
    return events


def events_named(text, name):
    return [e for e in log_events(text) if e["event"] == name]


class RecordingReporter:
    """Progress reporter that snapshots everything it is handed."""

    def __init__(self):
        self.calls = []

    def update(self, iteration, elapsed, L, Z, Psi, lapla):
        self.calls.append({
            'iteration': iteration,
            'elapsed': elapsed,
            'L': L.copy(), 'Z': Z.copy(), 'Psi': Psi.copy(), 'lapla': lapla.copy(),
            'writeable': [a.flags.writeable for a in (L, Z, Psi, lapla)],
        })
