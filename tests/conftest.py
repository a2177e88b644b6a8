#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared fixtures for the Chaboche integrator tests.
"""

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for cross-platform compatibility (CI/headless)

import numpy as np
import pytest

from chaboche_solver.material_models import ChabocheModelMultiAxial
from chaboche_solver.solver import RootSolution, initial_state

# Reference steel-like parameter set (MPa, s)
REFERENCE_PARAMS = {
    'youngs modulus': 200000.0,
    'poissons ratio': 0.3,
    'K_n': 100.0,
    'n_n': 10.0,
    'C_1': 5000.0,
    'D_1': 50.0,
    'C_2': 5000.0,
    'D_2': 50.0,
    'Q': 50.0,
    'b': 10.0,
    'yield stress': 100.0,
}


class FiniteDifferenceNewtonSolver:
    """
    Deterministic Newton iteration with a forward-difference Jacobian.
    Stands in for a general-purpose root solver.
    """
    def __init__(self, tol=1e-9, max_iter=50):
        self.tol = tol
        self.max_iter = max_iter

    def solve(self, residual_fn, x0):
        x = np.array(x0, dtype=float)
        F = residual_fn(x)
        scale = max(1.0, np.max(np.abs(x)))
        for it in range(self.max_iter):
            if np.max(np.abs(F)) < self.tol * scale:
                return RootSolution(x, True, 'converged', it + 1)
            J = np.empty((len(x), len(x)))
            for j in range(len(x)):
                h = 1e-7 * max(1.0, abs(x[j]))
                x_pert = x.copy()
                x_pert[j] += h
                J[:, j] = (residual_fn(x_pert) - F) / h
            x = x - np.linalg.solve(J, F)
            F = residual_fn(x)
        return RootSolution(x, False, 'maximum number of iterations reached', self.max_iter)


class FieldHistory:
    """In-memory time history of named fields at one integration point."""
    def __init__(self):
        self.data = {}

    def update(self, key, time, value):
        self.data.setdefault(key, {})[time] = value

    def __call__(self, key, time):
        return self.data[key][time]


@pytest.fixture
def reference_params():
    return dict(REFERENCE_PARAMS)


@pytest.fixture
def model():
    p = REFERENCE_PARAMS
    return ChabocheModelMultiAxial(
        E=p['youngs modulus'], nu=p['poissons ratio'], K_n=p['K_n'], n_n=p['n_n'],
        C=[p['C_1'], p['C_2']], gamma=[p['D_1'], p['D_2']], Q=p['Q'], b=p['b'])


@pytest.fixture
def virgin_state():
    return initial_state(REFERENCE_PARAMS['yield stress'])


@pytest.fixture
def newton_solver():
    return FiniteDifferenceNewtonSolver()


@pytest.fixture
def field_history():
    return FieldHistory()


@pytest.fixture
def field_query():
    """
    Host query returning constants and a displacement gradient history:
    uniaxial stress states with axial strain 0.0004 at t=1 and 0.0006 at t=2.
    """
    axial_strain = {0.0: 0.0, 1.0: 0.0004, 2.0: 0.0006, 3.0: 0.0007}

    def query(name, time):
        if name == 'displacement gradient':
            e11 = axial_strain[time]
            return np.diag([e11, -0.3 * e11, -0.3 * e11])
        return REFERENCE_PARAMS[name]
    return query
