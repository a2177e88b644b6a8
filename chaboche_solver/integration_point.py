#!/usr/bin/env python3
"""
Integration-point adapter between a finite-element host and the Chaboche integrator.

The host supplies two collaborators:
- `field_query(name, time)` returning material constants and the
  displacement gradient at this point,
- `history` with `update(key, time, value)` storing named field values.
"""

import logging

from .material_models import ChabocheModelMultiAxial, strain_from_displacement_gradient
from .solver import initial_state, integrate_increment

LOG = logging.getLogger(__name__)

HISTORY_KEYS = (
    'stress',
    'strain',
    'plastic strain',
    'cumulative equivalent plastic strain',
    'backstress 1',
    'backstress 2',
    'yield stress',
)


def state_to_history(state):
    """Maps a MaterialState onto the named history fields."""
    fields = {
        'stress': state.stress.copy(),
        'strain': state.strain.copy(),
        'plastic strain': state.plastic_strain.copy(),
        'cumulative equivalent plastic strain': float(state.cumulative_plastic_strain),
        'yield stress': float(state.yield_stress),
    }
    for i, X in enumerate(state.backstresses):
        fields[f'backstress {i + 1}'] = X.copy()
    return fields


class ChabocheIntegrationPoint:
    """
    One integration point: committed state, staged increment and tangent.
    `tangent` belongs to the state committed at `tangent_time`.
    """
    def __init__(self, field_query, history, root_solver=None):
        self.field_query = field_query
        self.history = history
        self.root_solver = root_solver
        self.model = None
        self.state = None
        self.d_strain = None
        self.pending = None
        self.tangent = None
        self.tangent_time = None

    def initialize(self, time=0.0):
        """Zero internal fields; yield stress seeded from the host."""
        yield_stress = self.field_query('yield stress', time)
        self.state = initial_state(yield_stress)
        for key, value in state_to_history(self.state).items():
            self.history.update(key, time, value)

    def preprocess_analysis(self, time):
        self.model = ChabocheModelMultiAxial.from_query(self.field_query, time)
        self.tangent = self.model.stiffness.copy()
        self.tangent_time = time

    def preprocess_increment(self, time):
        """Strain increment from the displacement gradient at `time`."""
        if self.state is None:
            raise RuntimeError("Integration point used before initialize()")
        grad_u = self.field_query('displacement gradient', time)
        self.d_strain = strain_from_displacement_gradient(grad_u) - self.state.strain
        return self.d_strain

    def integrate(self, dt):
        """
        Integrates the prepared strain increment and stages the result.
        A failed result is returned but never committed.
        """
        if self.model is None or self.d_strain is None:
            raise RuntimeError("integrate() requires preprocess_analysis() and preprocess_increment()")
        result = integrate_increment(self.model, self.state, self.d_strain, dt, self.root_solver)
        self.pending = result if result.status != 'failed' else None
        return result

    def commit(self, time):
        """Accepts the staged increment and writes the history at `time`."""
        if self.pending is None:
            raise RuntimeError("No successful increment staged for commit")
        self.state = self.pending.state
        self.tangent = self.pending.tangent
        self.tangent_time = time
        self.pending = None
        self.d_strain = None
        for key, value in state_to_history(self.state).items():
            self.history.update(key, time, value)
        LOG.debug("Committed increment at t = %g, p = %.6e", time, self.state.cumulative_plastic_strain)
        return self.state

    def postprocess_analysis(self, time, dt):
        """
        Full update at the end of an analysis step.

        Returns:
            IncrementResult of the integrated increment
        """
        self.preprocess_increment(time)
        result = self.integrate(dt)
        if result.status == 'failed':
            raise result.failure
        self.commit(time)
        return result
