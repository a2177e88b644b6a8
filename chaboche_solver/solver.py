#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Material solver module for viscoplastic Chaboche computation.
Integrates one strain increment at a material point (elastic predictor,
yield check, backward-Euler corrector, consistent tangent) and drives
strain-controlled histories with it.
"""

import logging
from collections import namedtuple

import numpy as np
import matplotlib.pyplot as plt
from scipy.optimize import newton, root

from .material_models import (
    IntegrationError,
    InvalidParameters,
    NonConvergence,
    pack_unknowns,
    to_engineering_strain,
    unpack_unknowns,
    von_mises_stress,
)

LOG = logging.getLogger(__name__)

# --- State containers ---

MaterialState = namedtuple('MaterialState', [
    'stress',                     # (6,) tensorial shears
    'strain',                     # (6,) engineering shears
    'plastic_strain',             # (6,) engineering shears
    'cumulative_plastic_strain',  # p
    'backstresses',               # tuple of (6,) arrays
    'yield_stress',               # R
])

Increments = namedtuple('Increments', [
    'd_stress', 'd_strain', 'd_plastic_strain', 'dp', 'd_backstresses', 'd_yield_stress',
])

IncrementResult = namedtuple('IncrementResult', [
    'status',      # 'elastic', 'plastic' or 'failed'
    'state',       # state at the end of the increment, or the unchanged input state on failure
    'increments',  # Increments, None on failure
    'tangent',     # (6, 6) tangent, None on failure
    'failure',     # IntegrationError instance, None on success
    'solution',    # RootSolution of the plastic corrector, None otherwise
])

RootSolution = namedtuple('RootSolution', ['x', 'converged', 'message', 'nfev'])


def initial_state(yield_stress, n_components=2):
    """State of a virgin material point: zero fields, seeded yield stress."""
    return MaterialState(
        stress=np.zeros(6),
        strain=np.zeros(6),
        plastic_strain=np.zeros(6),
        cumulative_plastic_strain=0.0,
        backstresses=tuple(np.zeros(6) for _ in range(n_components)),
        yield_stress=float(yield_stress),
    )


def commit_increments(state, increments):
    """Adds staged increments to a state and returns the new state."""
    return MaterialState(
        stress=state.stress + increments.d_stress,
        strain=state.strain + increments.d_strain,
        plastic_strain=state.plastic_strain + increments.d_plastic_strain,
        cumulative_plastic_strain=state.cumulative_plastic_strain + increments.dp,
        backstresses=tuple(X + dX for X, dX in zip(state.backstresses, increments.d_backstresses)),
        yield_stress=state.yield_stress + increments.d_yield_stress,
    )

# --- Root solvers ---

class ScipyRootSolver:
    """
    Root solver backed by scipy.optimize.root.
    Methods are tried in order until one returns a point whose residual
    is below `tol` relative to the size of the initial guess. The reported
    `success` flag alone is not trusted: 'lm' stops at least-squares minima.
    """
    # Option name limiting function evaluations for each method
    _maxfev_option = {'hybr': 'maxfev', 'lm': 'maxiter', 'broyden1': 'maxiter', 'krylov': 'maxiter'}

    def __init__(self, methods=('hybr', 'lm'), tol=1e-10, maxfev=None):
        self.methods = tuple(methods)
        self.tol = tol
        self.maxfev = maxfev

    def _is_root(self, residual, scale):
        return bool(np.all(np.isfinite(residual)) and np.max(np.abs(residual)) <= self.tol * scale)

    def solve(self, residual_fn, x0):
        x0 = np.asarray(x0, dtype=float)
        scale = max(1.0, np.max(np.abs(x0)))
        nfev = 1
        if self._is_root(residual_fn(x0), scale):
            return RootSolution(x0, True, 'initial guess satisfies the residual', nfev)

        x = x0
        message = 'no method tried'
        for method in self.methods:
            options = {}
            if self.maxfev is not None:
                options[self._maxfev_option.get(method, 'maxiter')] = self.maxfev
            solution = root(residual_fn, x0, method=method, tol=self.tol, options=options)
            nfev += getattr(solution, 'nfev', 0) + 1
            x, message = solution.x, solution.message
            if np.all(np.isfinite(x)) and self._is_root(residual_fn(x), scale):
                return RootSolution(x, True, message, nfev)
            LOG.debug("Root solver method %s failed: %s", method, message)
        return RootSolution(x, False, message, nfev)

# --- Material-point integration ---

def integrate_increment(model, state, d_strain, dt, root_solver=None, residual_tolerance=1e-6):
    """
    Integrates one strain increment at a material point.

    Parameters:
    -----------
    model : ChabocheModelMultiAxial
        Material parameters.
    state : MaterialState
        Committed state at the start of the increment (never modified).
    d_strain : array-like
        Total strain increment, engineering shears.
    dt : float
        Time increment.
    root_solver : object, optional
        Anything with `solve(residual_fn, x0) -> RootSolution`
        (default: ScipyRootSolver()).
    residual_tolerance : float
        Accepted residual norm relative to the trial stress level.

    Returns:
    --------
    IncrementResult
        Tagged 'elastic', 'plastic' or 'failed'. A failed result carries
        the input state unchanged and the raised IntegrationError.
    """
    if root_solver is None:
        root_solver = ScipyRootSolver()
    try:
        return _integrate(model, state, d_strain, dt, root_solver, residual_tolerance)
    except IntegrationError as exc:
        LOG.warning("Increment failed (%s): %s", exc.kind, exc)
        return IncrementResult('failed', state, None, None, exc, None)


def _integrate(model, state, d_strain, dt, root_solver, residual_tolerance):
    d_strain = np.asarray(d_strain, dtype=float)
    if d_strain.shape != (6,):
        raise InvalidParameters(f"Strain increment must have 6 components, got shape {d_strain.shape}")
    if not dt > 0:
        raise InvalidParameters(f"Time increment must be positive, got {dt}")

    d_stress_trial, stress_trial = model.trial_stress(state.stress, d_strain)
    total_backstress_old = np.sum(state.backstresses, axis=0)
    f_trial, _ = model.yield_function(stress_trial, total_backstress_old, state.yield_stress)

    if f_trial <= 0.0:
        LOG.debug("Elastic increment, f_trial = %.6e", f_trial)
        increments = Increments(
            d_stress=d_stress_trial,
            d_strain=d_strain.copy(),
            d_plastic_strain=np.zeros(6),
            dp=0.0,
            d_backstresses=tuple(np.zeros(6) for _ in state.backstresses),
            d_yield_stress=0.0,
        )
        return IncrementResult('elastic', commit_increments(state, increments), increments,
                               model.stiffness.copy(), None, None)

    # A plastic trial state needs a well-defined normal before anything is solved
    model.flow_direction(stress_trial - total_backstress_old)

    def residual_coupled(x):
        return model.residual(x, state, d_strain, dt)

    try:
        x0 = model.plastic_predictor(state, stress_trial, dt)
    except NonConvergence as exc:
        LOG.debug("Scalar predictor failed (%s), starting from the trial state", exc)
        x0 = pack_unknowns(stress_trial, state.yield_stress, state.backstresses)
    solution = root_solver.solve(residual_coupled, x0)
    if not solution.converged:
        raise NonConvergence(f"Root solver did not converge: {solution.message}")

    res = residual_coupled(solution.x)
    scale = max(1.0, von_mises_stress(stress_trial), abs(state.yield_stress))
    res_norm = np.max(np.abs(res))
    if not res_norm <= residual_tolerance * scale:
        raise NonConvergence(f"Residual {res_norm:.3e} above tolerance at the returned root")

    stress, R, backstresses = unpack_unknowns(solution.x, model.n_components)
    shifted = stress - np.sum(backstresses, axis=0)
    seff = von_mises_stress(shifted)
    dp = model.viscoplastic_increment(seff, R, dt)
    flow_direction = model.flow_direction(shifted, seff)
    tangent = model.consistent_tangent(flow_direction)
    LOG.debug("Plastic increment, f_trial = %.6e, dp = %.6e, nfev = %d", f_trial, dp, solution.nfev)

    increments = Increments(
        d_stress=stress - state.stress,
        d_strain=d_strain.copy(),
        d_plastic_strain=dp * to_engineering_strain(flow_direction),
        dp=float(dp),
        d_backstresses=tuple(X - X_old for X, X_old in zip(backstresses, state.backstresses)),
        d_yield_stress=float(R - state.yield_stress),
    )
    return IncrementResult('plastic', commit_increments(state, increments), increments,
                           tangent, None, solution)

# --- Strain-history driver ---

def generate_cyclic_path(amp_pos, amp_neg, n_cycles, n_points):
    """
    Generate a cyclic loading path and return the path, cycle_ids, and sequence_ids.
    Each cycle is one unloading-loading pair (except the first, which is loading-unloading-loading).

    Returns:
        path: ndarray of strain or stress values
        cycle_ids: ndarray of cycle index for each point
        sequence_ids: ndarray of segment index for each point
    """
    segments = [(0.0, amp_pos, 0), (amp_pos, amp_neg, 0), (amp_neg, amp_pos, 0)]
    for c in range(1, n_cycles):
        segments.append((amp_pos, amp_neg, c))
        segments.append((amp_neg, amp_pos, c))

    path = []
    cycle_ids = []
    sequence_ids = []
    for seq, (start, end, cycle) in enumerate(segments):
        path.extend(np.linspace(start, end, n_points))
        cycle_ids.extend([cycle] * n_points)
        sequence_ids.extend([seq] * n_points)
    return np.array(path), np.array(cycle_ids), np.array(sequence_ids)


class ChabocheMaterialSolver:
    """
    Strain-driven solver for a single Chaboche material point.
    Plays the host role: owns the committed state, commits accepted
    increments and bisects increments the root solver cannot handle.
    """
    def __init__(self, model, yield_stress, root_solver=None, precision='standard', max_bisections=4):
        """
        Parameters:
        - model: ChabocheModelMultiAxial instance
        - yield_stress: Initial yield stress
        - root_solver: Root solver for the plastic corrector (default: ScipyRootSolver)
        - precision: 'standard', 'high', or 'scientific'
        - max_bisections: Maximum number of times an increment is halved after non-convergence
        """
        self.model = model
        self.initial_yield_stress = yield_stress
        self.precision = precision
        self.max_bisections = max_bisections
        self._custom_root_solver = root_solver
        self._setup_method_parameters()
        self.reset_state()

    def _setup_method_parameters(self):
        """
        Set up tolerances for the selected precision level.
        """
        precision_settings = {
            'standard': 1e-8,
            'high': 1e-10,
            'scientific': 1e-12
        }
        self._root_tolerance = precision_settings.get(self.precision, 1e-8)

        # Prevent too tight tolerances that stall MINPACK
        if self._root_tolerance < 1e-10:
            self._root_tolerance = 1e-10
        self._residual_tolerance = max(self._root_tolerance * 100, 1e-8)
        if self._custom_root_solver is not None:
            self.root_solver = self._custom_root_solver
        else:
            self.root_solver = ScipyRootSolver(tol=self._root_tolerance)

    def set_precision(self, precision):
        """
        Switch between precision levels.
        """
        old_precision = self.precision
        self.precision = precision
        self._setup_method_parameters()
        print(f"Switched from {old_precision} to {precision} precision")

    def reset_state(self):
        """Reset all state variables to initial conditions."""
        self.state = initial_state(self.initial_yield_stress, self.model.n_components)
        self.tangent = self.model.stiffness.copy()
        self.time = 0.0
        self.dp_history = []
        self.plastic_strain_history = []
        self._convergence_history = []

    def _advance(self, state, d_strain, dt, level=0, record=True):
        """
        Integrates an increment, halving it after non-convergence.

        Returns:
            tuple: (new_state, tangent, dp)
        """
        result = integrate_increment(self.model, state, d_strain, dt, self.root_solver, self._residual_tolerance)
        if result.status != 'failed':
            nfev = result.solution.nfev if result.solution is not None else 0
            if record:
                self._convergence_history.append({'status': result.status, 'level': level, 'nfev': nfev})
            return result.state, result.tangent, result.increments.dp

        if isinstance(result.failure, NonConvergence) and level < self.max_bisections:
            LOG.warning("Bisecting increment (level %d)", level + 1)
            half_state, _, dp_first = self._advance(state, 0.5 * d_strain, 0.5 * dt, level + 1, record)
            new_state, tangent, dp_second = self._advance(half_state, 0.5 * d_strain, 0.5 * dt, level + 1, record)
            return new_state, tangent, dp_first + dp_second
        raise result.failure

    def compute_stress(self, total_strain, dt, n_substeps=1):
        """
        Advance the committed state to a total strain (engineering shears)
        over a time increment dt, optionally split into sub-steps.
        """
        total_strain = np.asarray(total_strain, dtype=float)
        d_total_strain = total_strain - self.state.strain

        d_strain_sub = d_total_strain / n_substeps
        dt_sub = dt / n_substeps
        state = self.state
        tangent = self.tangent
        dp_total_step = 0.0
        for _ in range(n_substeps):
            state, tangent, dp = self._advance(state, d_strain_sub, dt_sub)
            dp_total_step += dp

        self.state = state
        self.tangent = tangent
        self.time += dt
        self.dp_history.append(dp_total_step)
        self.plastic_strain_history.append(state.plastic_strain.copy())
        return state.stress

    def _trial_stress_at(self, total_strain, dt):
        """Stress for a total strain without committing anything."""
        state, _, _ = self._advance(self.state, np.asarray(total_strain, dtype=float) - self.state.strain, dt, record=False)
        return state.stress

    def run_strain_controlled(self, strain_history, times=None, uniaxial=True):
        """
        Runs a strain-controlled simulation.

        Parameters:
        -----------
        strain_history : array-like
            (N,) axial strains when `uniaxial`, otherwise (N, 6) Voigt strains.
        times : array-like, optional
            (N,) end times of each step (default: 1, 2, ..., N).
        uniaxial : bool
            If True, transverse strains are solved so that s22 = s33 = 0.

        Returns:
        --------
        tuple: (stresses (N, 6), strains (N, 6))
        """
        strain_history = np.asarray(strain_history, dtype=float)
        n_steps = len(strain_history)
        if times is None:
            times = np.arange(1, n_steps + 1, dtype=float)
        times = np.asarray(times, dtype=float)

        stresses = []
        final_strains = []
        for i in range(n_steps):
            dt = times[i] - self.time
            if uniaxial:
                target_e11 = strain_history[i]

                def transverse_residual(e_t):
                    trial_strain = np.array([target_e11, e_t, e_t, 0.0, 0.0, 0.0])
                    return self._trial_stress_at(trial_strain, dt)[1]

                previous_e_t = self.state.strain[1]
                try:
                    correct_e_t = newton(transverse_residual, x0=previous_e_t, tol=1e-10, maxiter=50)
                except (RuntimeError, IntegrationError):
                    LOG.warning("Transverse strain iteration failed at step %d, using elastic estimate", i)
                    correct_e_t = -self.model.nu * target_e11
                final_strain = np.array([target_e11, correct_e_t, correct_e_t, 0.0, 0.0, 0.0])
            else:
                final_strain = strain_history[i]

            final_stress = self.compute_stress(final_strain, dt)
            stresses.append(final_stress.copy())
            final_strains.append(final_strain.copy())

        return np.array(stresses), np.array(final_strains)

    def get_method_info(self):
        """Return information about current settings."""
        return {
            'method': 'fully_implicit',
            'precision': self.precision,
            'root_tolerance': self._root_tolerance,
            'residual_tolerance': self._residual_tolerance,
            'max_bisections': self.max_bisections,
            'available_precisions': ['standard', 'high', 'scientific']
        }

    def print_convergence_summary(self):
        """
        Print summary of the integrated increments.
        """
        if self._convergence_history:
            history = self._convergence_history
            n_plastic = sum(1 for h in history if h['status'] == 'plastic')
            n_bisected = sum(1 for h in history if h['level'] > 0)
            print("\n=== CONVERGENCE SUMMARY ===")
            print(f"Total increments: {len(history)}")
            print(f"Plastic increments: {n_plastic}")
            print(f"Bisected increments: {n_bisected}")
            print(f"Function evaluations: {sum(h['nfev'] for h in history)}")
            print("===========================\n")
            self._convergence_history = []


def plot_hysteresis(strains, stresses, ax=None, component=0, label=None):
    """
    Plot a stress-strain loop for one Voigt component.

    Returns:
        matplotlib Axes
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(7, 5))
    strains = np.asarray(strains)
    stresses = np.asarray(stresses)
    ax.plot(strains[:, component], stresses[:, component], linewidth=1.5, label=label)
    ax.set_xlabel(f"Strain component {component} [-]")
    ax.set_ylabel(f"Stress component {component} [MPa]")
    ax.grid(True, linestyle=":", linewidth=0.5)
    if label is not None:
        ax.legend()
    return ax
