#!/usr/bin/env python3
"""
Material models for viscoplastic Chaboche computation.
This module contains the Voigt tensor utilities, the hardening laws and the
multi-axial Chaboche model used by the material-point integrator.

Voigt conventions:
- stress-like vectors (stress, backstress, flow direction) store the tensorial
  shear components [s11, s22, s33, s12, s23, s13],
- strain-like vectors (strain, plastic strain) store engineering shears
  [e11, e22, e33, 2*e12, 2*e23, 2*e13].
"""

import ast
from pathlib import Path

import numpy as np
from scipy.optimize import brentq

# --- Errors ---

class IntegrationError(Exception):
    """
    Base class for failures of a material-point increment.
    The class attribute `kind` tags the failure in integration results.
    """
    kind = 'integration_error'


class InvalidParameters(IntegrationError, ValueError):
    """Material parameters or increment data outside their admissible range."""
    kind = 'invalid_parameters'


class NonConvergence(IntegrationError):
    """The root solver did not converge on the coupled residual system."""
    kind = 'non_convergence'


class DegenerateFlowDirection(IntegrationError):
    """Effective stress is negligible while plastic flow is requested."""
    kind = 'degenerate_flow_direction'


class SingularTangentCorrection(IntegrationError):
    """Denominator of the consistent tangent correction is not positive."""
    kind = 'singular_tangent_correction'

# --- Utility Functions ---

def parse_material_params(file_path):
    """
    Parses a single material parameter file with 'key = value' format.
    Lines starting with '#' are ignored.
    """
    params = {}
    file_path = Path(file_path)

    with open(file_path, 'r', encoding='utf-8', newline=None) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()
            try:
                # Use ast.literal_eval for safe evaluation of Python literals
                params[key] = ast.literal_eval(value)
            except (ValueError, SyntaxError):
                params[key] = value
    return params


# File keys (and host field names) accepted for each constructor argument
PARAMETER_ALIASES = {
    'E': ['E', 'e', 'youngs modulus'],
    'nu': ['nu', 'NU', 'poissons ratio'],
    'K_n': ['K_n', 'K', 'k'],
    'n_n': ['n_n', 'n', 'N'],
    'C': ['C', 'c'],
    'gamma': ['gamma', 'y', 'Y', 'D'],
    'Q': ['Q', 'R_inf'],
    'b': ['b', 'B'],
    'yield_stress': ['sigy', 'SIGY', 'yield stress', 'yield_stress'],
}


def load_and_create_model(file_path):
    """
    Loads parameters from a material file and creates the multi-axial Chaboche model.

    Args:
        file_path: Path to a 'key = value' parameter file. Kinematic
            parameters are lists with one entry per backstress, e.g.
            `c = [5000.0, 5000.0]`.

    Returns:
        tuple: (model, yield_stress)
    """
    all_params = parse_material_params(file_path)
    final_params = {}
    for name, aliases in PARAMETER_ALIASES.items():
        for alias in aliases:
            if alias in all_params:
                final_params[name] = all_params[alias]
                break
        else:
            if name not in ('Q', 'b'):  # Q and b are optional
                raise KeyError(f"Parameter '{name}' (aliases: {aliases}) not found in material file.")

    yield_stress = float(final_params.pop('yield_stress'))
    model = ChabocheModelMultiAxial(**final_params)
    return model, yield_stress

# --- Multi-axial Voigt Utilities ---

VOIGT_IDENTITY = np.array([1.0, 1.0, 1.0, 0.0, 0.0, 0.0])

# Converts stress-like shear components to engineering strain shears
ENGINEERING_SHEAR = np.array([1.0, 1.0, 1.0, 2.0, 2.0, 2.0])


def _as_voigt(vector):
    vector = np.asarray(vector, dtype=float)
    if vector.shape != (6,):
        raise ValueError(f"Expected a 6-component Voigt vector, got shape {vector.shape}")
    return vector


def deviatoric(stress):
    """Computes the deviatoric part of a 6-component Voigt vector."""
    stress = _as_voigt(stress)
    return stress - (1./3.) * np.sum(stress[:3]) * VOIGT_IDENTITY


def von_mises_stress(stress):
    """
    Von Mises equivalent stress of a stress-like Voigt vector.
    Shear entries are tensorial, hence the factor 3 on their squares.
    """
    s = _as_voigt(stress)
    return np.sqrt(0.5 * ((s[0] - s[1])**2 + (s[1] - s[2])**2 + (s[2] - s[0])**2)
                   + 3.0 * (s[3]**2 + s[4]**2 + s[5]**2))


def to_engineering_strain(tensor_voigt):
    """Doubles the shear entries of a tensorial Voigt vector."""
    return ENGINEERING_SHEAR * _as_voigt(tensor_voigt)


def tensor_to_voigt(tensor):
    """Converts a 3x3 symmetric stress tensor to a 6x1 Voigt notation vector."""
    return np.array([tensor[0, 0], tensor[1, 1], tensor[2, 2], tensor[0, 1], tensor[1, 2], tensor[0, 2]])


def voigt_to_tensor(voigt):
    """Converts a stress-like 6x1 Voigt notation vector to a 3x3 symmetric tensor."""
    tensor = np.zeros((3, 3))
    tensor[0, 0], tensor[1, 1], tensor[2, 2] = voigt[0], voigt[1], voigt[2]
    tensor[0, 1] = tensor[1, 0] = voigt[3]
    tensor[1, 2] = tensor[2, 1] = voigt[4]
    tensor[0, 2] = tensor[2, 0] = voigt[5]
    return tensor


def strain_to_voigt(strain_tensor):
    """Converts a 3x3 strain tensor to a Voigt vector with engineering shears."""
    return to_engineering_strain(tensor_to_voigt(strain_tensor))


def strain_from_displacement_gradient(grad_u):
    """
    Small-strain Voigt vector from a 3x3 displacement gradient.
    """
    grad_u = np.asarray(grad_u, dtype=float)
    if grad_u.shape != (3, 3):
        raise ValueError(f"Expected a 3x3 displacement gradient, got shape {grad_u.shape}")
    return strain_to_voigt(0.5 * (grad_u + grad_u.T))


def elastic_stiffness(E, nu):
    """
    Isotropic linear-elastic 6x6 stiffness acting on engineering strains.
    """
    mu = E / (2.0 * (1.0 + nu))
    lmbda = E * nu / ((1.0 + nu) * (1.0 - 2.0 * nu))
    D = np.zeros((6, 6))
    D[:3, :3] = lmbda
    D[[0, 1, 2], [0, 1, 2]] = 2.0 * mu + lmbda
    D[[3, 4, 5], [3, 4, 5]] = mu
    return D


def pack_unknowns(stress, R, backstresses):
    """Stacks stress, isotropic variable and backstresses into the unknown vector."""
    return np.concatenate([np.asarray(stress, dtype=float), [float(R)]]
                          + [np.asarray(X, dtype=float) for X in backstresses])


def unpack_unknowns(x, n_components):
    """
    Splits the unknown vector [stress(6), R, X_1(6), ..., X_k(6)].

    Returns:
        tuple: (stress, R, backstresses)
    """
    x = np.asarray(x, dtype=float)
    if x.shape != (7 + 6 * n_components,):
        raise ValueError(f"Expected {7 + 6 * n_components} unknowns, got shape {x.shape}")
    stress = x[:6]
    R = x[6]
    backstresses = [x[7 + 6 * i: 13 + 6 * i] for i in range(n_components)]
    return stress, R, backstresses

# --- Isotropic Hardening Models ---

class VoceIsotropicHardeningModel:
    """
    Saturating isotropic hardening of the yield stress R.
    Follows the evolution law: dR = b * (Q - R) * dp
    """
    def __init__(self, Q=0.0, b=0.0):
        self.Q = Q  # Saturation value of the yield stress
        self.b = b  # Rate parameter

    def compute_hardening_modulus(self, R):
        """dR/dp at the current yield stress."""
        return self.b * (self.Q - R)

    def residual(self, R_old, R_new, dp):
        """Backward-Euler residual R_old - R_new + b*(Q - R_new)*dp."""
        return R_old - R_new + self.b * (self.Q - R_new) * dp

    def update_implicit(self, R_old, dp):
        """
        Closed-form root of the backward-Euler residual for a given dp.
        """
        if self.b == 0:
            return R_old
        return (R_old + self.b * self.Q * dp) / (1.0 + self.b * dp)

# --- Kinematic Hardening Models ---

class ArmstrongFrederickBackstress:
    """
    Nonlinear kinematic hardening term of the Chaboche decomposition.
    Follows the evolution law: dX = (2/3)*C*n*dp - gamma*X*dp
    """
    def __init__(self, C, gamma):
        self.C = C          # Hardening modulus
        self.gamma = gamma  # Dynamic recovery (D_i in Chaboche notation)

    def residual(self, X_old, X_new, dp, flow_direction):
        # Same as X_old - X_new + (2/3)*C*dp*(n - 1.5*(gamma/C)*X_new) without dividing by C
        return X_old - X_new + (2.0 / 3.0) * self.C * dp * flow_direction - self.gamma * dp * X_new

    def update_implicit(self, X_old, dp, flow_direction):
        numerator = X_old + (2.0 / 3.0) * self.C * dp * flow_direction
        return numerator / (1.0 + self.gamma * dp)

# --- Material Models ---

class ChabocheModelMultiAxial:
    """
    Rate-dependent Chaboche model for multi-axial stress states.

    Power-law viscoplastic flow (Norton overstress), Voce isotropic hardening
    of the yield stress and a sum of Armstrong-Frederick backstresses. The
    model holds only parameters; every method is a pure function of its
    arguments so one instance can serve any number of integration points.

    Parameters:
    -----------
    E, nu : float
        Young's modulus and Poisson's ratio.
    K_n, n_n : float
        Viscoplastic drag stress and exponent: dp/dt = <(seff - R)/K_n>^n_n.
    C, gamma : array-like
        Kinematic hardening moduli and dynamic recovery coefficients,
        one entry per backstress.
    Q, b : float
        Saturation value and rate of the isotropic hardening.
    degenerate_tolerance : float
        Relative threshold (scaled by E) below which the effective stress
        and the tangent denominator are treated as zero.
    """
    def __init__(self, E, nu, K_n, n_n, C, gamma, Q=0.0, b=0.0, degenerate_tolerance=1e-12):
        if not E > 0:
            raise InvalidParameters(f"Young's modulus must be positive, got {E}")
        if not -1.0 < nu < 0.5:
            raise InvalidParameters(f"Poisson's ratio must lie in (-1, 0.5), got {nu}")
        if not K_n > 0:
            raise InvalidParameters(f"Viscoplastic drag stress K_n must be positive, got {K_n}")
        if not n_n > 0:
            raise InvalidParameters(f"Viscoplastic exponent n_n must be positive, got {n_n}")
        C = np.atleast_1d(np.asarray(C, dtype=float))
        gamma = np.atleast_1d(np.asarray(gamma, dtype=float))
        if C.shape != gamma.shape or C.ndim != 1 or len(C) == 0:
            raise InvalidParameters(f"C and gamma must be matching 1D arrays, got {C.shape} and {gamma.shape}")

        self.E = float(E)
        self.nu = float(nu)
        self.K_n = float(K_n)
        self.n_n = float(n_n)
        self.C = C
        self.gamma = gamma
        self.n_components = len(C)
        self.degenerate_tolerance = degenerate_tolerance
        self.isotropic_model = VoceIsotropicHardeningModel(Q=Q, b=b)
        self.kinematic_models = [ArmstrongFrederickBackstress(C[i], gamma[i]) for i in range(self.n_components)]
        self.shear_modulus = self.E / (2.0 * (1.0 + self.nu))
        self.stiffness = elastic_stiffness(self.E, self.nu)
        self.stiffness.setflags(write=False)

    @classmethod
    def from_query(cls, field_query, time):
        """
        Builds the model from a host callback `field_query(name, time)`.
        Kinematic pairs are read as 'C_1', 'D_1', 'C_2', 'D_2'.
        """
        C = [field_query('C_1', time), field_query('C_2', time)]
        gamma = [field_query('D_1', time), field_query('D_2', time)]
        return cls(E=field_query('youngs modulus', time),
                   nu=field_query('poissons ratio', time),
                   K_n=field_query('K_n', time),
                   n_n=field_query('n_n', time),
                   C=C, gamma=gamma,
                   Q=field_query('Q', time),
                   b=field_query('b', time))

    @property
    def n_unknowns(self):
        return 7 + 6 * self.n_components

    def trial_stress(self, stress_old, d_strain):
        """
        Elastic predictor.

        Returns:
            tuple: (d_stress_trial, stress_trial)
        """
        d_stress_trial = self.stiffness @ d_strain
        return d_stress_trial, stress_old + d_stress_trial

    def yield_function(self, stress, total_backstress, R):
        """
        Returns:
            tuple: (f, s) with s the deviator of the shifted stress
        """
        shifted = stress - total_backstress
        return von_mises_stress(shifted) - R, deviatoric(shifted)

    def viscoplastic_increment(self, seff, R, dt):
        """
        Equivalent plastic strain increment dp = <(seff - R)/K_n>^n_n * dt.
        Negative overstress gives no flow.
        """
        overstress = (seff - R) / self.K_n
        if not overstress > 0.0:
            return 0.0
        return np.power(overstress, self.n_n) * dt

    def flow_direction(self, shifted_stress, seff=None):
        """
        Normal n = 1.5 * dev(shifted_stress) / seff, stress-like Voigt.
        """
        if seff is None:
            seff = von_mises_stress(shifted_stress)
        if not seff > self.degenerate_tolerance * self.E:
            raise DegenerateFlowDirection(f"Effective stress {seff:.3e} is too small to define a flow direction")
        return 1.5 * deviatoric(shifted_stress) / seff

    def residual(self, x, state, d_strain, dt):
        """
        Backward-Euler residual of the coupled system.

        Args:
            x: Unknowns [stress(6), R, X_1(6), ..., X_k(6)] at the end of the increment
            state: Converged state at the start of the increment
            d_strain: Total strain increment (engineering shears)
            dt: Time increment

        Returns:
            ndarray: [f_stress(6), f_R, f_X1(6), ..., f_Xk(6)]
        """
        stress, R, backstresses = unpack_unknowns(x, self.n_components)
        shifted = stress - np.sum(backstresses, axis=0)
        seff = von_mises_stress(shifted)
        dp = self.viscoplastic_increment(seff, R, dt)
        if dp > 0.0:
            n = self.flow_direction(shifted, seff)
        else:
            n = np.zeros(6)

        d_plastic_strain = dp * to_engineering_strain(n)
        f_stress = state.stress - stress + self.stiffness @ (d_strain - d_plastic_strain)
        f_R = self.isotropic_model.residual(state.yield_stress, R, dp)
        f_X = [kin.residual(X_old, X_new, dp, n)
               for kin, X_old, X_new in zip(self.kinematic_models, state.backstresses, backstresses)]
        return np.concatenate([f_stress, [f_R]] + f_X)

    def plastic_predictor(self, state, stress_trial, dt):
        """
        Solves the backward-Euler system reduced to one equation in dp.

        With the closed-form updates of R and X_i the shifted stress stays
        parallel to the deviator of zeta(dp) = stress_trial - sum(X_i_old/(1 + gamma_i*dp)),
        and its equivalent value drops by 3*mu*dp + sum(C_i*dp/(1 + gamma_i*dp)).
        dp is then the root of
            seff(dp) - R(dp) - K_n*(dp/dt)**(1/n_n) = 0,
        found with brentq on a geometrically expanded bracket.

        Returns:
            ndarray: packed unknowns [stress, R, X_1, ..., X_k] solving the residual system
        """
        kinematic = list(zip(self.kinematic_models, state.backstresses))

        def shifted_stress(dp):
            zeta = stress_trial - np.sum([X / (1.0 + kin.gamma * dp) for kin, X in kinematic], axis=0)
            hardening = 3.0 * self.shear_modulus * dp + sum(kin.C * dp / (1.0 + kin.gamma * dp)
                                                            for kin, _ in kinematic)
            return zeta, von_mises_stress(zeta) - hardening

        def overstress_residual(dp):
            _, seff = shifted_stress(dp)
            R = self.isotropic_model.update_implicit(state.yield_stress, dp)
            return seff - R - self.K_n * (dp / dt) ** (1.0 / self.n_n)

        f_initial = overstress_residual(0.0)
        if not f_initial > 0.0:
            raise NonConvergence(f"Trial overstress {f_initial:.3e} is not positive")

        # Quick geometric search for upper bound
        upper = f_initial / (3.0 * self.shear_modulus)
        for _ in range(60):
            if overstress_residual(upper) <= 0.0:
                break
            upper *= 2.0
        else:
            raise NonConvergence(f"Cannot bracket dp for trial overstress {f_initial:.3e}")

        try:
            dp = brentq(overstress_residual, 0.0, upper, xtol=1e-300, maxiter=200)
        except RuntimeError as exc:
            raise NonConvergence(f"Scalar dp iteration failed: {exc}") from exc

        zeta, _ = shifted_stress(dp)
        n = self.flow_direction(zeta)
        stress = stress_trial - 2.0 * self.shear_modulus * dp * n
        R = self.isotropic_model.update_implicit(state.yield_stress, dp)
        backstresses = [kin.update_implicit(X, dp, n) for kin, X in kinematic]
        return pack_unknowns(stress, R, backstresses)

    def consistent_tangent(self, flow_direction):
        """
        Rank-one correction of the elastic stiffness along the flow direction:
        D - (D m)(D m)^T / (m^T D m), m the flow direction with engineering shears.
        """
        m = to_engineering_strain(flow_direction)
        Dm = self.stiffness @ m
        denominator = m @ Dm
        if not denominator > self.degenerate_tolerance * self.E:
            raise SingularTangentCorrection(f"Tangent correction denominator {denominator:.3e} is not positive")
        return self.stiffness - np.outer(Dm, Dm) / denominator
