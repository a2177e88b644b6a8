"""
Viscoplastic Chaboche material-point integrator.

Provides the multi-axial Chaboche model (power-law viscoplastic flow, Voce
isotropic hardening, Armstrong-Frederick backstresses), the implicit
single-increment integrator with its consistent tangent, a strain-history
driver and a host-facing integration-point adapter.
"""

from .material_models import (
    IntegrationError,
    InvalidParameters,
    NonConvergence,
    DegenerateFlowDirection,
    SingularTangentCorrection,
    deviatoric,
    von_mises_stress,
    elastic_stiffness,
    strain_from_displacement_gradient,
    load_and_create_model,
    VoceIsotropicHardeningModel,
    ArmstrongFrederickBackstress,
    ChabocheModelMultiAxial,
)
from .solver import (
    MaterialState,
    Increments,
    IncrementResult,
    RootSolution,
    ScipyRootSolver,
    initial_state,
    commit_increments,
    integrate_increment,
    generate_cyclic_path,
    ChabocheMaterialSolver,
    plot_hysteresis,
)
from .integration_point import HISTORY_KEYS, ChabocheIntegrationPoint

__all__ = [
    "IntegrationError",
    "InvalidParameters",
    "NonConvergence",
    "DegenerateFlowDirection",
    "SingularTangentCorrection",
    "deviatoric",
    "von_mises_stress",
    "elastic_stiffness",
    "strain_from_displacement_gradient",
    "load_and_create_model",
    "VoceIsotropicHardeningModel",
    "ArmstrongFrederickBackstress",
    "ChabocheModelMultiAxial",
    "MaterialState",
    "Increments",
    "IncrementResult",
    "RootSolution",
    "ScipyRootSolver",
    "initial_state",
    "commit_increments",
    "integrate_increment",
    "generate_cyclic_path",
    "ChabocheMaterialSolver",
    "plot_hysteresis",
    "HISTORY_KEYS",
    "ChabocheIntegrationPoint",
]
