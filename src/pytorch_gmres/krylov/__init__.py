"""
Krylov subspace building blocks: restarted GMRES and Givens rotations.

These functions work on a solver object and mutate its cache and the unknown
in place. Most users want ``pytorch_gmres.LinearSolver`` or
``pytorch_gmres.gmres`` instead.
"""

from .givens import GivensRotation, RotationSequence, givens_rotation
from .gmres import (
    GeneralizedMinimalResidualMethod,
    GMRESCache,
    initialize,
    arnoldi_step,
    gmres_cycle,
    restarted_solve,
)

__all__ = [
    'GivensRotation',
    'RotationSequence',
    'givens_rotation',
    'GeneralizedMinimalResidualMethod',
    'GMRESCache',
    'initialize',
    'arnoldi_step',
    'gmres_cycle',
    'restarted_solve',
]
