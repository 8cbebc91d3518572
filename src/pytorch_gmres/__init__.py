"""
PyTorch GMRES - Restarted GMRES for Matrix-Free Linear Systems

This package solves nonsymmetric linear systems A x = b where A is only
available as an operator application. Unknowns can be tensors of any shape
on any device, or PyTrees (tuples, lists, dicts) of tensors.

- **LinearSolver**: reusable solver owning the Krylov working storage;
  solves in place and forwards extra context arguments to the operator
- **gmres**: JAX-style one-shot convenience function
- **Preconditioner**: side-tagged (left/right) preconditioner wrapper

Quick Start:
    >>> from pytorch_gmres import gmres
    >>>
    >>> x, result = gmres(A, b, rtol=1e-8, restart=30)
    >>> print(f"Converged: {result.converged}, Iterations: {result.iterations}")

Matrix-free Usage:
    >>> from pytorch_gmres import LinearSolver, GeneralizedMinimalResidualMethod
    >>>
    >>> def linop(out, x):
    ...     out.copy_(2.0 * x)
    ...     out[:-1] -= x[1:]
    ...     out[1:] -= x[:-1]
    >>>
    >>> solver = LinearSolver(linop, x, GeneralizedMinimalResidualMethod(M=20, K=10))
    >>> result = solver.solve(x, b)
"""

import logging

__version__ = '1.0.0'
__author__ = 'Litianyu141'
__license__ = 'Apache-2.0'

# Import main solver interface
from .solver import (
    LinearSolver,
    SolverResult,
    Tolerances,
    gmres,
)

from .krylov import (
    GeneralizedMinimalResidualMethod,
    GMRESCache,
)

from .preconditioner import (
    Preconditioner,
    PreconditionerSide,
    NoPreconditioner,
    as_preconditioner,
)

from .errors import (
    NonFiniteResidualError,
    NonConvergenceWarning,
)

# Import matrix utilities
from .utils.matrix_utils import (
    matrix_operator,
    functional_operator,
    create_tridiagonal_sparse_coo,
    create_poisson_2d_sparse_coo,
    compute_residual,
    compute_relative_residual,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Version info
    '__version__',
    '__author__',
    '__license__',

    # Main solver interface
    'LinearSolver',
    'SolverResult',
    'Tolerances',
    'gmres',
    'GeneralizedMinimalResidualMethod',
    'GMRESCache',

    # Preconditioning
    'Preconditioner',
    'PreconditionerSide',
    'NoPreconditioner',
    'as_preconditioner',

    # Errors
    'NonFiniteResidualError',
    'NonConvergenceWarning',

    # Matrix utilities
    'matrix_operator',
    'functional_operator',
    'create_tridiagonal_sparse_coo',
    'create_poisson_2d_sparse_coo',
    'compute_residual',
    'compute_relative_residual',
]
