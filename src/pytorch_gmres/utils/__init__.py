"""
Utility functions for pytorch_gmres.
"""

from .availability import (
    check_cuda_available,
    default_device,
    get_environment_info,
    print_environment_report,
)

from .matrix_utils import (
    matrix_operator,
    functional_operator,
    create_tridiagonal_sparse_coo,
    create_poisson_2d_sparse_coo,
    compute_residual,
    compute_relative_residual,
)

__all__ = [
    'check_cuda_available',
    'default_device',
    'get_environment_info',
    'print_environment_report',
    'matrix_operator',
    'functional_operator',
    'create_tridiagonal_sparse_coo',
    'create_poisson_2d_sparse_coo',
    'compute_residual',
    'compute_relative_residual',
]
