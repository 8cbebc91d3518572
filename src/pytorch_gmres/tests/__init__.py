"""
Test suite for pytorch_gmres package.

This test suite validates:
1. Givens rotations and the PyTree vector operations
2. The GMRES initializer, Arnoldi step, restart cycle and driver
3. The LinearSolver / gmres interface, preconditioning and PyTree unknowns
"""

__all__ = [
    'test_givens',
    'test_tree_util',
    'test_gmres',
    'test_solver',
    'test_matrix_utils',
]
