"""
Matrix utility functions for pytorch_gmres.

This module adapts explicit matrices and out-of-place functions to the
in-place operator convention ``linop(out, x, *args)`` used by the solver, and
builds the sparse test problems used throughout the test suite.
"""

import torch
from typing import Any, Callable, Optional, Union

from ..tree_util import (
    tree_copy_, tree_flatten, tree_leaves, tree_norm, tree_unflatten, tree_zeros_like
)


def _matvec(A: torch.Tensor, v: torch.Tensor) -> torch.Tensor:
    """Dense or sparse matrix-vector product."""
    if A.layout != torch.strided:
        return (A @ v.unsqueeze(-1)).squeeze(-1)
    return torch.mv(A, v)


def matrix_operator(A: torch.Tensor) -> Callable[..., None]:
    """
    Wrap a square matrix as an in-place linear operator.

    PyTree arguments are flattened in leaf order, multiplied, and scattered
    back, so the matrix acts on the concatenation of all leaves.

    Args:
        A: Dense, sparse COO or sparse CSR tensor of shape (n, n)

    Returns:
        Callable ``linop(out, x, *args)`` computing ``out = A @ x``; any
        trailing context arguments are ignored
    """
    if not isinstance(A, torch.Tensor):
        raise TypeError(f'linear operator must be either a function or tensor: {A}')
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError(
            f'linear operator must be a square matrix, but has shape: {tuple(A.shape)}')

    def matrix_mv(out, v_tree, *args):
        leaves = tree_leaves(v_tree)
        v_flat = torch.cat([leaf.reshape(-1) for leaf in leaves])
        if v_flat.numel() != A.shape[1]:
            raise ValueError(
                f'operator of size {A.shape[1]} applied to vector of size {v_flat.numel()}')
        result_flat = _matvec(A, v_flat.to(A.dtype))

        start_idx = 0
        for leaf in tree_leaves(out):
            end_idx = start_idx + leaf.numel()
            leaf.copy_(result_flat[start_idx:end_idx].reshape(leaf.shape))
            start_idx = end_idx

    return matrix_mv


def functional_operator(f: Callable[..., Any]) -> Callable[..., None]:
    """
    Wrap an out-of-place function ``f(x, *args) -> y`` as an in-place operator.

    This is the JAX-style convention, where the operator returns a new array
    with the same structure as its argument.
    """
    if not callable(f):
        raise TypeError(f'linear operator must be either a function or tensor: {f}')

    def apply(out, x, *args):
        tree_copy_(out, f(x, *args))

    return apply


def create_tridiagonal_sparse_coo(
    n: int,
    diag_val: float = 2.0,
    off_diag_val: float = -1.0,
    lower_val: Optional[float] = None,
    device: str = 'cpu',
    dtype: torch.dtype = torch.float64
) -> torch.Tensor:
    """
    Create a tridiagonal sparse COO tensor.

    Args:
        n: Matrix dimension
        diag_val: Main diagonal value
        off_diag_val: Upper diagonal value (and lower, unless ``lower_val`` is given)
        lower_val: Lower diagonal value; a value different from ``off_diag_val``
            gives a nonsymmetric (convection-diffusion like) matrix
        device: Target device
        dtype: Data type

    Returns:
        Sparse COO tensor representing a tridiagonal matrix
    """
    if lower_val is None:
        lower_val = off_diag_val

    indices = []
    values = []

    main_diag_i = torch.arange(n, device=device)
    indices.append(torch.stack([main_diag_i, main_diag_i]))
    values.append(torch.full((n,), diag_val, device=device, dtype=dtype))

    if n > 1:
        off_i = torch.arange(n - 1, device=device)
        indices.append(torch.stack([off_i, off_i + 1]))
        values.append(torch.full((n - 1,), off_diag_val, device=device, dtype=dtype))
        indices.append(torch.stack([off_i + 1, off_i]))
        values.append(torch.full((n - 1,), lower_val, device=device, dtype=dtype))

    sparse_matrix = torch.sparse_coo_tensor(
        torch.cat(indices, dim=1), torch.cat(values), (n, n),
        device=device, dtype=dtype
    )
    return sparse_matrix.coalesce()


def create_poisson_2d_sparse_coo(
    nx: int,
    ny: int,
    device: str = 'cpu',
    dtype: torch.dtype = torch.float64
) -> torch.Tensor:
    """
    Create a 2D Poisson matrix using 5-point stencil.

    Args:
        nx: Number of grid points in x direction
        ny: Number of grid points in y direction
        device: Target device
        dtype: Data type

    Returns:
        Sparse COO tensor representing the Poisson operator
    """
    n = nx * ny

    def idx(i, j):
        return i * ny + j

    row_indices = []
    col_indices = []
    values = []

    for i in range(nx):
        for j in range(ny):
            k = idx(i, j)
            row_indices.append(k)
            col_indices.append(k)
            values.append(4.0)

            for ni, nj in ((i - 1, j), (i + 1, j), (i, j - 1), (i, j + 1)):
                if 0 <= ni < nx and 0 <= nj < ny:
                    row_indices.append(k)
                    col_indices.append(idx(ni, nj))
                    values.append(-1.0)

    indices = torch.tensor([row_indices, col_indices], device=device, dtype=torch.long)
    values = torch.tensor(values, device=device, dtype=dtype)

    sparse_matrix = torch.sparse_coo_tensor(indices, values, (n, n), device=device, dtype=dtype)
    return sparse_matrix.coalesce()


def compute_residual(
    A: Union[torch.Tensor, Callable],
    x: Any,
    b: Any
) -> Any:
    """
    Compute the residual r = b - Ax.

    Args:
        A: Matrix (dense or sparse) or out-of-place callable
        x: Solution (tensor or PyTree)
        b: Right-hand side with the same structure as ``x``

    Returns:
        Residual with the structure of ``b``
    """
    if callable(A):
        Ax = A(x)
    else:
        Ax = tree_zeros_like(x)
        matrix_operator(A)(Ax, x)

    leaves_b, treedef = tree_flatten(b)
    return tree_unflatten(
        treedef, [bl - al for bl, al in zip(leaves_b, tree_leaves(Ax))])


def compute_relative_residual(
    A: Union[torch.Tensor, Callable],
    x: Any,
    b: Any
) -> float:
    """
    Compute the relative residual ||b - Ax|| / ||b||.

    Args:
        A: Matrix (dense or sparse) or out-of-place callable
        x: Solution
        b: Right-hand side

    Returns:
        Relative residual (scalar)
    """
    residual = compute_residual(A, x, b)
    return (tree_norm(residual) / tree_norm(b)).item()
