#!/usr/bin/env python3
# Copyright 2025 Litianyu141
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Linear Solver Interface

This module provides the user-facing entry points for solving A x = b with
restarted GMRES:

- ``LinearSolver``: owns the operator, preconditioner and working storage and
  solves in place, repeatedly, for unknowns shaped like the one it was built
  with. This is the interface for outer drivers (Newton iterations, implicit
  time steppers) that solve many systems of the same size.
- ``gmres``: JAX-style one-shot function that returns a new solution.

Example:
    >>> from pytorch_gmres import LinearSolver, GeneralizedMinimalResidualMethod
    >>>
    >>> def linop(out, x, dt):
    ...     torch.mv(A, x, out=out)
    ...     out.mul_(dt).add_(x)
    >>>
    >>> solver = LinearSolver(linop, Q, GeneralizedMinimalResidualMethod(M=20, K=5),
    ...                       rtol=1e-8)
    >>> result = solver.solve(Q, Qrhs, 0.1)   # Q is updated in place
    >>> print(f"Converged: {result.converged}, Iterations: {result.iterations}")
"""

import logging
import math
import torch
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from .errors import NonConvergenceWarning, NonFiniteResidualError
from .krylov.gmres import GeneralizedMinimalResidualMethod, initialize, restarted_solve
from .preconditioner import Preconditioner, PreconditionerSide, as_preconditioner
from .tree_util import tree_check_compatible, tree_is_real_floating, tree_map, tree_zeros_like
from .utils.matrix_utils import functional_operator, matrix_operator

logger = logging.getLogger(__name__)


@dataclass
class Tolerances:
    """Convergence when ``||r|| < max(rtol * ||r_0||, atol)``."""
    rtol: float = 1e-5
    atol: float = 0.0

    def __post_init__(self):
        for name in ('rtol', 'atol'):
            value = getattr(self, name)
            if not (math.isfinite(value) and value >= 0):
                raise ValueError(f"{name} must be a finite non-negative number, got {value}")


@dataclass
class SolverResult:
    """Result from a linear solve."""
    x: Any                    # Solution (the caller's unknown, updated in place)
    converged: bool           # Whether the tolerance was met
    iterations: int           # Arnoldi steps over all cycles
    residual: float           # Final residual norm estimate
    threshold: float          # Residual norm the solve aimed for
    method: str = "gmres"
    residual_history: List[float] = field(default_factory=list)  # Estimate after each step


def _normalize_linop(A: Union[torch.Tensor, Callable], inplace: bool = True) -> Callable[..., None]:
    """Turn a matrix or function into an in-place operator ``linop(out, x, *args)``."""
    if isinstance(A, torch.Tensor):
        return matrix_operator(A)
    elif callable(A):
        return A if inplace else functional_operator(A)
    else:
        raise TypeError(
            f'linear operator must be either a function or tensor: {A}')


class LinearSolver:
    """
    Restarted GMRES solver with reusable working storage.

    The solver allocates its Krylov basis from the unknown it is built with
    and can then solve any number of systems whose unknowns share that
    structure and shape. One solver must not be used by two solves at the
    same time; use one instance per concurrent solve.

    Attributes:
        linop: In-place operator ``linop(out, x, *args)`` computing ``A x``
        krylov_alg: Restart configuration (``M`` steps per cycle, ``K`` cycles)
        pc: Side-tagged preconditioner
        tolerances: Relative and absolute tolerances
        cache: GMRES working storage
        verbose: Print a summary after every solve

    Example:
        >>> solver = LinearSolver(A, x0, GeneralizedMinimalResidualMethod(M=10, K=20))
        >>> result = solver.solve(x0, b)
        >>> result.converged, result.iterations
    """

    def __init__(
        self,
        linop: Union[torch.Tensor, Callable[..., None]],
        Q: Any,
        krylov_alg: Optional[GeneralizedMinimalResidualMethod] = None,
        *,
        pc: Optional[Union[Preconditioner, Callable, torch.Tensor]] = None,
        pc_side: Optional[Union[str, PreconditionerSide]] = None,
        rtol: float = 1e-5,
        atol: float = 0.0,
        verbose: bool = False
    ):
        """
        Initialize the solver.

        Args:
            linop: Matrix (dense or sparse) or in-place callable
                ``linop(out, x, *args)``
            Q: Unknown used as the template for the working storage
            krylov_alg: GMRES configuration, ``GeneralizedMinimalResidualMethod()``
                by default
            pc: Preconditioner: a ``Preconditioner``, an in-place callable
                ``apply(out, x, *args)`` or a matrix approximating ``A^{-1}``
            pc_side: 'left' (default when ``pc`` is given), 'right' or 'none'
            rtol: Relative tolerance with respect to the initial residual
            atol: Absolute tolerance
            verbose: Whether to print a summary after each solve
        """
        if krylov_alg is None:
            krylov_alg = GeneralizedMinimalResidualMethod()
        if not isinstance(krylov_alg, GeneralizedMinimalResidualMethod):
            raise TypeError(f"unsupported Krylov method: {type(krylov_alg).__name__}")
        if not tree_is_real_floating(Q):
            raise TypeError("unknowns must be real floating-point tensors")

        self.linop = _normalize_linop(linop)
        self.krylov_alg = krylov_alg
        self.pc = as_preconditioner(pc, pc_side)
        self.tolerances = Tolerances(rtol, atol)
        self.cache = krylov_alg.allocate_cache(Q)
        self.verbose = verbose

    @property
    def rtol(self) -> float:
        return self.tolerances.rtol

    @property
    def atol(self) -> float:
        return self.tolerances.atol

    def solve(self, Q: Any, Qrhs: Any, *args) -> SolverResult:
        """
        Solve ``A Q = Qrhs`` in place, starting from the current ``Q``.

        Args:
            Q: Initial guess, overwritten with the solution
            Qrhs: Right-hand side
            *args: Context forwarded unchanged to the operator and
                preconditioner

        Returns:
            SolverResult whose ``x`` is ``Q``. A result with
            ``converged=False`` means the ``K`` restart cycles ran out; a
            ``NonConvergenceWarning`` is issued and ``Q`` holds the best
            iterate found.

        Raises:
            NonFiniteResidualError: the residual became NaN or infinite
            ValueError: ``Q`` or ``Qrhs`` does not match the cache
        """
        tree_check_compatible(Q, Qrhs, names=('Q', 'Qrhs'))

        history: List[float] = []
        converged, threshold = initialize(self, Q, Qrhs, *args)
        if not math.isfinite(self.cache.residual_norm):
            raise NonFiniteResidualError(0)

        if converged:
            iterations, residual = 0, self.cache.residual_norm
        else:
            converged, iterations, residual = restarted_solve(
                self, threshold, Q, Qrhs, *args, history=history)

        logger.info("GMRES %s after %d iterations (residual %.3e, threshold %.3e)",
                    "converged" if converged else "did not converge",
                    iterations, residual, threshold)

        if not converged:
            warnings.warn(
                f"GMRES did not converge after {iterations} iterations "
                f"({self.krylov_alg.K} restarts of {self.krylov_alg.M}): "
                f"residual {residual:.3e} > threshold {threshold:.3e}",
                NonConvergenceWarning,
                stacklevel=2,
            )

        if self.verbose:
            status = "✅" if converged else "❌"
            print(f"  {status} GMRES: iterations={iterations}, residual={residual:.2e}, "
                  f"threshold={threshold:.2e}")

        return SolverResult(
            x=Q,
            converged=converged,
            iterations=iterations,
            residual=residual,
            threshold=threshold,
            residual_history=history,
        )

    def __repr__(self) -> str:
        return (
            f"LinearSolver(\n"
            f"  krylov_alg={self.krylov_alg},\n"
            f"  pc={self.pc},\n"
            f"  rtol={self.rtol}, atol={self.atol}\n"
            f")"
        )


def gmres(
    A: Union[torch.Tensor, Callable[..., Any]],
    b: Any,
    x0: Optional[Any] = None,
    *,
    rtol: float = 1e-5,
    atol: float = 0.0,
    restart: int = 20,
    maxiter: int = 10,
    M: Optional[Union[Preconditioner, Callable, torch.Tensor]] = None,
    pc_side: Optional[Union[str, PreconditionerSide]] = None,
    args: Sequence[Any] = (),
    inplace: bool = False,
    verbose: bool = False
) -> Tuple[Any, SolverResult]:
    """
    GMRES solves the linear system A x = b for x, given A and b.

    Parameters
    ----------
    A : tensor or function
        2D tensor (dense or sparse), or a function computing the linear map.
        By default functions are out-of-place, ``A(x, *args) -> y``, with
        ``y`` shaped like ``x``; pass ``inplace=True`` for functions of the
        form ``A(out, x, *args)``.
    b : tensor or tree of tensors
        Right hand side of the linear system. Can be a tensor of any shape or
        a Python container of tensors.
    x0 : tensor or tree of tensors, optional
        Starting guess with the same structure as b; zeros if unspecified.
        It is not modified.
    rtol, atol : float, optional
        Convergence when ``norm(residual) < max(rtol * norm(r0), atol)``,
        where r0 is the (preconditioned) initial residual.
    restart : integer, optional
        Size of the Krylov subspace built between restarts (``M``).
    maxiter : integer, optional
        Maximum number of restart cycles (``K``). At most
        ``restart * maxiter`` Arnoldi steps are taken.
    M : Preconditioner, function or tensor, optional
        Preconditioner approximating the inverse of A. Functions follow the
        same in-place/out-of-place convention as A.
    pc_side : {'left', 'right'}, optional
        Side on which M is applied; 'left' by default.
    args : sequence, optional
        Extra arguments forwarded to A and M.

    Returns
    -------
    x : tensor or tree of tensors
        The solution. Has the same structure as b.
    result : SolverResult
        Convergence information.
    """
    if x0 is None:
        x = tree_zeros_like(b)
    else:
        x = tree_map(torch.clone, x0)

    if M is not None and callable(M) and not isinstance(M, Preconditioner) and not inplace:
        M = functional_operator(M)

    solver = LinearSolver(
        _normalize_linop(A, inplace),
        x,
        GeneralizedMinimalResidualMethod(M=restart, K=maxiter),
        pc=M,
        pc_side=pc_side,
        rtol=rtol,
        atol=atol,
        verbose=verbose,
    )
    result = solver.solve(x, b, *args)
    return x, result
