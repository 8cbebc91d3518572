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
Restarted GMRES for matrix-free operators.

This uses the restarted Generalized Minimal Residual method of Saad and
Schultz (1986): each cycle builds an orthonormal Krylov basis with modified
Gram-Schmidt, keeps a QR factorization of the Hessenberg matrix up to date
with Givens rotations, and updates the solution from the reduced triangular
system when the cycle ends.

The functions here operate on a ``solver`` object exposing ``linop``,
``pc``, ``cache``, ``krylov_alg``, ``rtol`` and ``atol`` (see
``pytorch_gmres.solver.LinearSolver``). The unknown ``Q`` is updated in
place; ``Qrhs`` is only read. Trailing ``*args`` are forwarded unchanged to
every operator and preconditioner application.

References:
    Saad, Y. and Schultz, M. H. (1986). GMRES: A generalized minimal residual
    algorithm for solving nonsymmetric linear systems. SIAM Journal on
    Scientific and Statistical Computing, 7(3), 856-869.
"""

import logging
import math
import torch
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from ..errors import NonFiniteResidualError
from ..preconditioner import PreconditionerSide
from ..tree_util import (
    tree_axpy_, tree_check_compatible, tree_copy_, tree_leaves, tree_norm,
    tree_rsub_, tree_scale_, tree_vdot_real, tree_zeros_like,
)
from .givens import RotationSequence, givens_rotation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneralizedMinimalResidualMethod:
    """
    Restarted GMRES configuration.

    Attributes:
        M: Number of Arnoldi steps after which the method restarts (the
            Krylov basis holds ``M + 1`` vectors)
        K: Maximum number of restart cycles
        breakdown_tol: Relative size below which a freshly orthogonalized
            Arnoldi vector is treated as zero; defaults to the machine
            epsilon of the unknown's dtype

    ``K`` bounds cycles, not matrix-vector products: a solve applies the
    operator at most ``K * M`` times inside cycles, plus once per cycle to
    refresh the residual. Budget wall-clock cost with ``K * M``, or read
    ``iterations`` from the result afterwards.

    The cache needs roughly ``(M + 2) * N`` entries for ``N`` unknowns.
    """
    M: int = 30
    K: int = 10
    breakdown_tol: Optional[float] = None

    def __post_init__(self):
        if not isinstance(self.M, int) or self.M < 1:
            raise ValueError(f"M must be a positive integer, got {self.M}")
        if not isinstance(self.K, int) or self.K < 1:
            raise ValueError(f"K must be a positive integer, got {self.K}")
        if self.breakdown_tol is not None and not self.breakdown_tol >= 0:
            raise ValueError(f"breakdown_tol must be non-negative, got {self.breakdown_tol}")

    def allocate_cache(self, Q: Any) -> 'GMRESCache':
        return GMRESCache.allocate(self, Q)


@dataclass
class GMRESCache:
    """
    Working storage owned by one solve at a time.

    Attributes:
        krylov_basis: ``M + 1`` vectors shaped like the unknown
        H: ``(M + 1, M)`` Hessenberg matrix, rotated in place to upper
            triangular form as the cycle advances
        g0: Right-hand side of the least-squares problem, rotated alongside H
        Wvec: Scratch vector receiving preconditioner output
        residual_norm: Norm of the residual measured by the last
            initialization
    """
    krylov_basis: List[Any]
    H: torch.Tensor
    g0: torch.Tensor
    Wvec: Any
    residual_norm: float = math.inf

    @classmethod
    def allocate(cls, krylov_alg: GeneralizedMinimalResidualMethod, Q: Any) -> 'GMRESCache':
        M = krylov_alg.M
        return cls(
            krylov_basis=[tree_zeros_like(Q) for _ in range(M + 1)],
            H=torch.zeros(M + 1, M, dtype=torch.float64),
            g0=torch.zeros(M + 1, dtype=torch.float64),
            Wvec=tree_zeros_like(Q),
        )

    @property
    def M(self) -> int:
        return self.H.shape[1]


def _breakdown_tol(solver, v: Any) -> float:
    tol = solver.krylov_alg.breakdown_tol
    if tol is None:
        tol = torch.finfo(tree_leaves(v)[0].dtype).eps
    return tol


def initialize(
    solver,
    Q: Any,
    Qrhs: Any,
    *args,
    threshold: Optional[float] = None
) -> Tuple[bool, float]:
    """
    Compute the (left-preconditioned) residual into the first basis vector.

    Without ``threshold`` this starts a solve: when ``rtol * ||r|| < atol``
    the solve is trivially converged, the cache is left unnormalized and
    ``(True, rtol * ||r||)`` is returned. Otherwise ``g0`` is reset to
    ``||r|| e_1``, the first basis vector is normalized and
    ``(False, max(rtol * ||r||, atol))`` is returned.

    With ``threshold`` (a restart) the refreshed residual is compared
    against that threshold instead, and it is returned unchanged.
    """
    cache = solver.cache
    pc = solver.pc
    g0 = cache.g0
    krylov_basis = cache.krylov_basis

    tree_check_compatible(Q, krylov_basis[0], names=('Q', 'the solver cache'))

    # store the initial residual in krylov_basis[0]
    solver.linop(krylov_basis[0], Q, *args)
    tree_rsub_(krylov_basis[0], Qrhs)

    if pc.side is PreconditionerSide.LEFT:
        pc.apply(cache.Wvec, krylov_basis[0], *args)
        tree_copy_(krylov_basis[0], cache.Wvec)

    residual_norm = tree_norm(krylov_basis[0]).item()
    cache.residual_norm = residual_norm

    if threshold is None:
        threshold = solver.rtol * residual_norm
        converged = threshold < solver.atol
        threshold = threshold if converged else max(threshold, solver.atol)
    else:
        converged = residual_norm < threshold

    # an exactly zero residual cannot be normalized, whatever the tolerances
    if converged or residual_norm == 0.0:
        return True, threshold

    g0.zero_()
    g0[0] = residual_norm
    tree_scale_(krylov_basis[0], 1.0 / residual_norm)

    return False, threshold


def arnoldi_step(solver, j: int, *args) -> bool:
    """
    Extend the Krylov basis by one vector and fill column ``j`` of H.

    Uses modified Gram-Schmidt: the projections are removed one basis vector
    at a time, in order.

    Returns:
        True on breakdown, i.e. the new direction vanished after
        orthogonalization. The Krylov subspace is then (numerically)
        invariant under the operator and the cycle cannot be extended.
    """
    cache = solver.cache
    pc = solver.pc
    H = cache.H
    krylov_basis = cache.krylov_basis
    w = krylov_basis[j + 1]

    if pc.side is PreconditionerSide.RIGHT:
        pc.apply(cache.Wvec, krylov_basis[j], *args)
        solver.linop(w, cache.Wvec, *args)
    else:
        solver.linop(w, krylov_basis[j], *args)

    if pc.side is PreconditionerSide.LEFT:
        pc.apply(cache.Wvec, w, *args)
        tree_copy_(w, cache.Wvec)

    w_norm_0 = tree_norm(w).item()

    for i in range(j + 1):
        h = tree_vdot_real(w, krylov_basis[i]).item()
        H[i, j] = h
        tree_axpy_(w, -h, krylov_basis[i])

    h_norm = tree_norm(w).item()
    if h_norm <= _breakdown_tol(solver, w) * w_norm_0:
        logger.debug("GMRES breakdown at step %d (|w| = %.3e, |Av| = %.3e)", j + 1, h_norm, w_norm_0)
        H[j + 1, j] = 0.0
        tree_scale_(w, 0.0)
        return True

    H[j + 1, j] = h_norm
    tree_scale_(w, 1.0 / h_norm)
    return False


def gmres_cycle(
    solver,
    threshold: float,
    Q: Any,
    Qrhs: Any,
    *args,
    history: Optional[List[float]] = None
) -> Tuple[bool, int, float]:
    """
    Run one restart cycle of at most ``M`` Arnoldi steps.

    Expects ``initialize`` to have prepared the cache. On exit ``Q`` holds
    the updated iterate; when the cycle did not converge the cache has been
    re-initialized from it for the next cycle.

    Args:
        solver: Object holding ``linop``, ``pc``, ``cache``, ``krylov_alg``
        threshold: Residual norm below which the cycle stops
        Q: Unknown, updated in place
        Qrhs: Right-hand side
        *args: Context forwarded to the operator and preconditioner
        history: Optional list receiving the residual estimate of every step

    Returns:
        ``(converged, steps, residual_estimate)``; after a breakdown the
        estimate is replaced by the recomputed residual norm
    """
    cache = solver.cache
    pc = solver.pc
    H = cache.H
    g0 = cache.g0
    krylov_basis = cache.krylov_basis

    # stale entries from the previous cycle would leak into the triangular solve
    H.zero_()

    converged = False
    breakdown = False
    residual_norm = math.inf
    omega = RotationSequence()
    steps = 0
    for j in range(solver.krylov_alg.M):
        breakdown = arnoldi_step(solver, j, *args)
        steps = j + 1

        # bring the new column up to date with the earlier rotations
        omega.apply(H[:, j])

        G = givens_rotation(H[j, j].item(), H[j + 1, j].item(), j)
        G.apply(H)
        G.apply(g0)
        omega.lmul(G)

        residual_norm = abs(g0[j + 1].item())
        if history is not None:
            history.append(residual_norm)

        if not math.isfinite(residual_norm):
            return False, steps, residual_norm

        # after a breakdown the estimate is exactly zero whatever the true
        # residual is, so only the refreshed residual below may decide
        if breakdown:
            break

        if residual_norm < threshold:
            converged = True
            break

    y = torch.linalg.solve_triangular(
        H[:steps, :steps], g0[:steps].unsqueeze(-1), upper=True
    ).squeeze(-1)

    if not torch.isfinite(y).all():
        # singular reduced system; leave Q alone and let the driver abort
        return False, steps, math.nan

    if pc.side is PreconditionerSide.RIGHT:
        # the basis spans the preconditioned space: x += P (V y)
        correction = krylov_basis[steps]
        tree_scale_(cache.Wvec, 0.0)
        for i in range(steps):
            tree_axpy_(cache.Wvec, y[i].item(), krylov_basis[i])
        pc.apply(correction, cache.Wvec, *args)
        tree_axpy_(Q, 1.0, correction)
    else:
        for i in range(steps):
            tree_axpy_(Q, y[i].item(), krylov_basis[i])

    if not converged:
        converged, _ = initialize(solver, Q, Qrhs, *args, threshold=threshold)
        if converged or breakdown or not math.isfinite(cache.residual_norm):
            residual_norm = cache.residual_norm

    return converged, steps, residual_norm


def restarted_solve(
    solver,
    threshold: float,
    Q: Any,
    Qrhs: Any,
    *args,
    history: Optional[List[float]] = None
) -> Tuple[bool, int, float]:
    """
    Repeat GMRES cycles until convergence or ``K`` cycles have run.

    Returns:
        ``(converged, total_iterations, residual_estimate)``. Running out of
        cycles is not an error; the caller decides what to do with an
        unconverged result.

    Raises:
        NonFiniteResidualError: a cycle produced a NaN or infinite residual
            estimate
    """
    converged = False
    cycle = 0
    total_iters = 0
    residual_norm = math.inf

    while not converged and cycle < solver.krylov_alg.K:
        converged, cycle_iters, residual_norm = gmres_cycle(
            solver, threshold, Q, Qrhs, *args, history=history)

        cycle += 1
        total_iters += cycle_iters
        logger.debug("GMRES cycle %d: %d steps, residual estimate %.6e (threshold %.6e)",
                     cycle, cycle_iters, residual_norm, threshold)

        if not math.isfinite(residual_norm):
            raise NonFiniteResidualError(total_iters)

    return converged, total_iters, residual_norm
