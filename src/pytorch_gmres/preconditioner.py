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
Preconditioner plumbing.

The solver never builds a preconditioner itself. It receives one as an
in-place callable ``apply(out, x, *args)`` that writes an approximation of
``A^{-1} x`` into ``out``, plus the side on which it should be applied:

- ``LEFT``:  solve ``P A x = P b``; residuals are measured after ``P``.
- ``RIGHT``: solve ``A P y = b`` and recover ``x = P y``.
- ``NONE``:  no preconditioning.
"""

import torch
from enum import Enum
from typing import Any, Callable, Optional, Union

from .tree_util import tree_copy_
from .utils.matrix_utils import matrix_operator


class PreconditionerSide(Enum):
    """Where the preconditioner is applied."""
    NONE = "none"
    LEFT = "left"
    RIGHT = "right"


class Preconditioner:
    """
    Side-tagged wrapper around an in-place preconditioner application.

    Example:
        >>> inv_diag = 1.0 / torch.diagonal(A)
        >>> def jacobi(out, x):
        ...     torch.mul(inv_diag, x, out=out)
        >>> pc = Preconditioner(jacobi, side='right')
    """

    def __init__(
        self,
        apply: Callable[..., None],
        side: Union[str, PreconditionerSide] = PreconditionerSide.LEFT
    ):
        if not callable(apply):
            raise TypeError(f"preconditioner must be callable, got {type(apply).__name__}")
        self._apply = apply
        self.side = PreconditionerSide(side)

    def apply(self, out: Any, x: Any, *args) -> None:
        """Write the preconditioned ``x`` into ``out``."""
        self._apply(out, x, *args)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(side='{self.side.value}')"


class NoPreconditioner(Preconditioner):
    """Identity preconditioner that is never invoked by the solver."""

    def __init__(self):
        super().__init__(lambda out, x, *args: tree_copy_(out, x), PreconditionerSide.NONE)


def as_preconditioner(
    pc: Optional[Union[Preconditioner, Callable, torch.Tensor]],
    side: Optional[Union[str, PreconditionerSide]] = None
) -> Preconditioner:
    """
    Normalize the accepted preconditioner forms into a ``Preconditioner``.

    Args:
        pc: ``None``, a ``Preconditioner``, an in-place callable
            ``apply(out, x, *args)``, or a 2D tensor approximating ``A^{-1}``
        side: Side for callables and tensors (default ``'left'``); for a
            ``Preconditioner`` it overrides the wrapped side

    Returns:
        Preconditioner
    """
    if pc is None:
        if side is not None and PreconditionerSide(side) is not PreconditionerSide.NONE:
            raise ValueError(f"pc_side='{PreconditionerSide(side).value}' requires a preconditioner")
        return NoPreconditioner()

    if isinstance(pc, Preconditioner):
        if side is None or PreconditionerSide(side) is pc.side:
            return pc
        return Preconditioner(pc._apply, side)

    if side is None:
        side = PreconditionerSide.LEFT

    if isinstance(pc, torch.Tensor):
        return Preconditioner(matrix_operator(pc), side)

    if callable(pc):
        return Preconditioner(pc, side)

    raise TypeError(
        f'preconditioner must be a Preconditioner, a function or a tensor: {pc}')
