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
Givens rotations for the incremental QR factorization of the Hessenberg matrix.

A rotation acting on rows ``(i, i + 1)`` is

    [ c  s ] [x]
    [-s  c ] [y]

and is stored as its ``(c, s)`` pair together with the row index. The running
product of all rotations of a GMRES cycle is kept as an ordered list and
applied oldest-first.
"""

import math
import torch
from typing import Iterator, List, NamedTuple


class GivensRotation(NamedTuple):
    """Plane rotation on rows ``(i, i + 1)``."""
    i: int
    c: float
    s: float

    def apply(self, v: torch.Tensor) -> torch.Tensor:
        """Rotate rows ``i`` and ``i + 1`` of a vector or matrix in place."""
        x = v[self.i].clone()
        y = v[self.i + 1].clone()
        v[self.i] = self.c * x + self.s * y
        v[self.i + 1] = -self.s * x + self.c * y
        return v


def givens_rotation(f: float, g: float, i: int) -> GivensRotation:
    """
    Compute the rotation on rows ``(i, i + 1)`` that maps ``(f, g)`` to ``(r, 0)``.

    The ratio of the smaller to the larger entry is formed first so that
    squaring cannot overflow or underflow.
    """
    if g == 0.0:
        return GivensRotation(i, 1.0, 0.0)
    if f == 0.0:
        return GivensRotation(i, 0.0, math.copysign(1.0, g))
    if abs(g) > abs(f):
        t = f / g
        s = math.copysign(1.0 / math.sqrt(1.0 + t * t), g)
        return GivensRotation(i, s * t, s)
    t = g / f
    c = math.copysign(1.0 / math.sqrt(1.0 + t * t), f)
    return GivensRotation(i, c, c * t)


class RotationSequence:
    """
    Ordered product of Givens rotations.

    ``lmul(G)`` composes ``G`` on the left of the current product, so
    ``apply`` runs the rotations in the order they were created.
    """

    def __init__(self):
        self._rotations: List[GivensRotation] = []

    def lmul(self, rotation: GivensRotation) -> 'RotationSequence':
        self._rotations.append(rotation)
        return self

    def apply(self, v: torch.Tensor) -> torch.Tensor:
        for rotation in self._rotations:
            rotation.apply(v)
        return v

    def __len__(self) -> int:
        return len(self._rotations)

    def __iter__(self) -> Iterator[GivensRotation]:
        return iter(self._rotations)

    def __repr__(self) -> str:
        return f"RotationSequence({self._rotations})"
