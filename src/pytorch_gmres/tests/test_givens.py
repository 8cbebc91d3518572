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
Tests for the Givens rotations used by the incremental QR factorization.
"""

import math
import pytest
import torch

from pytorch_gmres.krylov.givens import GivensRotation, RotationSequence, givens_rotation


def rotation_matrix(rotation: GivensRotation, n: int) -> torch.Tensor:
    """Dense n x n matrix of a rotation."""
    R = torch.eye(n, dtype=torch.float64)
    i = rotation.i
    R[i, i] = rotation.c
    R[i, i + 1] = rotation.s
    R[i + 1, i] = -rotation.s
    R[i + 1, i + 1] = rotation.c
    return R


@pytest.mark.parametrize("f, g", [
    (3.0, 4.0),
    (-1.0, 2.5),
    (1e-3, -7.0),
    (5.0, 0.0),
    (0.0, -2.0),
    (1e200, 1e200),
])
def test_rotation_zeroes_second_entry(f, g):
    G = givens_rotation(f, g, 0)
    v = torch.tensor([f, g], dtype=torch.float64)
    G.apply(v)

    scale = max(abs(f), abs(g))
    assert abs(v[1].item()) <= 1e-14 * scale
    assert v[0].item() == pytest.approx(math.hypot(f, g), rel=1e-14)
    assert G.c ** 2 + G.s ** 2 == pytest.approx(1.0, abs=1e-15)


def test_zero_second_entry_gives_identity():
    G = givens_rotation(-2.0, 0.0, 3)
    assert G == GivensRotation(3, 1.0, 0.0)


def test_rotation_acts_on_matrix_rows():
    H = torch.arange(12, dtype=torch.float64).reshape(4, 3)
    G = givens_rotation(0.6, 0.8, 1)
    expected = rotation_matrix(G, 4) @ H

    G.apply(H)

    assert torch.allclose(H, expected, atol=1e-14)


def test_rotation_acts_on_column_view():
    H = torch.arange(12, dtype=torch.float64).reshape(4, 3)
    G = givens_rotation(1.0, 2.0, 0)
    expected = rotation_matrix(G, 4) @ H[:, 2]

    G.apply(H[:, 2])

    assert torch.allclose(H[:, 2], expected, atol=1e-14)
    assert torch.equal(H[:, :2], torch.arange(12, dtype=torch.float64).reshape(4, 3)[:, :2])


def test_sequence_applies_oldest_first():
    G0 = givens_rotation(1.0, 1.0, 0)
    G1 = givens_rotation(2.0, -1.0, 1)
    omega = RotationSequence().lmul(G0).lmul(G1)

    v = torch.tensor([1.0, -2.0, 0.5], dtype=torch.float64)
    expected = rotation_matrix(G1, 3) @ rotation_matrix(G0, 3) @ v

    omega.apply(v)

    assert len(omega) == 2
    assert list(omega) == [G0, G1]
    assert torch.allclose(v, expected, atol=1e-14)
