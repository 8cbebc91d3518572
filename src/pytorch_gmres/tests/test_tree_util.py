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
Tests for PyTree handling and the in-place vector operations.
"""

import pytest
import torch
from typing import NamedTuple

from pytorch_gmres.tree_util import (
    tree_axpy_, tree_check_compatible, tree_copy_, tree_flatten, tree_is_real_floating,
    tree_leaves, tree_map, tree_norm, tree_rsub_, tree_scale_, tree_structure,
    tree_unflatten, tree_vdot_real, tree_zeros_like,
)


class State(NamedTuple):
    rho: torch.Tensor
    momentum: torch.Tensor


def make_tree(scale=1.0):
    return {
        'b': State(torch.full((3,), 2.0 * scale, dtype=torch.float64),
                   torch.full((2, 2), -1.0 * scale, dtype=torch.float64)),
        'a': [torch.arange(4, dtype=torch.float64) * scale],
    }


def test_flatten_unflatten_preserves_structure():
    tree = make_tree()
    leaves, treedef = tree_flatten(tree)

    # dict keys are visited in sorted order
    assert torch.equal(leaves[0], tree['a'][0])
    assert len(leaves) == 3

    rebuilt = tree_unflatten(treedef, leaves)
    assert isinstance(rebuilt['b'], State)
    assert torch.equal(rebuilt['b'].momentum, tree['b'].momentum)
    assert tree_structure(rebuilt) == treedef


def test_unflatten_rejects_wrong_leaf_count():
    leaves, treedef = tree_flatten(make_tree())
    with pytest.raises(ValueError):
        tree_unflatten(treedef, leaves[:-1])
    with pytest.raises(ValueError):
        tree_unflatten(treedef, leaves + [torch.zeros(1)])


def test_tree_map_over_two_trees():
    total = tree_map(torch.add, make_tree(), make_tree(2.0))
    assert torch.equal(total['a'][0], torch.arange(4, dtype=torch.float64) * 3.0)


def test_in_place_operations():
    x = make_tree()
    y = tree_zeros_like(x)
    leaf_ids = [id(leaf) for leaf in tree_leaves(y)]

    tree_copy_(y, x)
    tree_axpy_(y, 2.0, x)      # y = 3x
    tree_scale_(y, 0.5)        # y = 1.5x
    tree_rsub_(y, x)           # y = x - 1.5x = -0.5x

    assert [id(leaf) for leaf in tree_leaves(y)] == leaf_ids
    for yl, xl in zip(tree_leaves(y), tree_leaves(x)):
        assert torch.allclose(yl, -0.5 * xl)


def test_vdot_and_norm_accumulate_in_float64():
    x = torch.ones(10, dtype=torch.float32)
    tree = (x, 2 * x)

    dot = tree_vdot_real(tree, tree)
    assert dot.dtype == torch.float64
    assert dot.item() == pytest.approx(50.0)
    assert tree_norm(tree).item() == pytest.approx(50.0 ** 0.5)


def test_check_compatible():
    tree_check_compatible(make_tree(), make_tree(3.0))

    other = make_tree()
    other['a'] = [torch.zeros(5, dtype=torch.float64)]
    with pytest.raises(ValueError, match="matching shapes"):
        tree_check_compatible(make_tree(), other)

    with pytest.raises(ValueError, match="tree structure"):
        tree_check_compatible(make_tree(), torch.zeros(11))


def test_real_floating_detection():
    assert tree_is_real_floating(make_tree())
    assert not tree_is_real_floating(torch.zeros(3, dtype=torch.complex128))
    assert not tree_is_real_floating([torch.zeros(3, dtype=torch.int64)])


@pytest.mark.skipif(not torch.cuda.is_available(), reason="needs a CUDA device")
def test_vdot_across_devices():
    tree = {'cpu': torch.ones(3, dtype=torch.float64),
            'gpu': torch.full((2,), 2.0, dtype=torch.float64, device='cuda')}

    dot = tree_vdot_real(tree, tree)

    # 'cpu' sorts first, so the result stays on the host
    assert dot.device.type == 'cpu'
    assert dot.item() == pytest.approx(11.0)
    assert tree_norm(tree).item() == pytest.approx(11.0 ** 0.5)
