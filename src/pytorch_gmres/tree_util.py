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
PyTree utilities and the in-place vector operations used by the Krylov solvers.

An unknown can be a single tensor or any nesting of tuples, lists, dicts and
NamedTuples whose leaves are tensors. The solver only ever touches unknowns
through the functions in this module, so anything that flattens into real
floating-point tensors (on any device) can be solved for.
"""

import collections
import torch
from typing import Any, Callable, List, Tuple, Union


class PyTreeDef:
    """Represents the structure of a PyTree."""

    def __init__(self, structure: Any, num_leaves: int = 0):
        self.structure = structure
        self.num_leaves = num_leaves

    def __repr__(self):
        return f"PyTreeDef({self.structure})"

    def __eq__(self, other):
        return isinstance(other, PyTreeDef) and self.structure == other.structure

    def unflatten(self, leaves: List[Any]) -> Any:
        """Reconstruct a PyTree from leaves using this structure."""
        return tree_unflatten(self, leaves)


def tree_flatten(tree: Any) -> Tuple[List[Any], PyTreeDef]:
    """
    Flattens a PyTree into a list of leaves and a structure definition.

    Args:
        tree: The PyTree to flatten

    Returns:
        A tuple of (leaves, treedef)
    """
    leaves = []

    def _flatten_helper(subtree):
        if isinstance(subtree, dict):
            result = collections.OrderedDict()
            for k in sorted(subtree.keys()):
                result[k] = _flatten_helper(subtree[k])
            return result
        elif isinstance(subtree, tuple):
            if hasattr(subtree, '_fields'):  # NamedTuple
                return (type(subtree), tuple(_flatten_helper(v) for v in subtree))
            return tuple(_flatten_helper(v) for v in subtree)
        elif isinstance(subtree, list):
            return [_flatten_helper(v) for v in subtree]
        else:
            leaves.append(subtree)
            return None

    structure = _flatten_helper(tree)
    return leaves, PyTreeDef(structure, len(leaves))


def tree_unflatten(treedef: PyTreeDef, leaves: List[Any]) -> Any:
    """
    Reconstructs a PyTree from leaves and structure definition.

    Args:
        treedef: The structure definition
        leaves: List of leaf values

    Returns:
        The reconstructed PyTree
    """
    leaf_iter = iter(leaves)

    def _next_leaf():
        try:
            return next(leaf_iter)
        except StopIteration:
            raise ValueError("Not enough leaves for tree structure")

    def _unflatten_helper(structure):
        if structure is None:
            return _next_leaf()
        elif isinstance(structure, collections.OrderedDict):
            return {k: _unflatten_helper(v) for k, v in structure.items()}
        elif isinstance(structure, tuple):
            if (len(structure) == 2 and isinstance(structure[0], type)
                    and hasattr(structure[0], '_fields')):
                cls, field_structures = structure
                return cls(*(_unflatten_helper(fs) for fs in field_structures))
            return tuple(_unflatten_helper(v) for v in structure)
        elif isinstance(structure, list):
            return [_unflatten_helper(v) for v in structure]
        else:
            raise ValueError(f"Unexpected structure type: {type(structure)}")

    result = _unflatten_helper(treedef.structure)

    try:
        next(leaf_iter)
    except StopIteration:
        return result
    raise ValueError("Too many leaves for tree structure")


def tree_leaves(tree: Any) -> List[Any]:
    """Extract all leaves from a PyTree."""
    leaves, _ = tree_flatten(tree)
    return leaves


def tree_structure(tree: Any) -> PyTreeDef:
    """Get the structure definition of a PyTree."""
    _, treedef = tree_flatten(tree)
    return treedef


def tree_map(func: Callable, tree: Any, *rest: Any) -> Any:
    """
    Map a function over the leaves of one or more PyTrees.

    Args:
        func: Function to apply to leaves
        tree: Primary PyTree
        *rest: Additional PyTrees with compatible structure

    Returns:
        New PyTree with same structure as the primary tree
    """
    leaves, treedef = tree_flatten(tree)
    other_leaves_lists = []
    for other_tree in rest:
        other_leaves = tree_leaves(other_tree)
        if len(other_leaves) != len(leaves):
            raise ValueError("tree_map requires trees with same number of leaves")
        other_leaves_lists.append(other_leaves)

    new_leaves = [
        func(leaf, *[other[i] for other in other_leaves_lists])
        for i, leaf in enumerate(leaves)
    ]
    return tree_unflatten(treedef, new_leaves)


def tree_zeros_like(tree: Any) -> Any:
    """Create a PyTree of zeros with the same structure, dtypes and devices."""
    return tree_map(torch.zeros_like, tree)


def tree_check_compatible(tree1: Any, tree2: Any, names: Tuple[str, str] = ('x', 'y')) -> None:
    """Raise ``ValueError`` unless both trees share structure and leaf shapes."""
    leaves1, treedef1 = tree_flatten(tree1)
    leaves2, treedef2 = tree_flatten(tree2)
    if treedef1 != treedef2:
        raise ValueError(f'{names[0]} and {names[1]} must have matching tree structure')
    for leaf1, leaf2 in zip(leaves1, leaves2):
        if leaf1.shape != leaf2.shape:
            raise ValueError(f'arrays in {names[0]} and {names[1]} must have matching shapes: '
                             f'{tuple(leaf1.shape)} vs {tuple(leaf2.shape)}')


def tree_is_real_floating(tree: Any) -> bool:
    """True when every leaf is a real floating-point tensor."""
    return all(
        isinstance(leaf, torch.Tensor) and leaf.is_floating_point()
        for leaf in tree_leaves(tree)
    )


# In-place vector operations. These never allocate a new tree: the solver's
# basis vectors and the caller's unknown are updated where they live.

def tree_copy_(dst: Any, src: Any) -> Any:
    """dst <- src"""
    for d, s in zip(tree_leaves(dst), tree_leaves(src)):
        d.copy_(s)
    return dst


def tree_axpy_(y: Any, alpha: Union[float, int], x: Any) -> Any:
    """y <- y + alpha * x"""
    for yl, xl in zip(tree_leaves(y), tree_leaves(x)):
        yl.add_(xl, alpha=alpha)
    return y


def tree_scale_(x: Any, alpha: Union[float, int]) -> Any:
    """x <- alpha * x"""
    for leaf in tree_leaves(x):
        leaf.mul_(alpha)
    return x


def tree_rsub_(x: Any, b: Any) -> Any:
    """x <- b - x"""
    for xl, bl in zip(tree_leaves(x), tree_leaves(b)):
        xl.neg_().add_(bl)
    return x


def tree_vdot_real(tree1: Any, tree2: Any) -> torch.Tensor:
    """
    Euclidean inner product of two PyTrees, accumulated in float64.

    Leaves may live on different devices; the partial products are gathered
    on the device of the first leaf, where the result lives. Callers that
    need a Python scalar take ``.item()``.
    """
    leaves1 = tree_leaves(tree1)
    leaves2 = tree_leaves(tree2)

    if len(leaves1) != len(leaves2):
        raise ValueError("Trees must have same structure for vdot")

    if not leaves1:
        return torch.tensor(0.0, dtype=torch.float64)

    total = torch.zeros((), dtype=torch.float64, device=leaves1[0].device)
    for x, y in zip(leaves1, leaves2):
        partial = torch.dot(x.reshape(-1).to(torch.float64), y.reshape(-1).to(torch.float64))
        total += partial.to(total.device)
    return total


def tree_norm(tree: Any) -> torch.Tensor:
    """Compute L2 norm of a PyTree."""
    norm_sq = tree_vdot_real(tree, tree)
    return torch.sqrt(torch.clamp(norm_sq, min=0.0))
