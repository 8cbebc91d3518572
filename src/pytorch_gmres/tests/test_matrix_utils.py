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
Tests for the operator adapters, test-problem builders and environment helpers.
"""

import pytest
import torch

from pytorch_gmres.utils import (
    check_cuda_available,
    compute_relative_residual,
    compute_residual,
    create_poisson_2d_sparse_coo,
    create_tridiagonal_sparse_coo,
    default_device,
    functional_operator,
    get_environment_info,
    matrix_operator,
    print_environment_report,
)


class TestProblemBuilders:

    def test_tridiagonal(self):
        A = create_tridiagonal_sparse_coo(4, 2.5, -1.0, lower_val=-0.5).to_dense()
        expected = torch.tensor([
            [2.5, -1.0, 0.0, 0.0],
            [-0.5, 2.5, -1.0, 0.0],
            [0.0, -0.5, 2.5, -1.0],
            [0.0, 0.0, -0.5, 2.5],
        ], dtype=torch.float64)
        assert torch.equal(A, expected)

    def test_tridiagonal_single_row(self):
        A = create_tridiagonal_sparse_coo(1, 3.0)
        assert torch.equal(A.to_dense(), torch.tensor([[3.0]], dtype=torch.float64))

    def test_poisson(self):
        A = create_poisson_2d_sparse_coo(3, 4).to_dense()
        assert A.shape == (12, 12)
        assert torch.equal(A, A.T)
        assert torch.all(torch.diagonal(A) == 4.0)
        # interior node (1, 1) has four neighbours
        assert A[5].sum().item() == 0.0
        # corner node (0, 0) has two
        assert A[0].sum().item() == 2.0


class TestOperators:

    def test_matrix_operator_dense_and_sparse(self):
        S = create_tridiagonal_sparse_coo(5, 2.0, -1.0)
        x = torch.arange(5, dtype=torch.float64)
        expected = S.to_dense() @ x

        for A in (S, S.to_dense(), S.to_sparse_csr()):
            out = torch.empty(5, dtype=torch.float64)
            matrix_operator(A)(out, x, "ignored context")
            assert torch.allclose(out, expected)

    def test_matrix_operator_on_pytree(self):
        A = 2.0 * torch.eye(5, dtype=torch.float64)
        x = (torch.ones(2, dtype=torch.float64), torch.full((3,), 3.0, dtype=torch.float64))
        out = (torch.empty(2, dtype=torch.float64), torch.empty(3, dtype=torch.float64))

        matrix_operator(A)(out, x)

        assert torch.equal(out[0], torch.full((2,), 2.0, dtype=torch.float64))
        assert torch.equal(out[1], torch.full((3,), 6.0, dtype=torch.float64))

    def test_matrix_operator_errors(self):
        with pytest.raises(ValueError, match="square"):
            matrix_operator(torch.zeros(3, 4))
        with pytest.raises(TypeError):
            matrix_operator([[1.0]])

        op = matrix_operator(torch.eye(3))
        with pytest.raises(ValueError, match="size 3"):
            op(torch.empty(4), torch.zeros(4))

    def test_functional_operator(self):
        op = functional_operator(lambda x, scale: scale * x)
        out = torch.zeros(3)
        op(out, torch.ones(3), 4.0)
        assert torch.equal(out, torch.full((3,), 4.0))

        with pytest.raises(TypeError):
            functional_operator(None)


class TestResiduals:

    def test_residual_from_matrix_and_callable(self):
        A = create_tridiagonal_sparse_coo(6)
        x = torch.linspace(0.0, 1.0, 6, dtype=torch.float64)
        b = torch.ones(6, dtype=torch.float64)
        expected = b - A.to_dense() @ x

        assert torch.allclose(compute_residual(A, x, b), expected)
        assert torch.allclose(compute_residual(lambda v: A.to_dense() @ v, x, b), expected)

    def test_relative_residual_vanishes_at_solution(self):
        A = torch.tensor([[4.0, 1.0], [2.0, 3.0]], dtype=torch.float64)
        x = torch.tensor([0.1, 0.6], dtype=torch.float64)
        b = torch.tensor([1.0, 2.0], dtype=torch.float64)

        assert compute_relative_residual(A, x, b) < 1e-15
        assert compute_relative_residual(A, torch.zeros(2, dtype=torch.float64), b) == pytest.approx(1.0)


class TestAvailability:

    def test_environment_info(self):
        info = get_environment_info()
        assert info['torch_version'] == torch.__version__
        assert info['cuda_available'] == check_cuda_available()
        assert info['devices'][0] == 'cpu'
        assert default_device() in ('cpu', 'cuda')

    def test_environment_report(self, capsys):
        print_environment_report()
        assert "PyTorch version" in capsys.readouterr().out
