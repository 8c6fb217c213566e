# BSD 3-Clause License

# Copyright (c) 2024-, Enzo Busseti

# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:

# 1. Redistributions of source code must retain the above copyright notice, this
#    list of conditions and the following disclaimer.

# 2. Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.

# 3. Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.

# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
# DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
# FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
# DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
# SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
# CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
# OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
# OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.
"""Test implicit operator and PCG."""

import logging
from unittest import TestCase, main

import numpy as np
import scipy.sparse as sp

from indirect_solver import SparseMatrix
from indirect_solver.linear_algebra import csc_transpose, jacobi_preconditioner
from indirect_solver.normal_operator import NormalOperator
from indirect_solver.pcg import apply_preconditioner, pcg
from indirect_solver.workspace import create_workspace

logger = logging.getLogger(__name__)


def _make_system(mat, rho):
    """Operator, preconditioner, workspace."""
    matrix = SparseMatrix.from_scipy(mat)
    workspace = create_workspace(m=matrix.m, n=matrix.n)
    operator = NormalOperator(
        matrix=matrix, matrix_transpose=csc_transpose(matrix), rho=rho,
        tmp=workspace['tmp'])
    return operator, jacobi_preconditioner(matrix, rho=rho), workspace


class _ZeroOperator:
    """Operator with no curvature at all."""

    def matvec(self, input, output):
        output[:] = 0.


class TestPCG(TestCase):
    """Test implicit operator and PCG."""

    def test_operator(self):
        """Operator matches dense rho I + A^T A."""
        np.random.seed(0)
        mat = sp.random(m=40, n=30, dtype=float, density=.2).tocsc()
        rho = .3
        operator, _, _ = _make_system(mat, rho)
        self.assertEqual(operator.shape, (30, 30))
        self.assertIn('Shape', NormalOperator.shape.__doc__)
        dense = rho * np.eye(30) + mat.toarray().T @ mat.toarray()
        for _ in range(5):
            var = np.random.randn(30)
            result = np.empty(30)
            operator.matvec(var, result)
            self.assertTrue(np.allclose(result, dense @ var))
        self.assertTrue(np.allclose(
            operator.as_linear_operator() @ np.eye(30), dense))

    def test_operator_zero(self):
        """Operator maps zero to exactly zero."""
        np.random.seed(1)
        mat = sp.random(m=20, n=10, dtype=float, density=.5).tocsc()
        operator, _, _ = _make_system(mat, 2.)
        result = np.random.randn(10)
        operator.matvec(np.zeros(10), result)
        self.assertTrue(np.all(result == 0.))

    def test_apply_preconditioner(self):
        """Test preconditioner application and inner product."""
        output = np.empty(3)
        ipzr = apply_preconditioner(
            np.array([1., 2., 3.]), np.array([1., -1., 2.]), output)
        self.assertTrue(np.all(output == [1., -2., 6.]))
        self.assertEqual(ipzr, 1. + 2. + 12.)

    def test_identity(self):
        """(2 I) x = [2, 2] is solved in one iteration."""
        operator, preconditioner, workspace = _make_system(
            sp.eye(2, format='csc'), 1.)
        self.assertTrue(np.all(preconditioner == [.5, .5]))
        b = np.array([2., 2.])
        iters = pcg(
            operator=operator, preconditioner=preconditioner, b=b,
            workspace=workspace, tol=1e-7)
        self.assertEqual(iters, 1)
        self.assertTrue(np.allclose(b, [1., 1.]))

    def test_residual(self):
        """Solution satisfies the tolerance, within the budget."""
        for seed in range(10):
            np.random.seed(seed)
            m, n = 80, 50
            mat = sp.random(m=m, n=n, dtype=float, density=.1).tocsc()
            rho = 1.
            operator, preconditioner, workspace = _make_system(mat, rho)
            b = np.random.randn(n)
            b_orig = np.copy(b)
            tol = 1e-6
            iters = pcg(
                operator=operator, preconditioner=preconditioner, b=b,
                workspace=workspace, tol=tol)
            logger.info('PCG converged in %d iterations', iters)
            self.assertLessEqual(iters, n)
            dense = rho * np.eye(n) + mat.toarray().T @ mat.toarray()
            self.assertLessEqual(
                np.linalg.norm(dense @ b - b_orig), tol + 1e-9)
            self.assertTrue(np.allclose(
                workspace['r'], b_orig - dense @ b, atol=1e-9))

    def test_budget(self):
        """Budget exhaustion returns the budget and a usable iterate."""
        np.random.seed(0)
        mat = sp.random(m=80, n=50, dtype=float, density=.1).tocsc()
        operator, preconditioner, workspace = _make_system(mat, 1e-3)
        b = np.random.randn(50)
        b_orig = np.copy(b)
        iters = pcg(
            operator=operator, preconditioner=preconditioner, b=b,
            workspace=workspace, max_iters=3, tol=1e-15)
        self.assertEqual(iters, 3)
        self.assertTrue(np.all(np.isfinite(b)))
        result = np.empty(50)
        operator.matvec(b, result)
        self.assertTrue(np.allclose(
            workspace['r'], b_orig - result, atol=1e-8))

    def test_warm_start(self):
        """Warm start at the solution needs no iterations."""
        np.random.seed(2)
        mat = sp.random(m=60, n=40, dtype=float, density=.1).tocsc()
        operator, preconditioner, workspace = _make_system(mat, 1.)
        b = np.random.randn(40)
        solution = np.copy(b)
        pcg(operator=operator, preconditioner=preconditioner, b=solution,
            workspace=workspace, tol=1e-10)

        warm = np.copy(b)
        iters = pcg(
            operator=operator, preconditioner=preconditioner, b=warm,
            workspace=workspace, warm_start=solution, tol=1e-7)
        self.assertLessEqual(iters, 1)
        self.assertTrue(np.allclose(warm, solution))

        # warm start elsewhere still converges
        warm = np.copy(b)
        iters = pcg(
            operator=operator, preconditioner=preconditioner, b=warm,
            workspace=workspace, warm_start=np.random.randn(40), tol=1e-10)
        self.assertLessEqual(iters, 40)
        self.assertTrue(np.allclose(warm, solution))

    def test_zero_rhs(self):
        """Zero right hand side returns zero without iterating."""
        operator, preconditioner, workspace = _make_system(
            sp.eye(3, format='csc'), 1.)
        b = np.zeros(3)
        iters = pcg(
            operator=operator, preconditioner=preconditioner, b=b,
            workspace=workspace, tol=1e-7)
        self.assertEqual(iters, 0)
        self.assertTrue(np.all(b == 0.))

    def test_singular(self):
        """Zero curvature stops the loop with the current iterate."""
        workspace = create_workspace(m=0, n=3)
        b = np.ones(3)
        with self.assertLogs('indirect_solver.pcg', level='WARNING'):
            iters = pcg(
                operator=_ZeroOperator(), preconditioner=np.ones(3), b=b,
                workspace=workspace, tol=1e-7)
        self.assertEqual(iters, 0)
        self.assertTrue(np.all(b == 0.))


if __name__ == '__main__': # pragma: no cover
    logging.basicConfig(level='INFO')
    main()
