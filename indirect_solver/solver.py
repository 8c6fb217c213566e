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
r"""Indirect solver of the regularized block system, called once per outer
iteration of the splitting method.

The block system is

.. math::

    \begin{bmatrix} \rho I & A^T \\ A & -I \end{bmatrix}
    \begin{bmatrix} x \\ y \end{bmatrix} =
    \begin{bmatrix} b_1 \\ b_2 \end{bmatrix},

which is reduced to :math:`(\rho I + A^T A) x = b_1 + A^T b_2`, solved by
PCG, followed by :math:`y = A x - b_2`.
"""

import logging
import time

import numpy as np

from .config import CG_BEST_TOL, DEFAULT_CG_RATE, DEFAULT_RHO
from .linear_algebra import csc_transpose, jacobi_preconditioner
from .loops import SerialLoop
from .normal_operator import NormalOperator
from .pcg import pcg
from .sparse_matrix import SparseMatrix
from .workspace import create_workspace, release_workspace

logger = logging.getLogger(__name__)


class InitializationError(Exception):
    """Allocation of the solver data structures failed."""


def cg_tolerance(b_norm, iteration, cg_rate=DEFAULT_CG_RATE):
    """CG termination tolerance for an outer iteration.

    :param b_norm: Norm of the first block of the right hand side.
    :type b_norm: float
    :param iteration: Outer iteration index, negative for a final solve.
    :type iteration: int
    :param cg_rate: Exponent of the tightening schedule.
    :type cg_rate: float

    :returns: ``max(b_norm / (iteration + 1)^cg_rate, CG_BEST_TOL)``, or
        ``max(b_norm * CG_BEST_TOL, CG_BEST_TOL)`` if iteration is negative.
    :rtype: float
    """
    if iteration < 0:
        scale = CG_BEST_TOL
    else:
        scale = 1. / (iteration + 1) ** cg_rate
    return max(b_norm * scale, CG_BEST_TOL)


class IndirectSolver:
    """Solve the block system with warm-started PCG.

    The instance owns the transpose of A, the preconditioner, and all
    scratch arrays, which are reused by each call to :meth:`solve`. It must
    not be used from more than one thread at a time; the loop strategy may
    run the sparse kernels on several threads.
    """

    def __init__(
            self, matrix, rho=DEFAULT_RHO, cg_rate=DEFAULT_CG_RATE,
            max_iters=None, loop=None, verbose=False):
        """Build transpose and preconditioner, allocate the workspace.

        :param matrix: Matrix A, either as SparseMatrix or anything Scipy
            can convert to CSC.
        :type matrix: indirect_solver.SparseMatrix or sp.sparse.spmatrix
        :param rho: Positive regularization weight.
        :type rho: float
        :param cg_rate: Exponent of the CG tolerance schedule.
        :type cg_rate: float
        :param max_iters: CG iteration budget per solve, default n.
        :type max_iters: int or None
        :param loop: Loop strategy of the sparse kernels, default serial.
        :type loop: indirect_solver.loops.LoopStrategy or None
        :param verbose: Log extra diagnostics at DEBUG level.
        :type verbose: bool

        :raises InitializationError: If memory allocation fails.
        """
        if not isinstance(matrix, SparseMatrix):
            matrix = SparseMatrix.from_scipy(matrix)
        assert rho > 0.

        self.matrix = matrix
        self.rho = rho
        self.cg_rate = cg_rate
        self.max_iters = matrix.n if max_iters is None else max_iters
        self.loop = SerialLoop() if loop is None else loop
        self.verbose = verbose

        self.last_iterations = 0
        self.last_tolerance = np.nan
        self.last_residual_norm = np.nan
        self._total_cg_iters = 0
        self._total_solve_time = 0.
        self._released = False

        self._workspace = {}
        self.matrix_transpose = None
        self.preconditioner = None
        self.operator = None

        try:
            self._workspace.update(create_workspace(m=self.m, n=self.n))

            start = time.time()
            self.matrix_transpose = csc_transpose(matrix, loop=self.loop)
            if self.verbose:
                logger.debug(
                    'transposed A in %.6f seconds', time.time() - start)

            self.preconditioner = jacobi_preconditioner(matrix, rho=rho)
            if self.verbose:
                logger.debug(
                    'preconditioner has min %.2e, max %.2e',
                    np.min(self.preconditioner, initial=np.inf),
                    np.max(self.preconditioner, initial=-np.inf))

        except MemoryError as exc:
            self.release()
            raise InitializationError(
                'Could not allocate the indirect solver workspace.') from exc

        self.operator = NormalOperator(
            matrix=matrix, matrix_transpose=self.matrix_transpose, rho=rho,
            tmp=self._workspace['tmp'], loop=self.loop)

        logger.info(
            'indirect solver set up with m=%d, n=%d, nnz(A)=%d, rho=%.2e',
            self.m, self.n, matrix.nnz, rho)

    @property
    def m(self):
        """Number of rows of A."""
        return self.matrix.m

    @property
    def n(self):
        """Number of columns of A."""
        return self.matrix.n

    def set_rho(self, rho):
        """Change the regularization weight, rebuilding the preconditioner.

        :param rho: Positive regularization weight.
        :type rho: float
        """
        self._check_not_released()
        assert rho > 0.
        self.rho = rho
        self.operator.rho = rho
        jacobi_preconditioner(self.matrix, rho=rho, output=self.preconditioner)

    def _check_not_released(self):
        if self._released:
            raise RuntimeError('The solver has been released.')

    def solve(self, rhs, warm_start=None, iteration=0):
        """Solve the block system in place.

        On entry ``rhs`` holds ``[b_1; b_2]``; on exit it holds ``[x; y]``.
        Reaching the iteration budget before the tolerance is not an error;
        the precision achieved is in :attr:`last_residual_norm`.

        :param rhs: Floating point array of length n+m, overwritten with the
            solution. Computations are in double precision; other float
            types are converted and the result is written back.
        :type rhs: np.array
        :param warm_start: Optionally, initial guess for x.
        :type warm_start: np.array or None
        :param iteration: Outer iteration index, negative for a final solve
            at the tightest tolerance; final solves are not counted in the
            CG iterations statistics.
        :type iteration: int

        :returns: Number of CG iterations used.
        :rtype: int
        """
        self._check_not_released()
        n, m = self.n, self.m
        assert isinstance(rhs, np.ndarray)
        assert np.issubdtype(rhs.dtype, np.floating)
        assert rhs.shape == (n + m,)

        if rhs.dtype != np.float64:
            work = rhs.astype(np.float64)
            cg_iters = self.solve(
                work, warm_start=warm_start, iteration=iteration)
            rhs[:] = work
            return cg_iters

        tol = cg_tolerance(
            b_norm=np.linalg.norm(rhs[:n]), iteration=iteration,
            cg_rate=self.cg_rate)

        start = time.time()

        # views, all updates below are in place
        x_block, y_block = rhs[:n], rhs[n:]

        self.operator.add_transpose(y_block, x_block)
        cg_iters = pcg(
            operator=self.operator, preconditioner=self.preconditioner,
            b=x_block, workspace=self._workspace, warm_start=warm_start,
            max_iters=self.max_iters, tol=tol)
        y_block *= -1.
        self.operator.add_forward(x_block, y_block)

        if iteration >= 0:
            self._total_cg_iters += cg_iters
        self._total_solve_time += time.time() - start

        self.last_iterations = cg_iters
        self.last_tolerance = tol
        self.last_residual_norm = np.linalg.norm(self._workspace['r'])

        logger.debug('CG iterations: %d', cg_iters)
        if self.verbose:
            logger.debug(
                'CG tolerance %.2e, residual norm %.2e',
                tol, self.last_residual_norm)
        if iteration < 0 and not self.last_residual_norm < tol:
            logger.warning(
                'Final solve did not reach tolerance %.2e, residual norm is'
                ' %.2e after %d CG iterations', tol, self.last_residual_norm,
                cg_iters)

        return cg_iters

    def describe_method(self):
        """Static description of the solve method."""
        return (
            f'sparse-indirect, nnz in A = {self.matrix.nnz}, '
            f'CG tol ~ 1/iter^({self.cg_rate:2.2f})')

    def describe_summary(self, total_outer_iterations):
        """Averages since the last summary, then reset the counters.

        :param total_outer_iterations: Index of the last outer iteration;
            averages are over ``total_outer_iterations + 1`` calls, zero
            if no outer iteration was done.
        :type total_outer_iterations: int

        :returns: Summary line.
        :rtype: str
        """
        calls = max(total_outer_iterations + 1, 1)
        result = (
            f'\tLin-sys: avg # CG iterations: {self._total_cg_iters / calls:2.2f}'
            f', avg solve time: {self._total_solve_time / calls:1.2e}s\n')
        self._total_cg_iters = 0
        self._total_solve_time = 0.
        return result

    def release(self):
        """Drop all owned arrays, can be called more than once."""
        release_workspace(self._workspace)
        self.matrix_transpose = None
        self.preconditioner = None
        self.operator = None
        self._released = True

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.release()


###
# Handle-style interface
###

def initialize(matrix, rho=DEFAULT_RHO, cg_rate=DEFAULT_CG_RATE, **kwargs):
    """Create a solver, see :class:`IndirectSolver`."""
    return IndirectSolver(matrix, rho=rho, cg_rate=cg_rate, **kwargs)


def solve(solver, rhs, warm_start=None, iteration=0):
    """Solve in place, see :meth:`IndirectSolver.solve`."""
    return solver.solve(rhs, warm_start=warm_start, iteration=iteration)


def release(solver):
    """Release a solver, see :meth:`IndirectSolver.release`."""
    solver.release()


def describe_method(solver):
    """See :meth:`IndirectSolver.describe_method`."""
    return solver.describe_method()


def describe_summary(solver, total_outer_iterations):
    """See :meth:`IndirectSolver.describe_summary`."""
    return solver.describe_summary(total_outer_iterations)
