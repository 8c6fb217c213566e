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
"""Matrix-free regularized normal equations operator."""

import numpy as np
from scipy.sparse.linalg import LinearOperator

from .linear_algebra import add_csc_transpose_matvec


class NormalOperator:
    """Implicit ``rho * I + A.T @ A``, never formed.

    Both products use the same CSC kernel: ``A.T @ v`` against the CSC
    arrays of A and ``A @ v`` against the CSC arrays of the cached
    transpose.
    """

    def __init__(self, matrix, matrix_transpose, rho, tmp, loop=None):
        """Initialize with the matrix, its transpose, and scratch space.

        :param matrix: Matrix A, shape (m, n).
        :type matrix: indirect_solver.SparseMatrix
        :param matrix_transpose: CSC representation of A.T.
        :type matrix_transpose: indirect_solver.SparseMatrix
        :param rho: Positive regularization weight.
        :type rho: float
        :param tmp: Scratch array of length m, overwritten by each matvec.
        :type tmp: np.array
        :param loop: Loop strategy for the kernels, default serial.
        :type loop: indirect_solver.loops.LoopStrategy or None
        """
        assert matrix_transpose.shape == matrix.shape[::-1]
        assert len(tmp) == matrix.m
        self.matrix = matrix
        self.matrix_transpose = matrix_transpose
        self.rho = rho
        self.tmp = tmp
        self.loop = loop

    @property
    def shape(self):
        """Shape of the operator, (n, n)."""
        return (self.matrix.n, self.matrix.n)

    def add_forward(self, input, output, mult=1.):
        """Add ``mult * A @ input`` to ``output``."""
        add_csc_transpose_matvec(
            n=self.matrix.m,
            col_pointers=self.matrix_transpose.col_pointers,
            row_indexes=self.matrix_transpose.row_indexes,
            mat_elements=self.matrix_transpose.mat_elements,
            output=output, input=input, mult=mult, loop=self.loop)

    def add_transpose(self, input, output, mult=1.):
        """Add ``mult * A.T @ input`` to ``output``."""
        add_csc_transpose_matvec(
            n=self.matrix.n,
            col_pointers=self.matrix.col_pointers,
            row_indexes=self.matrix.row_indexes,
            mat_elements=self.matrix.mat_elements,
            output=output, input=input, mult=mult, loop=self.loop)

    def matvec(self, input, output):
        """Write ``rho * input + A.T @ (A @ input)`` in ``output``."""
        self.tmp[:] = 0.
        self.add_forward(input, self.tmp)
        output[:] = 0.
        self.add_transpose(self.tmp, output)
        output += self.rho * input

    def as_linear_operator(self):
        """Wrap as Scipy LinearOperator, each product allocates its output.

        The scratch array is shared, so the wrapper must not be used while
        a solve is running.
        """

        def _matvec(var):
            var = np.ravel(var)
            result = np.empty(self.matrix.n, dtype=float)
            self.matvec(var, result)
            return result

        return LinearOperator(
            shape=self.shape, matvec=_matvec, rmatvec=_matvec, dtype=float)
