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
"""Read-only sparse matrix in compressed sparse column format."""

import numpy as np
import scipy.sparse as sp

INDEX_TYPE = np.int64


def _read_only(array, dtype):
    """Read-only view, the caller's array keeps its flags."""
    result = np.ascontiguousarray(array, dtype=dtype).view()
    result.flags.writeable = False
    return result


class SparseMatrix:
    """Matrix in compressed sparse column (CSC) format.

    Row indexes within a column don't need to be sorted. The arrays are
    exposed as read-only views; the matrix is never modified after
    construction.
    """

    def __init__(self, shape, col_pointers, row_indexes, mat_elements):
        """Wrap CSC arrays.

        :param shape: Number of rows and columns.
        :type shape: tuple
        :param col_pointers: Offsets of each column, length ``n+1``.
        :type col_pointers: np.array
        :param row_indexes: Row index of each nonzero.
        :type row_indexes: np.array
        :param mat_elements: Value of each nonzero.
        :type mat_elements: np.array
        """
        m, n = shape
        self.shape = (int(m), int(n))
        self.col_pointers = _read_only(col_pointers, INDEX_TYPE)
        self.row_indexes = _read_only(row_indexes, INDEX_TYPE)
        self.mat_elements = _read_only(mat_elements, float)

        assert self.col_pointers.shape == (self.n + 1,)
        assert self.col_pointers[0] == 0
        assert len(self.row_indexes) == len(self.mat_elements) == self.nnz

    @property
    def m(self):
        """Number of rows."""
        return self.shape[0]

    @property
    def n(self):
        """Number of columns."""
        return self.shape[1]

    @property
    def nnz(self):
        """Number of stored nonzeros."""
        return int(self.col_pointers[-1])

    def column_indexes(self):
        """Column index of each nonzero, in storage order."""
        return np.repeat(
            np.arange(self.n, dtype=INDEX_TYPE), np.diff(self.col_pointers))

    @classmethod
    def from_scipy(cls, matrix):
        """Build from any Scipy sparse matrix (or dense 2-d array)."""
        matrix = sp.csc_matrix(matrix, dtype=float)
        return cls(
            shape=matrix.shape, col_pointers=matrix.indptr,
            row_indexes=matrix.indices, mat_elements=matrix.data)

    def to_scipy(self):
        """Copy as Scipy CSC matrix."""
        return sp.csc_matrix(
            (np.array(self.mat_elements), np.array(self.row_indexes),
                np.array(self.col_pointers)), shape=self.shape)

    def __repr__(self):
        return f'{self.__class__.__name__}(shape={self.shape}, nnz={self.nnz})'
