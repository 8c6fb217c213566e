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
"""Sparse kernels: matvec, transpose, Jacobi preconditioner."""

from __future__ import annotations

import logging

import numpy as np

from .config import NONUMBA
from .loops import SerialLoop
from .sparse_matrix import INDEX_TYPE, SparseMatrix

if not NONUMBA: # pragma: no cover
    import numba as nb

logger = logging.getLogger(__name__)

_SERIAL = SerialLoop()

prange = range if NONUMBA else nb.prange

###
# Numba kernels
###


def _csc_transpose_matvec_kernel(
        n, col_pointers, row_indexes, mat_elements, output, input, mult):
    """Compiled ``output += mult * M.T @ input``, parallel over output."""
    for j in prange(n):
        result = 0.
        for k in range(col_pointers[j], col_pointers[j + 1]):
            result += mat_elements[k] * input[row_indexes[k]]
        output[j] += mult * result

if not NONUMBA: # pragma: no cover
    _csc_transpose_matvec_kernel = nb.njit(parallel=True)(
        _csc_transpose_matvec_kernel)


def _transpose_fill_kernel(
        n, col_pointers, row_indexes, mat_elements, num_blocks,
        t_col_pointers, t_row_indexes, t_mat_elements):
    """Compiled scatter of the transpose, parallel over destination blocks.

    Each block of destination columns has its own write cursors and scans
    all source columns in order, so blocks never write the same slot.
    """
    m = len(t_col_pointers) - 1
    for block in prange(num_blocks):
        start = block * m // num_blocks
        stop = (block + 1) * m // num_blocks
        cursors = t_col_pointers[start:stop].copy()
        for j in range(n):
            for k in range(col_pointers[j], col_pointers[j + 1]):
                i = row_indexes[k]
                if start <= i < stop:
                    q = cursors[i - start]
                    t_row_indexes[q] = j
                    t_mat_elements[q] = mat_elements[k]
                    cursors[i - start] = q + 1

if not NONUMBA: # pragma: no cover
    _transpose_fill_kernel = nb.njit(parallel=True)(_transpose_fill_kernel)

###
# Public functions
###


def add_csc_matvec(
        n: int,
        col_pointers: np.array,
        row_indexes: np.array,
        mat_elements: np.array,
        output: np.array,
        input: np.array,
        mult: float = 1.) -> None:
    """Add ``mult * M @ input`` to ``output``, with M in CSC format.

    Column scatter: every nonzero ``(i, j)`` adds its value times
    ``input[j]`` to ``output[i]``. Different columns write the same output
    entries, so this kernel is serial; the solver computes ``A @ x`` with
    :func:`add_csc_transpose_matvec` on the cached transpose instead.

    :param n: Number of columns of M, length of input.
    :type n: int
    :param col_pointers: CSC column pointers of M.
    :type col_pointers: np.array
    :param row_indexes: CSC row indexes of M.
    :type row_indexes: np.array
    :param mat_elements: CSC values of M.
    :type mat_elements: np.array
    :param output: Array of length equal to the number of rows of M,
        modified in place.
    :type output: np.array
    :param input: Array of length n.
    :type input: np.array
    :param mult: Multiplier of the product.
    :type mult: float
    """
    assert len(input) == n
    assert len(col_pointers) == n + 1
    columns = np.repeat(np.arange(n), np.diff(col_pointers))
    nnz = col_pointers[n]
    output += mult * np.bincount(
        row_indexes[:nnz], weights=mat_elements[:nnz] * input[columns],
        minlength=len(output))


def add_csc_transpose_matvec(
        n: int,
        col_pointers: np.array,
        row_indexes: np.array,
        mat_elements: np.array,
        output: np.array,
        input: np.array,
        mult: float = 1.,
        loop=None) -> None:
    """Add ``mult * M.T @ input`` to ``output``, with M in CSC format.

    Entry ``j`` of the output only depends on column ``j`` of M, so the
    loop strategy partitions the ``n`` output entries and each partition
    writes only its own slice.

    :param n: Number of columns of M, length of output.
    :type n: int
    :param col_pointers: CSC column pointers of M.
    :type col_pointers: np.array
    :param row_indexes: CSC row indexes of M.
    :type row_indexes: np.array
    :param mat_elements: CSC values of M.
    :type mat_elements: np.array
    :param output: Array, modified in place.
    :type output: np.array
    :param input: Array of length equal to the number of rows of M.
    :type input: np.array
    :param mult: Multiplier of the product.
    :type mult: float
    :param loop: Loop strategy, default serial.
    :type loop: indirect_solver.loops.LoopStrategy or None
    """
    assert len(output) == n
    assert len(col_pointers) == n + 1
    loop = _SERIAL if loop is None else loop

    if loop.compiled:
        _csc_transpose_matvec_kernel(
            n, col_pointers, row_indexes, mat_elements, output, input,
            float(mult))
        return

    def _partition(start, stop):
        low, high = col_pointers[start], col_pointers[stop]
        if low == high:
            return
        products = mat_elements[low:high] * input[row_indexes[low:high]]
        starts = col_pointers[start:stop]
        nonempty = col_pointers[start + 1:stop + 1] > starts
        # segments of empty columns have no elements, so each sum runs
        # exactly up to the start of the next nonempty column
        sums = np.add.reduceat(products, starts[nonempty] - low)
        if mult != 1.:
            sums *= mult
        chunk = output[start:stop]
        chunk[nonempty] += sums

    loop.run(n, _partition)


def csc_transpose(matrix: SparseMatrix, loop=None) -> SparseMatrix:
    """Build the CSC representation of ``matrix.T``.

    Counting sort: nonzeros are bucketed by row, bucket offsets are the
    prefix sum of the row counts. Inside a bucket nonzeros keep the order
    of their source columns, the same order a serial scatter with per-row
    write cursors produces. Partitions are over the *destination* buckets;
    each fills a disjoint slice of the output, so there are no shared write
    cursors.

    :param matrix: Matrix to transpose.
    :type matrix: indirect_solver.SparseMatrix
    :param loop: Loop strategy, default serial.
    :type loop: indirect_solver.loops.LoopStrategy or None

    :returns: Transposed matrix.
    :rtype: indirect_solver.SparseMatrix
    """
    m, n = matrix.shape
    source_rows = matrix.row_indexes
    loop = _SERIAL if loop is None else loop

    row_counts = np.bincount(source_rows, minlength=m)
    col_pointers = np.zeros(m + 1, dtype=INDEX_TYPE)
    np.cumsum(row_counts, out=col_pointers[1:])

    row_indexes = np.empty(matrix.nnz, dtype=INDEX_TYPE)
    mat_elements = np.empty(matrix.nnz, dtype=float)

    if loop.compiled:
        _transpose_fill_kernel(
            n, matrix.col_pointers, source_rows, matrix.mat_elements,
            max(loop.num_workers, 1), col_pointers, row_indexes,
            mat_elements)

    else:
        source_columns = matrix.column_indexes()

        def _partition(start, stop):
            low, high = col_pointers[start], col_pointers[stop]
            if low == high:
                return
            if start == 0 and stop == m:
                selected = np.arange(matrix.nnz)
            else:
                selected = np.flatnonzero(
                    (source_rows >= start) & (source_rows < stop))
            order = selected[np.argsort(source_rows[selected], kind='stable')]
            assert len(order) == high - low
            row_indexes[low:high] = source_columns[order]
            mat_elements[low:high] = matrix.mat_elements[order]

        loop.run(m, _partition)

    return SparseMatrix(
        shape=(n, m), col_pointers=col_pointers, row_indexes=row_indexes,
        mat_elements=mat_elements)


def jacobi_preconditioner(
        matrix: SparseMatrix, rho: float, output: np.array = None) -> np.array:
    """Inverse diagonal of ``rho * I + A.T @ A``.

    :param matrix: Matrix A.
    :type matrix: indirect_solver.SparseMatrix
    :param rho: Positive regularization weight.
    :type rho: float
    :param output: Optionally, array of length n to write into.
    :type output: np.array or None

    :returns: Preconditioner, ``1 / (rho + ||A[:, j]||^2)``.
    :rtype: np.array
    """
    assert rho > 0.
    squared_norms = np.bincount(
        matrix.column_indexes(), weights=matrix.mat_elements ** 2,
        minlength=matrix.n)
    if output is None:
        output = np.empty(matrix.n, dtype=float)
    assert len(output) == matrix.n
    np.divide(1., rho + squared_norms, out=output)
    return output
