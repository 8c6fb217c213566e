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
"""Preallocated arrays of the indirect solver."""

import numpy as np

# name and length ('n' or 'm') of each array
WORKSPACE_ARRAYS = (
    ('p', 'n'),  # CG direction
    ('r', 'n'),  # CG residual
    ('Ap', 'n'),  # operator applied to direction
    ('z', 'n'),  # preconditioned residual
    ('tmp', 'm'),  # scratch of the operator, A @ input
)


def _allocate(size):
    return np.empty(size, dtype=float)


def create_workspace(m, n):
    """Preallocate the arrays reused by every solve.

    If an allocation fails nothing is kept and ``MemoryError`` propagates.

    :param m: Number of rows of the matrix.
    :type m: int
    :param n: Number of columns of the matrix.
    :type n: int

    :returns: Workspace.
    :rtype: dict
    """
    sizes = {'m': m, 'n': n}
    workspace = {}
    try:
        for name, dimension in WORKSPACE_ARRAYS:
            workspace[name] = _allocate(sizes[dimension])
    except MemoryError:
        release_workspace(workspace)
        raise
    return workspace


def release_workspace(workspace):
    """Drop all arrays of a (possibly partial) workspace."""
    workspace.clear()
