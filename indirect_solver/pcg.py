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
"""Warm-started Jacobi-preconditioned conjugate gradient."""

import logging

import numpy as np

logger = logging.getLogger(__name__)


def apply_preconditioner(preconditioner, residual, output):
    """Write ``preconditioner * residual`` in output, return its dot with r.

    :param preconditioner: Inverse diagonal.
    :type preconditioner: np.array
    :param residual: CG residual.
    :type residual: np.array
    :param output: Preconditioned residual, overwritten.
    :type output: np.array

    :returns: Inner product of the preconditioned residual and the residual.
    :rtype: float
    """
    np.multiply(preconditioner, residual, out=output)
    return np.dot(output, residual)


def pcg(operator, preconditioner, b, workspace, warm_start=None,
        max_iters=None, tol=1e-7):
    """Solve ``operator @ x = b`` with PCG, the solution overwrites ``b``.

    The loop stops when the norm of the (recursively updated) residual is
    below ``tol``, when ``max_iters`` iterations are done, or when the
    curvature ``p @ operator @ p`` is not positive, which can only happen
    on a numerically singular operator. In all cases ``b`` holds the last
    iterate and ``workspace['r']`` its residual.

    :param operator: Symmetric positive definite operator, with method
        ``matvec(input, output)``.
    :type operator: indirect_solver.normal_operator.NormalOperator
    :param preconditioner: Inverse diagonal preconditioner.
    :type preconditioner: np.array
    :param b: Right hand side, overwritten with the solution.
    :type b: np.array
    :param workspace: Dictionary with arrays ``p``, ``r``, ``Ap``, ``z``
        of the same length as ``b``.
    :type workspace: dict
    :param warm_start: Optionally, initial guess.
    :type warm_start: np.array or None
    :param max_iters: Iteration budget, default ``len(b)``.
    :type max_iters: int or None
    :param tol: Termination threshold on the residual norm.
    :type tol: float

    :returns: Number of iterations performed.
    :rtype: int
    """
    n = len(b)
    if max_iters is None:
        max_iters = n

    p = workspace['p']  # cg direction
    Ap = workspace['Ap']  # operator times direction
    r = workspace['r']  # residual
    z = workspace['z']  # preconditioned residual

    if warm_start is None:
        r[:] = b
        b[:] = 0.
    else:
        assert len(warm_start) == n
        operator.matvec(warm_start, r)
        np.subtract(b, r, out=r)
        b[:] = warm_start

    if np.linalg.norm(r) < tol:
        return 0

    ipzr = apply_preconditioner(preconditioner, r, z)
    p[:] = z

    for i in range(max_iters):
        operator.matvec(p, Ap)

        curvature = np.dot(p, Ap)
        if not curvature > 0. or not np.isfinite(curvature):
            logger.warning(
                'PCG stopped at iteration %d, non-positive curvature %.2e',
                i, curvature)
            return i

        alpha = ipzr / curvature
        b += alpha * p
        r -= alpha * Ap

        if np.linalg.norm(r) < tol:
            return i + 1

        ipzr_old = ipzr
        ipzr = apply_preconditioner(preconditioner, r, z)

        p *= ipzr / ipzr_old
        p += z

    return max_iters
