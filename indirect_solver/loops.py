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
"""Loop strategies for the data-parallel sparse kernels.

A kernel hands to the strategy the size of its output index range and a
function ``function(start, stop)`` that computes the output entries in
``[start, stop)``. Every output entry is owned by exactly one partition, so
partitions run without any synchronization between them.
"""

"""Loop strategies for the data-parallel sparse kernels.

With :class:`SerialLoop` the kernels are vectorized Numpy, run in a single
partition. With :class:`NumbaLoop` they are compiled by numba and the outer
loop over output entries is a ``prange``. In both cases every output entry
is written by exactly one iteration of the outer loop, so no
synchronization is needed.
"""

import logging

from .config import DEFAULT_NUM_WORKERS, NONUMBA

if not NONUMBA: # pragma: no cover
    import numba as nb

logger = logging.getLogger(__name__)


class LoopStrategy:
    """Base class for loop strategies."""

    # whether the kernels use the numba compiled implementation
    compiled = False

    def run(self, size, function):
        """Call ``function(start, stop)`` on partitions covering ``size``.

        :param size: Length of the output index range.
        :type size: int
        :param function: Vectorized kernel restricted to a partition.
        :type function: callable
        """
        raise NotImplementedError

    def close(self):
        """Release the resources held by the strategy, if any."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class SerialLoop(LoopStrategy):
    """Single partition, run in the calling thread."""

    def run(self, size, function):
        """Call ``function(0, size)``, unless the range is empty."""
        if size > 0:
            function(0, size)


class NumbaLoop(SerialLoop):
    """Numba compiled kernels, parallel over the output entries.

    Kernels without a compiled implementation run as :class:`SerialLoop`.
    """

    compiled = True

    def __init__(self, num_workers=DEFAULT_NUM_WORKERS):
        """Set the number of numba threads.

        :param num_workers: Number of threads, by default numba's choice.
            This is a process-wide numba setting.
        :type num_workers: int or None
        """
        if NONUMBA:
            self.num_workers = 1
        else:
            if num_workers is not None:
                assert num_workers > 0
                nb.set_num_threads(num_workers)
            self.num_workers = nb.get_num_threads()
        logger.info('numba kernels will use %d threads', self.num_workers)
