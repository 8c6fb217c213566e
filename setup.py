from setuptools import setup

# No compiled extension: the sparse kernels are vectorized Numpy, or numba
# compiled at runtime.

setup(
    name='indirect_solver',
    version='0.0.1',
    packages=['indirect_solver', 'indirect_solver.tests'],
    install_requires=["numpy", "scipy", "numba"]
)
