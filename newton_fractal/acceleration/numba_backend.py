"""
Numba JIT compilation backend for the Newton iteration.

This module holds the scalar Newton kernel shared by the image renderer and
the orbit tracer. All functions are compiled ``nogil`` so scanlines can be
evaluated concurrently from a thread pool.

The polynomial is given by its roots, f(z) = prod(z - root_i), and its
derivative is approximated by a forward difference with the diagonal complex
step h = step + step*i, so the kernel never needs an analytic derivative.
"""

import cmath
import logging

import numba
import numpy as np
from numba import njit

logger = logging.getLogger(__name__)

logger.debug(f"Numba available: {numba.__version__}")

NO_ROOT = -1


@njit(cache=True, nogil=True)
def polynomial(z, roots):
    """Evaluate prod(z - root) over all roots."""
    result = 1.0 + 0.0j
    for i in range(roots.shape[0]):
        result *= z - roots[i]
    return result


@njit(cache=True, nogil=True)
def newton_step(z, roots, damping, h):
    """
    Perform one damped Newton step.

    Returns:
        Tuple of (next z, valid) where valid is False if the derivative vanished
    """
    fz = polynomial(z, roots)
    dz = (polynomial(z + h, roots) - fz) / h
    if dz.real == 0.0 and dz.imag == 0.0:
        return z, False
    return z - damping * fz / dz, True


@njit(cache=True, nogil=True)
def match_root(z, roots, eps):
    """Index of the first root within ``eps`` of z, or NO_ROOT."""
    for r in range(roots.shape[0]):
        if abs(z - roots[r]) < eps:
            return r
    return NO_ROOT


@njit(cache=True, nogil=True)
def newton_point(z, roots, damping, max_iter, eps, step):
    """
    Iterate a single starting point until convergence or ``max_iter``.

    Args:
        z: Starting point
        roots: complex128 array of polynomial roots
        damping: Complex multiplier of the Newton step
        max_iter: Maximum number of iterations
        eps: Convergence and root-matching tolerance
        step: Finite difference step size

    Returns:
        Tuple of (root index or NO_ROOT, iterations used)
    """
    h = complex(step, step)
    for i in range(max_iter):
        z_next, valid = newton_step(z, roots, damping, h)
        if not valid:
            return NO_ROOT, i + 1
        if abs(z_next - z) < eps:
            return match_root(z_next, roots, eps), i + 1
        z = z_next
    return NO_ROOT, max_iter


@njit(cache=True, nogil=True)
def newton_scanline(zx, zy, roots, damping, max_iter, eps, step, root_index, iterations):
    """Evaluate one image row in place into ``root_index`` and ``iterations``."""
    for x in range(zx.shape[0]):
        r, n = newton_point(complex(zx[x], zy), roots, damping, max_iter, eps, step)
        root_index[x] = r
        iterations[x] = n


@njit(cache=True, nogil=True)
def newton_orbit(z, roots, damping, max_iter, eps, step):
    """
    Record the iterates visited from z, starting point included.

    Stops at convergence (the converged iterate is not appended since it
    lies within ``eps`` of the last one), at a vanishing derivative, or when
    the iterate leaves the finite plane.
    """
    orbit = np.empty(max_iter + 1, dtype=np.complex128)
    orbit[0] = z
    count = 1
    h = complex(step, step)
    for i in range(max_iter):
        z_next, valid = newton_step(z, roots, damping, h)
        if not valid or not cmath.isfinite(z_next):
            break
        if abs(z_next - z) < eps:
            break
        orbit[count] = z_next
        count += 1
        z = z_next
    return orbit[:count]
