# kernels.py
from __future__ import annotations

import numpy as np
import numpy.typing as npt
import numba as nb

# ---- JIT'd finite difference stencil for the axisymmetric heat equation ----
#
# dT/dt = α·[1/r·∂/∂r(r·∂T/∂r) + ∂²T/∂z²] + Q/(ρ·cp)
#
# Arrays are indexed [i, j], i radial, j axial. The kernels read only `T` and
# write only `out`, so every node can be updated independently.


@nb.njit(cache=True, inline="always")
def _radial_term(T: npt.NDArray[np.float64], r: npt.NDArray[np.float64], dr: float, i: int, j: int) -> float:
    nr = T.shape[0]
    tc = T[i, j]
    if i == 0:
        # r -> 0 limit (L'Hôpital): 1/r·∂/∂r(r·∂T/∂r) = 2·∂²T/∂r²
        return 2.0 * (T[1, j] - tc) / (dr * dr)
    if i == nr - 1:
        # One-sided second difference at the outermost node
        t_left = T[i - 1, j]
        t_left2 = T[i - 2, j] if i >= 2 else t_left
        return (t_left2 - 2.0 * t_left + tc) / (dr * dr)
    # Conservative form with face radii r ± dr/2
    r_in = r[i] - 0.5 * dr
    r_out = r[i] + 0.5 * dr
    return (r_out * (T[i + 1, j] - tc) - r_in * (tc - T[i - 1, j])) / (r[i] * dr * dr)


@nb.njit(cache=True, inline="always")
def _axial_term(T: npt.NDArray[np.float64], dz: float, i: int, j: int) -> float:
    nz = T.shape[1]
    if j == 0 or j == nz - 1:
        return 0.0
    return (T[i, j + 1] - 2.0 * T[i, j] + T[i, j - 1]) / (dz * dz)


@nb.njit(cache=True)
def forward_euler_sweep(
    T: npt.NDArray[np.float64],
    alpha: npt.NDArray[np.float64],
    heating: npt.NDArray[np.float64],
    r: npt.NDArray[np.float64],
    dr: float,
    dz: float,
    dt: float,
    out: npt.NDArray[np.float64],
) -> None:
    """
    Explicit Euler update of every node.

    Args:
        T: Current temperature field (K), shape (nr, nz).
        alpha: Thermal diffusivity per node (m²/s).
        heating: Source heating rate Q/(ρ·cp) per node (K/s).
        r: Radial node coordinates, shape (nr,).
        dr: Radial spacing.
        dz: Axial spacing.
        dt: Time step.
        out: Next temperature field, written in place.
    """
    nr, nz = T.shape
    for i in range(nr):
        for j in range(nz):
            lap = _radial_term(T, r, dr, i, j) + _axial_term(T, dz, i, j)
            out[i, j] = T[i, j] + dt * (alpha[i, j] * lap + heating[i, j])


@nb.njit(cache=True, parallel=True)
def forward_euler_sweep_parallel(
    T: npt.NDArray[np.float64],
    alpha: npt.NDArray[np.float64],
    heating: npt.NDArray[np.float64],
    r: npt.NDArray[np.float64],
    dr: float,
    dz: float,
    dt: float,
    out: npt.NDArray[np.float64],
) -> None:
    """Same as forward_euler_sweep, radial rows distributed over the Numba thread pool."""
    nr, nz = T.shape
    for i in nb.prange(nr):
        for j in range(nz):
            lap = _radial_term(T, r, dr, i, j) + _axial_term(T, dz, i, j)
            out[i, j] = T[i, j] + dt * (alpha[i, j] * lap + heating[i, j])


@nb.njit(cache=True)
def field_is_valid(T: npt.NDArray[np.float64]) -> bool:
    """True if every value is finite and non-negative (Kelvin)."""
    nr, nz = T.shape
    for i in range(nr):
        for j in range(nz):
            v = T[i, j]
            if not np.isfinite(v) or v < 0.0:
                return False
    return True
