from __future__ import annotations

from typing import TYPE_CHECKING, Union

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

ABSOLUTE_ZERO_CELSIUS = -273.15

ArrayOrFloat = Union[float, "npt.NDArray[np.float64]"]


def celsius_to_kelvin(celsius: ArrayOrFloat) -> ArrayOrFloat:
    """Convert Celsius to Kelvin."""
    return celsius - ABSOLUTE_ZERO_CELSIUS


def kelvin_to_celsius(kelvin: ArrayOrFloat) -> ArrayOrFloat:
    """Convert Kelvin to Celsius."""
    return kelvin + ABSOLUTE_ZERO_CELSIUS


def node_coordinates(length: float, count: int) -> npt.NDArray[np.float64]:
    """`count` equally spaced node coordinates from 0 to `length`."""
    return np.linspace(0.0, length, count)


def mirror_about_axis(
    r: npt.NDArray[np.float64],
    grid: npt.NDArray[np.float64],
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Mirror a (nz, nr) grid about r = 0 for full cross section plots.

    The axis column is not duplicated: the result has 2·nr - 1 columns
    for r from -R to R.
    """
    r_full = np.concatenate([-r[:0:-1], r])
    grid_full = np.concatenate([grid[:, :0:-1], grid], axis=1)
    return r_full, grid_full
