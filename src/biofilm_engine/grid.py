# src/biofilm_engine/grid.py
"""Depth discretization of the biofilm.

The biofilm is split into ``n_layers`` cells of equal width spanning
``[0, thickness]``. Because the thickness is part of the state, the grid is
rebuilt whenever a new thickness is available.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .errors import raise_configuration_error


@dataclass(frozen=True, slots=True)
class BiofilmGrid:
    """Geometry of the 1D biofilm depth grid.

    Attributes:
        z: Cell boundaries, shape (n_layers + 1,), from 0 to thickness.
        zm: Cell midpoints, shape (n_layers,).
        dz: Uniform cell width (thickness / n_layers).
    """

    z: NDArray[np.float64]
    zm: NDArray[np.float64]
    dz: float

    @property
    def n_layers(self) -> int:
        """Number of depth cells."""
        return int(self.zm.size)

    @property
    def thickness(self) -> float:
        """Biofilm thickness (last boundary)."""
        return float(self.z[-1])


def build_grid(thickness: float, n_layers: int) -> BiofilmGrid:
    """Build the uniform depth grid for the current thickness.

    A zero thickness yields a valid grid whose boundaries, midpoints and width
    are all zero (biofilm not yet grown).

    Args:
        thickness: Current biofilm thickness, >= 0.
        n_layers: Number of depth cells, >= 1.

    Raises:
        ConfigurationError: If n_layers < 1 or thickness is negative/non-finite.

    Returns:
        BiofilmGrid for the given thickness.
    """
    n = int(n_layers)
    if n < 1:
        raise_configuration_error(field="n_layers", expected="an integer >= 1", got=n)
    lf = float(thickness)
    if not (np.isfinite(lf) and lf >= 0.0):
        raise_configuration_error(
            field="thickness",
            expected="a finite value >= 0",
            got=lf,
        )

    z = np.linspace(0.0, lf, n + 1, dtype=np.float64)
    zm = 0.5 * (z[:-1] + z[1:])
    return BiofilmGrid(z=z, zm=zm, dz=lf / n)
