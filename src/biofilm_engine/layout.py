# src/biofilm_engine/layout.py
"""Flat state-vector layout for the tank/biofilm system.

The stiff solver advances one contiguous 1D array. This module owns the
bookkeeping that maps the five logical fields of the model onto that array
and back:

    y = [Xt | St | Pb | Sb | Lf]

    Xt: tank particulates,            length n_particulates
    St: tank substrates,              length n_substrates
    Pb: biofilm particulate fractions, length n_particulates * n_layers
    Sb: biofilm substrate conc.,      length n_substrates * n_layers
    Lf: biofilm thickness,            length 1

Grid convention:
    Biofilm grids are (species, layer) arrays flattened in C order, so species
    ``j`` in layer ``i`` lives at offset ``j * n_layers + i`` inside its range.
    Pack, unpack and the initial-condition builder all follow this convention.

Trajectories follow the scipy convention: ``y`` has shape (n_var, n_times).
Unpacked trajectories are time-major.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import (
    LayoutMismatchError,
    raise_configuration_error,
    raise_layout_mismatch,
)

if TYPE_CHECKING:
    from .config import BiofilmParams


FloatArray = NDArray[np.float64]

_STATE_1D_ERROR = "Flat state must be 1D; got shape {shape}"
_TRAJECTORY_2D_ERROR = "Trajectory states must be 2D (n_var, n_times); got shape {shape}"


class UnpackedState(NamedTuple):
    """Typed view of one flat state vector.

    Attributes:
        xt: Tank particulates, shape (n_particulates,).
        st: Tank substrates, shape (n_substrates,).
        pb: Biofilm particulate fractions, shape (n_particulates, n_layers).
        sb: Biofilm substrate concentrations, shape (n_substrates, n_layers).
        lf: Biofilm thickness.
    """

    xt: FloatArray
    st: FloatArray
    pb: FloatArray
    sb: FloatArray
    lf: float


class UnpackedTrajectory(NamedTuple):
    """Time-major per-field arrays for a sequence of flat states.

    Attributes:
        t: Sample times, shape (n,).
        xt: Tank particulates, shape (n, n_particulates).
        st: Tank substrates, shape (n, n_substrates).
        pb: Biofilm particulate fractions, shape (n, n_particulates, n_layers).
        sb: Biofilm substrate conc., shape (n, n_substrates, n_layers).
        lf: Biofilm thickness, shape (n,).
    """

    t: FloatArray
    xt: FloatArray
    st: FloatArray
    pb: FloatArray
    sb: FloatArray
    lf: FloatArray


@dataclass(frozen=True, slots=True)
class StateLayout:
    """Index ranges of each logical field inside the flat state vector.

    Attributes:
        n_particulates: Number of particulate species (Nx).
        n_substrates: Number of substrate species (Ns).
        n_layers: Number of biofilm depth layers (Nz).
        xt: Range of tank particulates.
        st: Range of tank substrates.
        pb: Range of the biofilm particulate grid.
        sb: Range of the biofilm substrate grid.
        lf: Range of the biofilm thickness.
        n_var: Total length of the flat state vector.
    """

    n_particulates: int
    n_substrates: int
    n_layers: int
    xt: slice = field(init=False)
    st: slice = field(init=False)
    pb: slice = field(init=False)
    sb: slice = field(init=False)
    lf: slice = field(init=False)
    n_var: int = field(init=False)

    def __post_init__(self) -> None:
        counts = {
            "n_particulates": self.n_particulates,
            "n_substrates": self.n_substrates,
            "n_layers": self.n_layers,
        }
        for name, count in counts.items():
            if int(count) != count or count < 0:
                raise_configuration_error(
                    field=name,
                    expected="an integer >= 0",
                    got=count,
                )

        nx, ns, nz = self.n_particulates, self.n_substrates, self.n_layers
        offset = 0
        ranges: dict[str, slice] = {}
        for name, length in (
            ("xt", nx),
            ("st", ns),
            ("pb", nx * nz),
            ("sb", ns * nz),
            ("lf", 1),
        ):
            ranges[name] = slice(offset, offset + length)
            offset += length

        for name, rng in ranges.items():
            object.__setattr__(self, name, rng)
        object.__setattr__(self, "n_var", offset)

    @classmethod
    def from_counts(
        cls,
        n_particulates: int,
        n_substrates: int,
        n_layers: int,
    ) -> StateLayout:
        """Build the layout for the given field counts.

        Args:
            n_particulates: Number of particulate species.
            n_substrates: Number of substrate species.
            n_layers: Number of depth layers.

        Raises:
            ConfigurationError: If any count is negative.

        Returns:
            StateLayout instance.
        """
        return cls(int(n_particulates), int(n_substrates), int(n_layers))

    @classmethod
    def from_params(cls, params: BiofilmParams) -> StateLayout:
        """Build the layout for a run configuration."""
        return cls.from_counts(
            params.n_particulates,
            params.n_substrates,
            params.n_layers,
        )

    @property
    def ranges(self) -> tuple[slice, slice, slice, slice, slice]:
        """The five ranges in storage order (xt, st, pb, sb, lf)."""
        return (self.xt, self.st, self.pb, self.sb, self.lf)

    @property
    def pb_shape(self) -> tuple[int, int]:
        """Shape of the biofilm particulate grid."""
        return (self.n_particulates, self.n_layers)

    @property
    def sb_shape(self) -> tuple[int, int]:
        """Shape of the biofilm substrate grid."""
        return (self.n_substrates, self.n_layers)


def _range_len(rng: slice) -> int:
    return int(rng.stop - rng.start)


def _flat_piece(name: str, value: ArrayLike, rng: slice) -> FloatArray:
    arr = np.asarray(value, dtype=np.float64).ravel()
    expected = _range_len(rng)
    if arr.size != expected:
        raise_layout_mismatch(name=name, expected=expected, got=int(arr.size))
    return arr


def pack(
    layout: StateLayout,
    xt: ArrayLike,
    st: ArrayLike,
    pb: ArrayLike,
    sb: ArrayLike,
    lf: float | ArrayLike,
) -> FloatArray:
    """Concatenate the five fields into one flat state vector.

    Grid inputs may be flat or (species, layer) arrays; 2D inputs are
    flattened in C order. Only lengths are validated.

    Args:
        layout: State layout.
        xt: Tank particulates.
        st: Tank substrates.
        pb: Biofilm particulate grid.
        sb: Biofilm substrate grid.
        lf: Biofilm thickness (scalar or length-1 array).

    Raises:
        LayoutMismatchError: If any input length differs from its range.

    Returns:
        Flat state vector, shape (layout.n_var,).
    """
    out = np.empty(layout.n_var, dtype=np.float64)
    for name, value, rng in (
        ("xt", xt, layout.xt),
        ("st", st, layout.st),
        ("pb", pb, layout.pb),
        ("sb", sb, layout.sb),
        ("lf", lf, layout.lf),
    ):
        out[rng] = _flat_piece(name, value, rng)
    return out


def unpack(y: ArrayLike, layout: StateLayout) -> UnpackedState:
    """Split a flat state vector into its typed fields.

    The returned arrays are views into ``y`` whenever ``y`` is already a
    contiguous float64 array; callers must not write through them.

    Args:
        y: Flat state vector, shape (layout.n_var,).
        layout: State layout.

    Raises:
        LayoutMismatchError: If y is not 1D or its length differs from n_var.

    Returns:
        UnpackedState with grid fields shaped (species, layer).
    """
    arr = np.asarray(y, dtype=np.float64)
    if arr.ndim != 1:
        raise LayoutMismatchError(_STATE_1D_ERROR.format(shape=arr.shape))
    if arr.size != layout.n_var:
        raise_layout_mismatch(name="y", expected=layout.n_var, got=int(arr.size))

    return UnpackedState(
        xt=arr[layout.xt],
        st=arr[layout.st],
        pb=arr[layout.pb].reshape(layout.pb_shape),
        sb=arr[layout.sb].reshape(layout.sb_shape),
        lf=float(arr[layout.lf][0]),
    )


def unpack_trajectory(
    t: ArrayLike,
    y: ArrayLike,
    layout: StateLayout,
) -> UnpackedTrajectory:
    """Unpack a whole trajectory into time-major per-field arrays.

    Every returned array is a writable copy.

    Args:
        t: Sample times, shape (n,).
        y: Flat states, shape (layout.n_var, n).
        layout: State layout used to produce every sample.

    Raises:
        LayoutMismatchError: If the state dimension differs from layout.n_var
            or the number of samples differs from len(t).

    Returns:
        UnpackedTrajectory.
    """
    t_arr = np.array(t, dtype=np.float64).ravel()
    y_arr = np.asarray(y, dtype=np.float64)
    if y_arr.ndim != 2:  # noqa: PLR2004
        raise LayoutMismatchError(_TRAJECTORY_2D_ERROR.format(shape=y_arr.shape))
    if y_arr.shape[0] != layout.n_var:
        raise_layout_mismatch(
            name="trajectory state dimension",
            expected=layout.n_var,
            got=int(y_arr.shape[0]),
        )
    n = int(y_arr.shape[1])
    if t_arr.size != n:
        raise_layout_mismatch(name="trajectory times", expected=n, got=int(t_arr.size))

    nx, ns, nz = layout.n_particulates, layout.n_substrates, layout.n_layers
    return UnpackedTrajectory(
        t=t_arr,
        xt=y_arr[layout.xt].T.copy(),
        st=y_arr[layout.st].T.copy(),
        pb=y_arr[layout.pb].T.reshape(n, nx, nz).copy(),
        sb=y_arr[layout.sb].T.reshape(n, ns, nz).copy(),
        lf=y_arr[layout.lf][0].copy(),
    )


def initial_condition(params: BiofilmParams, layout: StateLayout) -> FloatArray:
    """Pack the initial condition of a run.

    The per-species biofilm values ``pb0``/``sb0`` are broadcast over every
    depth layer.

    Args:
        params: Run configuration.
        layout: Layout built from the same configuration.

    Returns:
        Flat initial state, shape (layout.n_var,).
    """
    ones = np.ones(layout.n_layers, dtype=np.float64)
    pb_grid = np.outer(np.asarray(params.pb0, dtype=np.float64), ones)
    sb_grid = np.outer(np.asarray(params.sb0, dtype=np.float64), ones)
    return pack(layout, params.xt0, params.st0, pb_grid, sb_grid, params.lf0)
