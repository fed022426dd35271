# src/biofilm_engine/diagnostics.py
"""Growth-rate and source-term diagnostics on the biofilm grid.

These evaluators are only used to build optional derived fields when a plot
is emitted; the integration itself never calls them. Hook failures are
re-raised as :class:`DiagnosticHookFailure` so the output dispatcher can
isolate them from the running simulation.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, NamedTuple, Protocol

import numpy as np
from numpy.typing import NDArray

from .config import DiagnosticMode
from .errors import DiagnosticHookFailure
from .grid import BiofilmGrid, build_grid

if TYPE_CHECKING:
    from .config import BiofilmParams
    from .layout import UnpackedState

FloatArray = NDArray[np.float64]

_GROWTH_SHAPE_ERROR = "Growth-rate evaluator returned shape {actual}; expected {expected}"
_GROWTH_HOOK_ERROR = "Growth-rate evaluator failed at t={t}: {exc}"
_SOURCE_HOOK_ERROR = "Source term for species {j} failed at t={t}, layer {i}: {exc}"
_SOURCE_EMPTY_ERROR = "Source term for species {j} returned no value"


class GrowthRateEvaluator(Protocol):
    """Biofilm growth rates, one value per (species, layer)."""

    def __call__(
        self,
        sb: FloatArray,
        xb: FloatArray,
        lf: float,
        t: float,
        params: BiofilmParams,
        grid: BiofilmGrid,
    ) -> NDArray[np.floating]:
        """Return growth rates, shape (n_particulates, n_layers)."""
        ...


class SourceTermEvaluator(Protocol):
    """Source term of one particulate species in one layer."""

    def __call__(
        self,
        s: FloatArray,
        x: FloatArray,
        t: float,
        params: BiofilmParams,
    ) -> float | Sequence[float] | NDArray[np.floating]:
        """Return the source value (scalar, or first element is used)."""
        ...


class DiagnosticField(NamedTuple):
    """Derived field produced for a plot emission.

    Attributes:
        mode: Diagnostic that produced the values.
        values: Grid of shape (n_particulates, n_layers).
    """

    mode: DiagnosticMode
    values: FloatArray


def particulate_concentrations(
    pb: NDArray[np.floating],
    rho: Sequence[float],
) -> FloatArray:
    """Convert particulate volume fractions to concentrations.

    Args:
        pb: Volume fractions, shape (n_particulates, n_layers).
        rho: Density per particulate species.

    Returns:
        Concentrations rho[j] * pb[j, :], same shape as pb.
    """
    rho_arr = np.asarray(rho, dtype=np.float64).reshape(-1, 1)
    return rho_arr * np.asarray(pb, dtype=np.float64)


def growth_rate_grid(
    params: BiofilmParams,
    state: UnpackedState,
    t: float,
    grid: BiofilmGrid | None = None,
) -> FloatArray:
    """Evaluate the growth-rate hook over the biofilm grid.

    Args:
        params: Run configuration (must carry ``mu`` and ``rho``).
        state: Unpacked state at time t.
        t: Current time.
        grid: Depth grid; rebuilt from state.lf when not given.

    Raises:
        DiagnosticHookFailure: If the hook is missing or raises, if the grid
            cannot be built for state.lf, or if the result is not numeric or has
            the wrong shape.

    Returns:
        Growth rates, shape (n_particulates, n_layers).
    """
    if params.mu is None:
        raise DiagnosticHookFailure(
            _GROWTH_HOOK_ERROR.format(t=t, exc="no growth-rate evaluator configured")
        )
    try:
        if grid is None:
            grid = build_grid(state.lf, params.n_layers)
        xb = particulate_concentrations(state.pb, params.rho)
        mu = params.mu(state.sb, xb, state.lf, t, params, grid)
        mu_arr = np.asarray(mu, dtype=np.float64)
    except Exception as exc:
        raise DiagnosticHookFailure(_GROWTH_HOOK_ERROR.format(t=t, exc=exc)) from exc

    if mu_arr.shape != state.pb.shape:
        raise DiagnosticHookFailure(
            _GROWTH_SHAPE_ERROR.format(actual=mu_arr.shape, expected=state.pb.shape)
        )
    return mu_arr


def _first_value(value: object, j: int) -> float:
    flat = np.ravel(np.asarray(value, dtype=np.float64))
    if flat.size == 0:
        raise DiagnosticHookFailure(_SOURCE_EMPTY_ERROR.format(j=j))
    return float(flat[0])


def source_term_grid(
    params: BiofilmParams,
    state: UnpackedState,
    t: float,
) -> FloatArray:
    """Evaluate every per-species source term in every layer.

    Species ``j`` in layer ``i`` is evaluated as
    ``src_x[j](sb[:, i], pb[:, i] * rho[j], t, params)``.

    Args:
        params: Run configuration (must carry ``src_x`` and ``rho``).
        state: Unpacked state at time t.
        t: Current time.

    Raises:
        DiagnosticHookFailure: If any hook raises, or returns no value or a
            value that is not numeric.

    Returns:
        Source terms, shape (n_particulates, n_layers).
    """
    nx, nz = state.pb.shape
    out = np.zeros((nx, nz), dtype=np.float64)
    for i in range(nz):
        for j in range(nx):
            try:
                s_layer = state.sb[:, i]
                x_layer = state.pb[:, i] * params.rho[j]
                value = params.src_x[j](s_layer, x_layer, t, params)
                out[j, i] = _first_value(value, j)
            except DiagnosticHookFailure:
                raise
            except Exception as exc:
                raise DiagnosticHookFailure(
                    _SOURCE_HOOK_ERROR.format(j=j, t=t, i=i, exc=exc)
                ) from exc
    return out


def evaluate_diagnostic(
    params: BiofilmParams,
    state: UnpackedState,
    t: float,
) -> DiagnosticField | None:
    """Compute the derived field selected by ``params.optional_plot``.

    Args:
        params: Run configuration.
        state: Unpacked state at time t.
        t: Current time.

    Raises:
        DiagnosticHookFailure: If the selected evaluator fails.

    Returns:
        DiagnosticField, or None when no diagnostic is requested.
    """
    mode = params.optional_plot
    if mode is DiagnosticMode.GROWTH_RATE:
        return DiagnosticField(mode, growth_rate_grid(params, state, t))
    if mode is DiagnosticMode.SOURCE_TERM:
        return DiagnosticField(mode, source_term_grid(params, state, t))
    return None
