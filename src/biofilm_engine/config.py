# src/biofilm_engine/config.py
"""Run configuration for the tank/biofilm solver.

This module defines the pydantic model holding every parameter a run needs:
field counts, initial values, solver tolerance and horizon, the output,
discontinuity and plot periods, per-species densities, and the per-species
diagnostic hooks.

Notes:
    - Attributes are snake_case; the camel-case names of the legacy
      parameter struct (``Nx``, ``Xto``, ``outPeriod``, ``srcX``...) are
      accepted as aliases so existing parameter sets load unchanged.
    - The model is frozen. A run never mutates its configuration.
    - Type coercion is done by pydantic; the semantic checks that must fail
      fast with ConfigurationError live in :func:`check_parameters`.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import raise_configuration_error

StiffMethod = Literal["BDF", "Radau", "LSODA"]


class DiagnosticMode(str, Enum):
    """Optional derived field computed when a plot is emitted."""

    NONE = "none"
    GROWTH_RATE = "growthrate"
    SOURCE_TERM = "source"


_DIAGNOSTIC_ALIASES: dict[str, DiagnosticMode] = {
    "": DiagnosticMode.NONE,
    "none": DiagnosticMode.NONE,
    "growthrate": DiagnosticMode.GROWTH_RATE,
    "growth_rate": DiagnosticMode.GROWTH_RATE,
    "source": DiagnosticMode.SOURCE_TERM,
    "source_term": DiagnosticMode.SOURCE_TERM,
}


def _as_float_tuple(value: object) -> tuple[float, ...]:
    arr = np.atleast_1d(np.asarray(value, dtype=np.float64))
    return tuple(float(x) for x in arr.ravel())


class BiofilmParams(BaseModel):
    """Immutable configuration of one tank/biofilm run."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="forbid",
    )

    # Field counts
    n_particulates: int = Field(alias="Nx", description="Particulate species")
    n_substrates: int = Field(alias="Ns", description="Substrate species")
    n_layers: int = Field(alias="Nz", description="Biofilm depth layers")

    # Initial values
    xt0: tuple[float, ...] = Field(alias="Xto", description="Tank particulates")
    st0: tuple[float, ...] = Field(alias="Sto", description="Tank substrates")
    pb0: tuple[float, ...] = Field(
        alias="Pbo",
        description="Biofilm particulate volume fractions, one per species",
    )
    sb0: tuple[float, ...] = Field(
        alias="Sbo",
        description="Biofilm substrate concentrations, one per species",
    )
    lf0: float = Field(alias="Lfo", description="Initial biofilm thickness")

    # Solver controls
    tol: float = Field(default=1e-4, description="Shared rtol/atol")
    t_final: float = Field(alias="tFinal", description="Simulation horizon")
    method: StiffMethod = Field(default="BDF", description="Stiff solve_ivp method")

    # Scheduling
    out_period: float = Field(alias="outPeriod")
    discontinuity_period: float | None = Field(
        default=None,
        alias="discontinuityPeriod",
        description="Defaults to out_period when not given",
    )
    plot_period: float | None = Field(
        default=None,
        alias="plotPeriod",
        description="Defaults to out_period when not given",
    )
    make_plots: bool = Field(default=False, alias="makePlots")

    # Species properties and diagnostic hooks
    rho: tuple[float, ...] = Field(default=(), description="Particulate densities")
    src_x: tuple[Callable[..., Any], ...] = Field(default=(), alias="srcX")
    mu: Callable[..., Any] | None = Field(
        default=None,
        description="Biofilm growth-rate evaluator",
    )
    optional_plot: DiagnosticMode = Field(
        default=DiagnosticMode.NONE,
        alias="optionalPlot",
    )

    # Display metadata
    title: str = Field(default="Biofilm", alias="Title")
    x_names: tuple[str, ...] = Field(default=(), alias="XNames")
    s_names: tuple[str, ...] = Field(default=(), alias="SNames")
    plot_size: tuple[int, int] = Field(default=(1600, 1000), alias="plotSize")

    @field_validator("xt0", "st0", "pb0", "sb0", "rho", mode="before")
    @classmethod
    def _coerce_vector(cls, value: object) -> tuple[float, ...]:
        return _as_float_tuple(value)

    @field_validator("src_x", mode="before")
    @classmethod
    def _coerce_callables(cls, value: object) -> object:
        if callable(value):
            return (value,)
        return tuple(value)  # type: ignore[arg-type]

    @field_validator("optional_plot", mode="before")
    @classmethod
    def _coerce_mode(cls, value: object) -> object:
        if value is None:
            return DiagnosticMode.NONE
        if isinstance(value, str):
            key = value.strip().lower()
            if key in _DIAGNOSTIC_ALIASES:
                return _DIAGNOSTIC_ALIASES[key]
        return value

    @property
    def n_var(self) -> int:
        """Length of the flat state vector."""
        nx, ns, nz = self.n_particulates, self.n_substrates, self.n_layers
        return nx + ns + nx * nz + ns * nz + 1

    @property
    def effective_discontinuity_period(self) -> float:
        """Discontinuity period, falling back to the output period."""
        if self.discontinuity_period is None:
            return self.out_period
        return self.discontinuity_period

    @property
    def effective_plot_period(self) -> float:
        """Plot period, falling back to the output period."""
        if self.plot_period is None:
            return self.out_period
        return self.plot_period

    @property
    def particulate_names(self) -> tuple[str, ...]:
        """Display names for particulate species."""
        if self.x_names:
            return self.x_names
        return tuple(f"X{j + 1}" for j in range(self.n_particulates))

    @property
    def substrate_names(self) -> tuple[str, ...]:
        """Display names for substrate species."""
        if self.s_names:
            return self.s_names
        return tuple(f"S{j + 1}" for j in range(self.n_substrates))


def _check_length(field: str, values: tuple[Any, ...], expected: int) -> None:
    if len(values) != expected:
        raise_configuration_error(
            field=field,
            expected=f"{expected} value(s)",
            got=len(values),
        )


def _check_positive(field: str, value: float) -> None:
    if not (np.isfinite(value) and value > 0.0):
        raise_configuration_error(field=field, expected="a finite value > 0", got=value)


def check_parameters(p: BiofilmParams) -> None:
    """Validate a configuration before any integration starts.

    Args:
        p: Run configuration.

    Raises:
        ConfigurationError: On the first invalid or inconsistent field.
    """
    for field, count in (
        ("n_particulates", p.n_particulates),
        ("n_substrates", p.n_substrates),
    ):
        if count < 0:
            raise_configuration_error(field=field, expected="an integer >= 0", got=count)
    if p.n_layers < 1:
        raise_configuration_error(
            field="n_layers",
            expected="an integer >= 1",
            got=p.n_layers,
        )

    _check_length("xt0", p.xt0, p.n_particulates)
    _check_length("st0", p.st0, p.n_substrates)
    _check_length("pb0", p.pb0, p.n_particulates)
    _check_length("sb0", p.sb0, p.n_substrates)
    if not (np.isfinite(p.lf0) and p.lf0 >= 0.0):
        raise_configuration_error(field="lf0", expected="a finite value >= 0", got=p.lf0)

    _check_positive("tol", p.tol)
    _check_positive("t_final", p.t_final)
    _check_positive("out_period", p.out_period)
    _check_positive("discontinuity_period", p.effective_discontinuity_period)
    if p.make_plots:
        _check_positive("plot_period", p.effective_plot_period)

    if p.x_names:
        _check_length("x_names", p.x_names, p.n_particulates)
    if p.s_names:
        _check_length("s_names", p.s_names, p.n_substrates)
    if p.rho:
        _check_length("rho", p.rho, p.n_particulates)
    if p.src_x:
        _check_length("src_x", p.src_x, p.n_particulates)

    if p.optional_plot is DiagnosticMode.GROWTH_RATE:
        if p.mu is None:
            raise_configuration_error(
                field="mu",
                expected="a growth-rate callable when optional_plot='growthrate'",
                got=None,
            )
        _check_length("rho", p.rho, p.n_particulates)
    elif p.optional_plot is DiagnosticMode.SOURCE_TERM:
        _check_length("src_x", p.src_x, p.n_particulates)
        _check_length("rho", p.rho, p.n_particulates)
