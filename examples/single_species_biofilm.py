# biofilm_engine/examples/single_species_biofilm.py
"""Single-species Monod biofilm in a chemostat with a switched feed.

This example demonstrates the core API:

- BiofilmParams holds the run configuration (camel-case names work).
- The kinetics callable has the signature rhs(y, (params, layout), t) and uses
  unpack/pack to work with named blocks of the flat state.
- The feed concentration switches every ``discontinuityPeriod`` hours, so the
  solver is restarted exactly at each switch.
- A matplotlib sink saves a six-panel figure at every plot instant (no interactive
  windows) while the values table goes through logging.

The model:

    dXt/dt = (mu(St) - D) Xt + k_det Lf^2 rho A / V
    dSt/dt = D (S_in(t) - St) - mu(St) Xt / Y - J A / V
    dSb/dt = Diff d2Sb/dz2 - mu(Sb) rho Pb / Y,   Sb(top) = St, no flux at z=0
    dLf/dt = mean(mu(Sb) Pb) Lf - k_det Lf^2

with J the diffusive flux into the film through its top layer.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import matplotlib.pyplot as plt
import numpy as np

from biofilm_engine import (
    BiofilmParams,
    DiagnosticField,
    LoggingSink,
    UnpackedTrajectory,
    build_grid,
    pack,
    solve_biofilm,
    unpack,
)

_OUTPUT_DIR = Path(__file__).resolve().parent / "output" / "biofilm"

# Kinetic constants (hours, g/m^3, m)
MU_MAX = 2.0
K_S = 1.0
YIELD = 0.5
DILUTION = 0.5
DIFFUSIVITY = 4.0e-6
K_DET = 1900.0
AREA_PER_VOLUME = 100.0
FEED_HIGH = 25.0
FEED_LOW = 5.0


def monod(s: np.ndarray) -> np.ndarray:
    """Monod specific growth rate."""
    return MU_MAX * s / (K_S + s)


def feed(t: float, period: float) -> float:
    """Inflow substrate, switching between high and low every period."""
    return FEED_HIGH if int(t // period) % 2 == 0 else FEED_LOW


def biofilm_rhs(y: np.ndarray, context: tuple[Any, Any], t: float) -> np.ndarray:
    """Kinetics of the tank and the layered biofilm.

    Args:
        y: Flat state.
        context: (params, layout) pair handed in by the solver.
        t: Current time.

    Returns:
        Flat time derivative with the same layout as y.
    """
    params, layout = context
    state = unpack(y, layout)
    rho = params.rho[0]
    lf = max(state.lf, 1e-12)
    dz = lf / layout.n_layers

    xt, st = state.xt[0], state.st[0]
    pb, sb = state.pb[0], state.sb[0]

    # Substrate diffusion with no flux at the substratum and St above the top layer
    padded = np.concatenate(([sb[0]], sb, [st]))
    laplacian = (padded[2:] - 2.0 * sb + padded[:-2]) / dz**2
    growth = monod(np.clip(sb, 0.0, None))
    dsb = DIFFUSIVITY * laplacian - growth * rho * pb / YIELD

    flux = DIFFUSIVITY * (st - sb[-1]) / (0.5 * dz)
    detach = K_DET * lf**2

    dxt = (monod(max(st, 0.0)) - DILUTION) * xt + detach * rho * AREA_PER_VOLUME
    dst = (
        DILUTION * (feed(t, params.effective_discontinuity_period) - st)
        - monod(max(st, 0.0)) * xt / YIELD
        - flux * AREA_PER_VOLUME
    )
    dlf = float(np.mean(growth * pb)) * lf - detach

    return pack(
        layout,
        xt=[dxt],
        st=[dst],
        pb=np.zeros_like(state.pb),
        sb=dsb.reshape(1, -1),
        lf=dlf,
    )


def substrate_source(
    s: np.ndarray,
    x: np.ndarray,
    _t: float,
    _params: Any,
) -> list[float]:
    """Net substrate consumption rate for one layer."""
    return [float(-monod(np.clip(s, 0.0, None))[0] * x[0] / YIELD)]


def pad_ylim(ax: plt.Axes, values: np.ndarray, frac: float = 0.05) -> None:
    """Set y-limits with a small margin around finite values.

    Args:
        ax: Target axes.
        values: Plotted values.
        frac: Margin as a fraction of the data range.
    """
    finite = np.asarray(values, dtype=float)
    finite = finite[np.isfinite(finite)]
    if finite.size == 0:
        return
    lo, hi = float(np.min(finite)), float(np.max(finite))
    pad = frac * (hi - lo) if hi > lo else frac * max(abs(hi), 1.0)
    ax.set_ylim(lo - pad, hi + pad)


class FigureSink(LoggingSink):
    """LoggingSink that also saves a figure at every plot instant."""

    def __init__(self, out_dir: Path, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.out_dir = out_dir
        self.count = 0

    def emit_plot(
        self,
        series: UnpackedTrajectory,
        params: BiofilmParams,
        diagnostic: DiagnosticField | None,
    ) -> None:
        """Save the six-panel tank/biofilm figure to a PNG file.

        Panels: tank particulates, tank substrates and thickness over time;
        biofilm particulates, biofilm substrates and the diagnostic field
        over depth. Every species is drawn.
        """
        grid = build_grid(max(0.0, float(series.lf[-1])), params.n_layers)
        depth = grid.zm * 1e6
        width, height = params.plot_size
        fig, axes = plt.subplots(2, 3, figsize=(width / 100.0, height / 100.0))

        ax = axes[0, 0]
        for j, name in enumerate(params.particulate_names):
            ax.plot(series.t, series.xt[:, j], label=name)
        pad_ylim(ax, series.xt)
        ax.set_xlabel("Time [h]")
        ax.set_ylabel("Tank particulates [g/m3]")

        ax = axes[0, 1]
        for j, name in enumerate(params.substrate_names):
            ax.plot(series.t, series.st[:, j], label=name)
        pad_ylim(ax, series.st)
        ax.set_xlabel("Time [h]")
        ax.set_ylabel("Tank substrates [g/m3]")

        ax = axes[0, 2]
        ax.plot(series.t, series.lf * 1e6, label="Lf")
        pad_ylim(ax, series.lf * 1e6)
        ax.set_xlabel("Time [h]")
        ax.set_ylabel("Thickness [um]")

        ax = axes[1, 0]
        for j, name in enumerate(params.particulate_names):
            ax.plot(depth, series.pb[-1, j, :], marker="o", label=name)
        pad_ylim(ax, series.pb[-1])
        ax.set_xlabel("Depth [um]")
        ax.set_ylabel("Particulate volume fraction [-]")

        ax = axes[1, 1]
        for j, name in enumerate(params.substrate_names):
            ax.plot(depth, series.sb[-1, j, :], marker="o", label=name)
        pad_ylim(ax, series.sb[-1])
        ax.set_xlabel("Depth [um]")
        ax.set_ylabel("Biofilm substrates [g/m3]")

        ax = axes[1, 2]
        if diagnostic is not None:
            for j, name in enumerate(params.particulate_names):
                ax.plot(depth, diagnostic.values[j], marker="s", label=name)
            pad_ylim(ax, diagnostic.values)
            ax.set_ylabel(diagnostic.mode.value)
        ax.set_xlabel("Depth [um]")

        for ax in axes.flat:
            if ax.get_legend_handles_labels()[0]:
                ax.legend()
            ax.grid(visible=True)

        fig.suptitle(f"{params.title} : t = {float(series.t[-1]):.2f} h")
        fig.tight_layout()

        self.out_dir.mkdir(parents=True, exist_ok=True)
        fig.savefig(self.out_dir / f"biofilm_{self.count:03d}.png", dpi=100)
        plt.close(fig)
        self.count += 1


def main() -> None:
    """Run a 96 hour switched-feed biofilm simulation and save figures.

    Files are written to: examples/output/biofilm/
    """
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    params = BiofilmParams.model_validate(
        {
            "Title": "Single-species biofilm",
            "Nx": 1,
            "Ns": 1,
            "Nz": 20,
            "Xto": [10.0],
            "Sto": [25.0],
            "Pbo": [0.2],
            "Sbo": [0.0],
            "Lfo": 5.0e-6,
            "tol": 1e-6,
            "tFinal": 96.0,
            "outPeriod": 4.0,
            "discontinuityPeriod": 12.0,
            "plotPeriod": 24.0,
            "makePlots": True,
            "rho": [2.5e5],
            "srcX": [substrate_source],
            "optionalPlot": "source",
            "XNames": ["Heterotroph"],
            "SNames": ["Glucose"],
        }
    )

    result = solve_biofilm(params, biofilm_rhs, sink=FigureSink(_OUTPUT_DIR))
    logging.getLogger(__name__).info(
        "Final thickness %.2f um over %d layers (top midpoint %.2f um)",
        result.lf[-1] * 1e6,
        result.zm.size,
        result.zm[-1] * 1e6,
    )


if __name__ == "__main__":
    main()
