# src/biofilm_engine/outputs.py
"""Routing of solver state to printing/plotting sinks at scheduled instants.

The :class:`OutputDispatcher` is registered as a hook on the solver. At each
scheduled instant it classifies the time:

- major: t is a multiple of the output period -> values are emitted;
- title: t is a multiple of ten output periods -> a header precedes values;
- plot:  t is major, plotting is enabled and t is a multiple of the plot
         period -> the trajectory so far (plus an optional diagnostic field)
         is emitted.

Sinks are passed in explicitly; nothing here touches global logging or plot
configuration. Diagnostic and plot failures are logged and skipped so a
broken visualization hook can never halt the simulation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple, Protocol

import numpy as np

from .diagnostics import DiagnosticField, evaluate_diagnostic
from .errors import DiagnosticHookFailure
from .layout import UnpackedState, UnpackedTrajectory, unpack, unpack_trajectory

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from .config import BiofilmParams
    from .layout import StateLayout
    from .schedule import PeriodScheduler
    from .solver import Trajectory

logger = logging.getLogger(__name__)

TITLE_EVERY = 10

_PLOT_SINK_ERROR = "Plot sink failed at t={t}: {exc}"


class OutputKinds(NamedTuple):
    """Emissions due at one instant."""

    major: bool
    title: bool
    plot: bool


class OutputSink(Protocol):
    """Consumer of unpacked solver state."""

    def emit_titles(self, params: BiofilmParams) -> None:
        """Emit a header for the values table."""
        ...

    def emit_values(
        self,
        t: float,
        state: UnpackedState,
        params: BiofilmParams,
    ) -> None:
        """Emit one row of values for time t."""
        ...

    def emit_plot(
        self,
        series: UnpackedTrajectory,
        params: BiofilmParams,
        diagnostic: DiagnosticField | None,
    ) -> None:
        """Emit a visualization of the trajectory so far."""
        ...


class NullSink:
    """Sink that discards every emission."""

    def emit_titles(self, params: BiofilmParams) -> None:  # noqa: D102
        return

    def emit_values(  # noqa: D102
        self,
        t: float,
        state: UnpackedState,
        params: BiofilmParams,
    ) -> None:
        return

    def emit_plot(  # noqa: D102
        self,
        series: UnpackedTrajectory,
        params: BiofilmParams,
        diagnostic: DiagnosticField | None,
    ) -> None:
        return


class LoggingSink:
    """Sink writing a fixed-width values table through :mod:`logging`.

    Each row holds the time, tank concentrations, depth-averaged biofilm
    fractions and concentrations, and the thickness in micrometers. Plot
    emissions are logged as a one-line summary.
    """

    def __init__(
        self,
        log: logging.Logger | None = None,
        *,
        width: int = 12,
        level: int = logging.INFO,
    ) -> None:
        self.log = log or logger
        self.width = int(width)
        self.level = level

    def _row(self, cells: list[str]) -> str:
        return "".join(f"{c:>{self.width}}" for c in cells)

    def titles(self, params: BiofilmParams) -> list[str]:
        """Column titles matching :meth:`values`."""
        cells = ["Time"]
        cells += [f"{n}_t" for n in params.particulate_names]
        cells += [f"{n}_t" for n in params.substrate_names]
        cells += [f"{n}_b" for n in params.particulate_names]
        cells += [f"{n}_b" for n in params.substrate_names]
        cells.append("Lf[um]")
        return cells

    def values(self, t: float, state: UnpackedState) -> list[str]:
        """Formatted cells for one instant."""
        nums: list[float] = [t]
        nums += [float(v) for v in state.xt]
        nums += [float(v) for v in state.st]
        nums += [float(v) for v in np.mean(state.pb, axis=1)]
        nums += [float(v) for v in np.mean(state.sb, axis=1)]
        nums.append(state.lf * 1e6)
        return [f"{v:.4g}" for v in nums]

    def emit_titles(self, params: BiofilmParams) -> None:
        """Log the header row."""
        self.log.log(self.level, "%s", self._row(self.titles(params)))

    def emit_values(
        self,
        t: float,
        state: UnpackedState,
        params: BiofilmParams,  # noqa: ARG002
    ) -> None:
        """Log one values row."""
        self.log.log(self.level, "%s", self._row(self.values(t, state)))

    def emit_plot(
        self,
        series: UnpackedTrajectory,
        params: BiofilmParams,
        diagnostic: DiagnosticField | None,
    ) -> None:
        """Log a summary line in place of a figure."""
        mode = "none" if diagnostic is None else diagnostic.mode.value
        self.log.log(
            self.level,
            "%s : t = %.2f (%d samples, diagnostic=%s)",
            params.title,
            float(series.t[-1]),
            int(series.t.size),
            mode,
        )


class OutputDispatcher:
    """Solver hook forwarding unpacked state to an output sink."""

    def __init__(
        self,
        params: BiofilmParams,
        layout: StateLayout,
        scheduler: PeriodScheduler,
        sink: OutputSink | None = None,
    ) -> None:
        """Initialize OutputDispatcher.

        Args:
            params: Run configuration.
            layout: State layout of the run.
            scheduler: Scheduler used to classify instants.
            sink: Output sink; defaults to a LoggingSink.
        """
        self.params = params
        self.layout = layout
        self.scheduler = scheduler
        self.sink: OutputSink = sink if sink is not None else LoggingSink()
        self.failures: list[DiagnosticHookFailure] = []

    def classify(self, t: float) -> OutputKinds:
        """Return which emissions are due at time t.

        Args:
            t: Scheduled instant as handed back by the solver.

        Returns:
            OutputKinds flags.
        """
        out_period = self.params.out_period
        major = self.scheduler.is_multiple(t, out_period)
        title = major and self.scheduler.is_multiple(t, TITLE_EVERY * out_period)
        plot = (
            major
            and self.params.make_plots
            and self.scheduler.is_multiple(t, self.params.effective_plot_period)
        )
        return OutputKinds(major=major, title=title, plot=plot)

    def __call__(
        self,
        t: float,
        y: NDArray[np.floating],
        trajectory: Trajectory,
    ) -> None:
        """Emit whatever is due at time t.

        Args:
            t: Scheduled instant.
            y: Read-only flat state at t.
            trajectory: Trajectory accumulated so far (ends at t).
        """
        kinds = self.classify(t)
        if not kinds.major:
            return

        state = unpack(y, self.layout)
        if kinds.title:
            self.sink.emit_titles(self.params)
        self.sink.emit_values(t, state, self.params)
        if kinds.plot:
            self._emit_plot(t, state, trajectory)

    def _emit_plot(
        self,
        t: float,
        state: UnpackedState,
        trajectory: Trajectory,
    ) -> None:
        try:
            diagnostic = evaluate_diagnostic(self.params, state, t)
            series = unpack_trajectory(trajectory.t, trajectory.y, self.layout)
            try:
                self.sink.emit_plot(series, self.params, diagnostic)
            except Exception as exc:
                raise DiagnosticHookFailure(
                    _PLOT_SINK_ERROR.format(t=t, exc=exc)
                ) from exc
        except DiagnosticHookFailure as failure:
            self.failures.append(failure)
            logger.warning(
                "Skipping plot emission at t=%g: %s",
                t,
                failure,
                exc_info=failure.__cause__ is not None,
            )
