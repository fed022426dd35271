# src/biofilm_engine/solver.py
"""Stiff integration driver for the coupled tank/biofilm system.

The solver packs the initial condition, then advances the flat state through
every scheduled instant of a :class:`PeriodScheduler`. Between two consecutive
instants it runs one adaptive stiff solve (``scipy.integrate.solve_ivp``) whose
last step lands exactly on the next instant. Consequently:

- the adaptive stepper chooses its own internal steps inside each interval,
- no scheduled instant is ever stepped over, so step-size selection restarts
  right after each possible discontinuity of the kinetics,
- every hook fires exactly once per instant (including t = 0).

Hooks run synchronously between segments with a read-only view of the state.
The output dispatcher is the default hook; callers may register more.

Kinetics contract:
    rhs(y, (params, layout), t) -> dy/dt, same length as y.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple, TypeAlias

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.integrate import solve_ivp

from .config import BiofilmParams, check_parameters
from .errors import IntegrationFailure, LayoutMismatchError
from .grid import build_grid
from .layout import StateLayout, initial_condition, unpack_trajectory
from .outputs import OutputDispatcher
from .schedule import PeriodScheduler, build_scheduler

if TYPE_CHECKING:
    from .outputs import OutputSink

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.float64]
RHSContext: TypeAlias = tuple[BiofilmParams, StateLayout]
RHSFunction: TypeAlias = Callable[[FloatArray, RHSContext, float], ArrayLike]


# =============================================================================
# Errors / messages
# =============================================================================

_RHS_SHAPE_ERROR_MSG = "rhs returned shape {actual}; expected {expected}"
_SEGMENT_FAILED_MSG = (
    "Integration failed on segment [{t0:g}, {t1:g}] after reaching t={t_last:g}: "
    "{message}"
)


# =============================================================================
# Trajectory
# =============================================================================


@dataclass(slots=True)
class Trajectory:
    """Accumulated solver samples.

    States are stored column-wise (scipy convention). Segments are appended as
    chunks and consolidated lazily on access. The sample arrays are exposed as
    read-only views, so hooks receiving the trajectory cannot alter the
    samples a run returns.

    Attributes:
        n_var: Length of the flat state vector.
        instants: Scheduled instants reached so far.
        nfev: Number of RHS evaluations.
        njev: Number of Jacobian evaluations.
        nlu: Number of LU decompositions.
        status: Final solver status (0 on success).
        message: Final solver message.
    """

    n_var: int
    instants: list[float] = field(default_factory=list)
    nfev: int = 0
    njev: int = 0
    nlu: int = 0
    status: int = 0
    message: str = ""
    _t_chunks: list[FloatArray] = field(default_factory=list)
    _y_chunks: list[FloatArray] = field(default_factory=list)

    def append(self, t: ArrayLike, y: ArrayLike) -> None:
        """Append samples t (n,) and states y (n_var, n)."""
        t_arr = np.asarray(t, dtype=np.float64).ravel()
        y_arr = np.asarray(y, dtype=np.float64).reshape(self.n_var, t_arr.size)
        if t_arr.size == 0:
            return
        self._t_chunks.append(t_arr)
        self._y_chunks.append(y_arr)

    def _consolidate(self) -> None:
        if len(self._t_chunks) > 1:
            self._t_chunks[:] = [np.concatenate(self._t_chunks)]
            self._y_chunks[:] = [np.concatenate(self._y_chunks, axis=1)]

    @property
    def t(self) -> FloatArray:
        """Sample times, shape (n,), read-only."""
        if not self._t_chunks:
            return np.zeros(0, dtype=np.float64)
        self._consolidate()
        return _read_only(self._t_chunks[0])

    @property
    def y(self) -> FloatArray:
        """Flat states, shape (n_var, n), read-only."""
        if not self._y_chunks:
            return np.zeros((self.n_var, 0), dtype=np.float64)
        self._consolidate()
        return _read_only(self._y_chunks[0])

    @property
    def t_last(self) -> float:
        """Last sample time."""
        return float(self._t_chunks[-1][-1])

    @property
    def y_last(self) -> FloatArray:
        """Last flat state (read-only view)."""
        return _read_only(self._y_chunks[-1][:, -1])


Hook: TypeAlias = Callable[[float, FloatArray, Trajectory], None]


class BiofilmRun(NamedTuple):
    """Result of a full run.

    Attributes:
        t: Sample times, shape (n,).
        zm: Final biofilm depth midpoints, shape (n_layers,).
        xt: Tank particulates, shape (n, n_particulates).
        st: Tank substrates, shape (n, n_substrates).
        pb: Biofilm particulate fractions, shape (n, n_particulates, n_layers).
        sb: Biofilm substrate conc., shape (n, n_substrates, n_layers).
        lf: Biofilm thickness, shape (n,).
        trajectory: Raw accumulated trajectory.
    """

    t: FloatArray
    zm: FloatArray
    xt: FloatArray
    st: FloatArray
    pb: FloatArray
    sb: FloatArray
    lf: FloatArray
    trajectory: Trajectory


def _read_only(y: FloatArray) -> FloatArray:
    view = y.view()
    view.flags.writeable = False
    return view


# =============================================================================
# BiofilmSolver
# =============================================================================


class BiofilmSolver:
    """Stiff driver advancing the flat tank/biofilm state between instants."""

    def __init__(
        self,
        params: BiofilmParams,
        rhs: RHSFunction,
        *,
        sink: OutputSink | None = None,
        hooks: Sequence[Hook] = (),
        dispatch: bool = True,
    ) -> None:
        """Initialize BiofilmSolver.

        Args:
            params: Run configuration; validated immediately.
            rhs: Kinetics function rhs(y, (params, layout), t) -> dy.
            sink: Output sink for the dispatcher (LoggingSink if None).
            hooks: Extra hooks called at every instant after the dispatcher.
            dispatch: Whether to register the OutputDispatcher hook.

        Raises:
            ConfigurationError: If the configuration is invalid.
        """
        check_parameters(params)
        self.params = params
        self.rhs = rhs
        self.layout = StateLayout.from_params(params)
        self.scheduler: PeriodScheduler = build_scheduler(
            params.out_period,
            params.effective_discontinuity_period,
            params.t_final,
        )

        self.hooks: list[Hook] = []
        self.dispatcher: OutputDispatcher | None = None
        if dispatch:
            self.dispatcher = OutputDispatcher(
                params,
                self.layout,
                self.scheduler,
                sink=sink,
            )
            self.hooks.append(self.dispatcher)
        self.hooks.extend(hooks)

    def add_hook(self, hook: Hook) -> None:
        """Register a hook called at every scheduled instant."""
        self.hooks.append(hook)

    def _rhs_for_scipy(self) -> Callable[[float, FloatArray], FloatArray]:
        """Adapt the kinetics callable to scipy's fun(t, y) signature."""
        context: RHSContext = (self.params, self.layout)
        rhs = self.rhs

        def fun(t: float, y: FloatArray) -> FloatArray:
            dy = np.asarray(rhs(y, context, t), dtype=np.float64)
            if dy.shape != y.shape:
                raise LayoutMismatchError(
                    _RHS_SHAPE_ERROR_MSG.format(actual=dy.shape, expected=y.shape)
                )
            return dy

        return fun

    def _fire(self, t: float, y: FloatArray, trajectory: Trajectory) -> None:
        trajectory.instants.append(t)
        view = _read_only(y)
        for hook in self.hooks:
            hook(t, view, trajectory)

    def _advance(
        self,
        fun: Callable[[float, FloatArray], FloatArray],
        t0: float,
        t1: float,
        y0: FloatArray,
        trajectory: Trajectory,
    ) -> FloatArray:
        """Integrate [t0, t1] and append the accepted steps.

        Raises:
            IntegrationFailure: If the solver reports failure.

        Returns:
            State at t1.
        """
        tol = self.params.tol
        sol = solve_ivp(
            fun,
            (t0, t1),
            y0,
            method=self.params.method,
            rtol=tol,
            atol=tol,
        )
        trajectory.nfev += int(sol.nfev)
        trajectory.njev += int(sol.njev)
        trajectory.nlu += int(sol.nlu)
        trajectory.append(sol.t[1:], sol.y[:, 1:])

        if not sol.success:
            trajectory.status = int(sol.status)
            trajectory.message = str(sol.message)
            t_last = trajectory.t_last
            raise IntegrationFailure(
                _SEGMENT_FAILED_MSG.format(
                    t0=t0,
                    t1=t1,
                    t_last=t_last,
                    message=sol.message,
                ),
                t_last=t_last,
                y_last=trajectory.y_last.copy(),
                status=int(sol.status),
            )
        return trajectory.y_last.copy()

    def run(self) -> BiofilmRun:
        """Integrate from 0 to t_final through every scheduled instant.

        Raises:
            IntegrationFailure: If a segment cannot be integrated.
            LayoutMismatchError: If rhs returns a vector of the wrong length.

        Returns:
            BiofilmRun with unpacked trajectories and the final depth grid.
        """
        params = self.params
        layout = self.layout
        ticks = list(self.scheduler.ticks())
        logger.info(
            "Starting solver: n_var=%d, %d scheduled instants, t_final=%g, method=%s",
            layout.n_var,
            len(ticks),
            params.t_final,
            params.method,
        )

        fun = self._rhs_for_scipy()
        y = initial_condition(params, layout)
        trajectory = Trajectory(n_var=layout.n_var)
        trajectory.append(np.array([ticks[0].time]), y.reshape(-1, 1))
        self._fire(ticks[0].time, y, trajectory)

        for prev, tick in zip(ticks[:-1], ticks[1:], strict=True):
            y = self._advance(fun, prev.time, tick.time, y, trajectory)
            logger.debug("Reached t=%g (nfev=%d)", tick.time, trajectory.nfev)
            self._fire(tick.time, y, trajectory)

        trajectory.status = 0
        trajectory.message = "The solver successfully reached the end of the span."
        logger.info(
            "Solver finished at t=%g: %d samples, %d rhs evaluations",
            trajectory.t_last,
            trajectory.t.size,
            trajectory.nfev,
        )

        series = unpack_trajectory(trajectory.t, trajectory.y, layout)
        # the kinetics may drive the thickness slightly below zero
        grid = build_grid(max(0.0, float(series.lf[-1])), layout.n_layers)
        return BiofilmRun(
            t=series.t,
            zm=grid.zm,
            xt=series.xt,
            st=series.st,
            pb=series.pb,
            sb=series.sb,
            lf=series.lf,
            trajectory=trajectory,
        )


def solve_biofilm(
    params: BiofilmParams,
    rhs: RHSFunction,
    *,
    sink: OutputSink | None = None,
    hooks: Sequence[Hook] = (),
) -> BiofilmRun:
    """Build a BiofilmSolver and run it.

    Args:
        params: Run configuration.
        rhs: Kinetics function rhs(y, (params, layout), t) -> dy.
        sink: Output sink (LoggingSink if None).
        hooks: Extra hooks called at every scheduled instant.

    Returns:
        BiofilmRun.
    """
    return BiofilmSolver(params, rhs, sink=sink, hooks=hooks).run()
