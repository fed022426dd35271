# tests/test_solver.py
"""Contract tests for biofilm_engine.solver.BiofilmSolver.

These tests focus on run() semantics:

- every scheduled instant is hit exactly and appears in the trajectory,
- hooks fire once per instant with a read-only state view,
- the kinetics callable receives (y, (params, layout), t),
- failures surface as LayoutMismatchError / IntegrationFailure,
- the returned BiofilmRun exposes unpacked arrays and the final grid.
"""

from __future__ import annotations

import logging
from types import SimpleNamespace
from typing import Any

import numpy as np
import pytest

from biofilm_engine import solver as solver_mod
from biofilm_engine.errors import (
    ConfigurationError,
    IntegrationFailure,
    LayoutMismatchError,
)
from biofilm_engine.layout import StateLayout, unpack
from biofilm_engine.outputs import NullSink
from biofilm_engine.solver import BiofilmSolver, Trajectory, solve_biofilm

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _zero_rhs(y: np.ndarray, _context: Any, _t: float) -> np.ndarray:
    return np.zeros_like(y)


class CountingSink:
    """Sink counting emissions by kind and recording value times."""

    def __init__(self) -> None:
        self.titles = 0
        self.value_times: list[float] = []
        self.plots = 0

    def emit_titles(self, _params: Any) -> None:
        self.titles += 1

    def emit_values(self, t: float, _state: Any, _params: Any) -> None:
        self.value_times.append(t)

    def emit_plot(self, *_args: Any) -> None:
        self.plots += 1


class InstantRecorder:
    """Hook recording (t, unpacked state, writeable flag) at every instant."""

    def __init__(self, layout: StateLayout) -> None:
        self.layout = layout
        self.times: list[float] = []
        self.states: list[Any] = []
        self.writeable: list[bool] = []

    def __call__(self, t: float, y: np.ndarray, _trajectory: Trajectory) -> None:
        self.times.append(t)
        self.states.append(unpack(y.copy(), self.layout))
        self.writeable.append(bool(y.flags.writeable))


# -----------------------------------------------------------------------------
# End-to-end scenario
# -----------------------------------------------------------------------------


def test_zero_kinetics_end_to_end(make_params) -> None:  # noqa: ANN001
    """Steady state under zero derivative, instants {0..6}, final grid of 3."""
    params = make_params()  # Nx=Ns=1, Nz=3, Lfo=10, tFinal=6, out=2, disc=3
    solver = BiofilmSolver(params, _zero_rhs, sink=NullSink())
    recorder = InstantRecorder(solver.layout)
    solver.add_hook(recorder)

    result = solver.run()

    np.testing.assert_array_equal(solver.scheduler.instants, np.arange(7.0))
    assert recorder.times == [0.0, 1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    assert all(state.lf == 10.0 for state in recorder.states)

    np.testing.assert_allclose(result.lf, 10.0)
    np.testing.assert_allclose(result.zm, [10.0 / 6.0, 5.0, 50.0 / 6.0])
    np.testing.assert_allclose(result.zm, [1.667, 5.0, 8.333], atol=1e-3)
    assert result.t[0] == 0.0
    assert result.t[-1] == 6.0
    assert result.trajectory.instants == recorder.times
    assert result.trajectory.status == 0


def test_result_shapes_and_tuple_order(make_params) -> None:  # noqa: ANN001
    """BiofilmRun unpacks as (t, zm, Xt, St, Pb, Sb, Lf, trajectory)."""
    params = make_params(
        Nx=2,
        Ns=3,
        Nz=4,
        Xto=[1.0, 2.0],
        Sto=[1.0, 2.0, 3.0],
        Pbo=[0.1, 0.2],
        Sbo=[4.0, 5.0, 6.0],
    )
    t, zm, xt, st, pb, sb, lf, trajectory = solve_biofilm(
        params,
        _zero_rhs,
        sink=NullSink(),
    )

    n = t.size
    assert zm.shape == (4,)
    assert xt.shape == (n, 2)
    assert st.shape == (n, 3)
    assert pb.shape == (n, 2, 4)
    assert sb.shape == (n, 3, 4)
    assert lf.shape == (n,)
    assert trajectory.y.shape == (params.n_var, n)
    np.testing.assert_allclose(pb[-1], [[0.1] * 4, [0.2] * 4])


# -----------------------------------------------------------------------------
# Scheduled instants and hooks
# -----------------------------------------------------------------------------


def test_every_instant_is_a_trajectory_sample(make_params) -> None:  # noqa: ANN001
    """No scheduled instant is stepped over by the adaptive solver."""
    params = make_params(tFinal=10.5, outPeriod=1.5, discontinuityPeriod=2.5)

    def decay(y: np.ndarray, _ctx: Any, _t: float) -> np.ndarray:
        return -0.3 * y

    result = solve_biofilm(params, decay, sink=NullSink())

    instants = BiofilmSolver(params, decay, sink=NullSink()).scheduler.instants
    np.testing.assert_array_equal(instants, np.arange(0.0, 11.0, 0.5))
    assert np.all(np.isin(instants, result.t))
    assert np.all(np.diff(result.t) > 0.0)


def test_linear_decay_matches_analytic_at_instants(make_params) -> None:  # noqa: ANN001
    """A stiff linear system is integrated accurately through every segment."""
    params = make_params(tol=1e-9, Lfo=2.0)
    rates = np.linspace(0.1, 50.0, params.n_var)

    def decay(y: np.ndarray, _ctx: Any, _t: float) -> np.ndarray:
        return -rates * y

    solver = BiofilmSolver(params, decay, sink=NullSink())
    seen: dict[float, np.ndarray] = {}
    solver.add_hook(lambda t, y, _tr: seen.__setitem__(t, y.copy()))
    result = solver.run()

    y0 = result.trajectory.y[:, 0]
    for t, y in seen.items():
        np.testing.assert_allclose(y, y0 * np.exp(-rates * t), rtol=1e-4, atol=1e-6)


def test_hooks_get_read_only_views(make_params) -> None:  # noqa: ANN001
    """Hooks cannot write into the solver state."""
    params = make_params()
    attempts: list[type[BaseException]] = []

    def vandal(_t: float, y: np.ndarray, _tr: Trajectory) -> None:
        try:
            y[0] = -1.0
        except ValueError as exc:
            attempts.append(type(exc))

    solver = BiofilmSolver(params, _zero_rhs, sink=NullSink(), hooks=[vandal])
    result = solver.run()

    assert len(attempts) == 7
    np.testing.assert_allclose(result.xt, 1.0)


def test_hook_trajectory_ends_at_instant(make_params) -> None:  # noqa: ANN001
    """The trajectory handed to hooks ends at the current instant."""
    params = make_params()
    last_times: list[float] = []

    def hook(t: float, _y: np.ndarray, tr: Trajectory) -> None:
        last_times.append(tr.t_last)
        assert tr.t_last == t

    BiofilmSolver(params, _zero_rhs, sink=NullSink(), hooks=[hook]).run()
    assert last_times == [0.0, 1.0, 2.0, 3.0, 4.0, 5.0, 6.0]


def test_rhs_receives_params_layout_and_time(make_params) -> None:  # noqa: ANN001
    """The kinetics callable is invoked with (y, (params, layout), t)."""
    params = make_params()
    contexts: list[Any] = []
    times: list[float] = []

    def rhs(y: np.ndarray, context: Any, t: float) -> np.ndarray:
        contexts.append(context)
        times.append(t)
        return np.zeros_like(y)

    solver = BiofilmSolver(params, rhs, sink=NullSink())
    solver.run()

    assert contexts
    p, layout = contexts[0]
    assert p is params
    assert layout is solver.layout
    assert min(times) >= 0.0
    assert max(times) <= 6.0


def test_dispatcher_emits_on_output_period(make_params) -> None:  # noqa: ANN001
    """Values at every output period, titles every ten periods."""
    params = make_params(tFinal=24.0, outPeriod=2.0, discontinuityPeriod=3.0)
    sink = CountingSink()
    BiofilmSolver(params, _zero_rhs, sink=sink).run()

    assert sink.value_times == [float(t) for t in range(0, 25, 2)]
    assert sink.titles == 2  # t = 0 and t = 20
    assert sink.plots == 0


def test_dispatch_disabled(make_params) -> None:  # noqa: ANN001
    """dispatch=False registers no dispatcher."""
    solver = BiofilmSolver(make_params(), _zero_rhs, dispatch=False)
    assert solver.dispatcher is None
    assert solver.hooks == []


def test_default_sink_logs_values(make_params, caplog) -> None:  # noqa: ANN001
    """Without a sink, values are written through logging."""
    with caplog.at_level(logging.INFO, logger="biofilm_engine"):
        solve_biofilm(make_params(), _zero_rhs)

    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("Starting solver") for m in messages)
    assert any(m.startswith("Solver finished") for m in messages)
    assert sum("Lf[um]" in m for m in messages) == 1


def test_plot_hook_failure_does_not_stop_run(make_params) -> None:  # noqa: ANN001
    """A broken source-term hook never halts the integration."""

    def broken(*_args: Any) -> float:
        msg = "broken"
        raise RuntimeError(msg)

    params = make_params(
        makePlots=True,
        plotPeriod=2.0,
        optionalPlot="source",
        srcX=[broken],
        rho=[1.0],
    )
    solver = BiofilmSolver(params, _zero_rhs, sink=CountingSink())
    result = solver.run()

    assert result.t[-1] == 6.0
    assert solver.dispatcher is not None
    assert len(solver.dispatcher.failures) == 4  # t = 0, 2, 4, 6


def test_non_numeric_source_result_does_not_stop_run(make_params) -> None:  # noqa: ANN001
    """A source term returning garbage is skipped and the run completes."""
    params = make_params(
        makePlots=True,
        optionalPlot="source",
        srcX=[lambda _s, _x, _t, _p: "oops"],
        rho=[1.0],
    )
    sink = CountingSink()
    solver = BiofilmSolver(params, _zero_rhs, sink=sink)
    result = solver.run()

    assert result.t[-1] == 6.0
    assert sink.value_times == [0.0, 2.0, 4.0, 6.0]
    assert sink.plots == 0
    assert solver.dispatcher is not None
    assert len(solver.dispatcher.failures) == 4
    assert all("could not convert" in str(f) for f in solver.dispatcher.failures)


def test_negative_final_thickness_keeps_trajectory(make_params) -> None:  # noqa: ANN001
    """A thickness driven below zero still returns the full run."""

    def shrink(y: np.ndarray, context: Any, _t: float) -> np.ndarray:
        _params, layout = context
        dy = np.zeros_like(y)
        dy[layout.lf] = -1.0
        return dy

    result = solve_biofilm(make_params(Lfo=1.0), shrink, sink=NullSink())

    assert result.t[-1] == 6.0
    assert result.lf[-1] == pytest.approx(-5.0)
    np.testing.assert_allclose(result.lf, 1.0 - result.t, atol=1e-6)
    np.testing.assert_array_equal(result.zm, np.zeros(3))


def test_hooks_cannot_alter_trajectory_samples(make_params) -> None:  # noqa: ANN001
    """The trajectory handed to hooks exposes read-only samples."""
    rejected: list[str] = []

    def vandal(_t: float, _y: np.ndarray, tr: Trajectory) -> None:
        for name in ("t", "y", "y_last"):
            arr = getattr(tr, name)
            try:
                arr[..., -1] = -1.0
            except ValueError:
                rejected.append(name)

    result = solve_biofilm(
        make_params(),
        _zero_rhs,
        sink=NullSink(),
        hooks=[vandal],
    )

    assert rejected == ["t", "y", "y_last"] * 7
    np.testing.assert_allclose(result.xt, 1.0)
    np.testing.assert_allclose(result.lf, 10.0)
    assert result.t.flags.writeable


# -----------------------------------------------------------------------------
# Failures
# -----------------------------------------------------------------------------


def test_invalid_configuration_fails_before_integration(make_params) -> None:  # noqa: ANN001
    """Configuration errors are raised at construction."""
    calls: list[float] = []

    def rhs(y: np.ndarray, _ctx: Any, t: float) -> np.ndarray:
        calls.append(t)
        return np.zeros_like(y)

    with pytest.raises(ConfigurationError, match="tol"):
        BiofilmSolver(make_params(tol=0.0), rhs)
    assert calls == []


def test_rhs_wrong_length_raises(make_params) -> None:  # noqa: ANN001
    """An RHS returning the wrong length is a layout mismatch."""

    def rhs(y: np.ndarray, _ctx: Any, _t: float) -> np.ndarray:
        return np.zeros(y.size + 1)

    with pytest.raises(LayoutMismatchError, match="rhs returned shape"):
        BiofilmSolver(make_params(), rhs, sink=NullSink()).run()


def test_solver_failure_raises_integration_failure(
    make_params,  # noqa: ANN001
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failing segment aborts with the last reached time and state."""
    params = make_params()

    def fake_solve_ivp(
        _fun: Any,
        t_span: tuple[float, float],
        y0: np.ndarray,
        **_kwargs: Any,
    ) -> SimpleNamespace:
        t0, t1 = t_span
        if t0 < 1.0:
            return SimpleNamespace(
                success=True,
                status=0,
                message="ok",
                t=np.array([t0, t1]),
                y=np.column_stack([y0, y0]),
                nfev=4,
                njev=0,
                nlu=0,
            )
        return SimpleNamespace(
            success=False,
            status=-1,
            message="Required step size is less than spacing between numbers.",
            t=np.array([t0, t0 + 0.25]),
            y=np.column_stack([y0, 2.0 * y0]),
            nfev=9,
            njev=1,
            nlu=2,
        )

    monkeypatch.setattr(solver_mod, "solve_ivp", fake_solve_ivp)

    fired: list[float] = []
    solver = BiofilmSolver(
        params,
        _zero_rhs,
        sink=NullSink(),
        hooks=[lambda t, _y, _tr: fired.append(t)],
    )
    with pytest.raises(IntegrationFailure, match="step size") as excinfo:
        solver.run()

    failure = excinfo.value
    assert failure.t_last == 1.25
    assert failure.status == -1
    y_last = unpack(failure.y_last, solver.layout)
    assert y_last.lf == 20.0
    assert fired == [0.0, 1.0]
    assert isinstance(failure, RuntimeError)
