# src/biofilm_engine/schedule.py
"""Scheduling of the instants at which integration is interrupted.

Two periodicities drive interruptions:

- the output period, at which diagnostics are emitted, and
- the discontinuity period, at which the kinetics may be non-smooth (for
  instance a switched feed), so the solver must stop exactly there and restart
  its step-size selection.

Both are served by one schedule: every multiple of the largest step dividing
both periods, from 0 up to the horizon (the horizon itself is always
included). Period arithmetic is done with :class:`fractions.Fraction` built
from the decimal literal of each float, so 0.1 is exactly 1/10 and no drift
accumulates over many periods. Floating tolerance is only applied when a time
handed back by the solver is mapped onto a tick.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import TYPE_CHECKING, NamedTuple

import numpy as np

from .errors import raise_configuration_error

if TYPE_CHECKING:
    from collections.abc import Iterator

    from numpy.typing import NDArray


DEFAULT_TIME_ATOL = 1e-9
MAX_DENOMINATOR = 10**9
MAX_INSTANTS = 10**7

_TOO_MANY_INSTANTS = "at most {cap} scheduled instants (step {step}, horizon {horizon})"


def as_fraction(value: float | Fraction) -> Fraction:
    """Simplest rational a float period stands for.

    The decimal literal of the float is reduced to the closest rational with a
    denominator of at most ``MAX_DENOMINATOR``; that rational is used when it
    matches the float to a relative ``DEFAULT_TIME_ATOL``, so ``0.1`` maps to 1/10 and
    ``1/3`` to 1/3. Otherwise the decimal literal is kept as is.

    Args:
        value: Float (or Fraction, returned unchanged).

    Returns:
        Fraction the float represents.
    """
    if isinstance(value, Fraction):
        return value
    x = float(value)
    literal = Fraction(repr(x))
    bounded = literal.limit_denominator(MAX_DENOMINATOR)
    if abs(float(bounded) - x) <= DEFAULT_TIME_ATOL * abs(x):
        return bounded
    return literal


def fraction_gcd(a: Fraction, b: Fraction) -> Fraction:
    """Greatest common divisor of two positive rationals.

    Args:
        a: First rational, > 0.
        b: Second rational, > 0.

    Returns:
        Largest rational g such that a/g and b/g are both integers.
    """
    num = math.gcd(a.numerator * b.denominator, b.numerator * a.denominator)
    return Fraction(num, a.denominator * b.denominator)


class Tick(NamedTuple):
    """One scheduled instant.

    Attributes:
        index: Position in the schedule.
        exact: Exact rational time.
        time: Float time handed to the solver.
    """

    index: int
    exact: Fraction
    time: float


def _require_positive(field: str, value: float) -> None:
    if not (np.isfinite(value) and value > 0.0):
        raise_configuration_error(field=field, expected="a finite value > 0", got=value)


@dataclass(frozen=True, slots=True)
class PeriodScheduler:
    """Common-step schedule of output and discontinuity instants.

    Construction fails with ConfigurationError when a period or the horizon is
    not positive, or when the schedule would hold more than ``MAX_INSTANTS``
    instants (periods whose common step is tiny compared to the horizon).

    Attributes:
        out_period: Output period.
        discontinuity_period: Discontinuity period.
        t_final: Simulation horizon.
        atol: Absolute tolerance (scaled by max(1, |t|)) used when mapping a
            solver time onto a tick.
    """

    out_period: float
    discontinuity_period: float
    t_final: float
    atol: float = DEFAULT_TIME_ATOL

    def __post_init__(self) -> None:
        _require_positive("out_period", self.out_period)
        _require_positive("discontinuity_period", self.discontinuity_period)
        _require_positive("t_final", self.t_final)
        if self.horizon // self.step + 1 > MAX_INSTANTS:
            raise_configuration_error(
                field="out_period/discontinuity_period",
                expected=_TOO_MANY_INSTANTS.format(
                    cap=MAX_INSTANTS,
                    step=self.step,
                    horizon=self.horizon,
                ),
                got=(self.out_period, self.discontinuity_period),
            )

    @property
    def step(self) -> Fraction:
        """Greatest common divisor of the two periods (exact)."""
        return fraction_gcd(
            as_fraction(self.out_period),
            as_fraction(self.discontinuity_period),
        )

    @property
    def horizon(self) -> Fraction:
        """Simulation horizon (exact)."""
        return as_fraction(self.t_final)

    def ticks(self) -> Iterator[Tick]:
        """Yield every scheduled instant in ascending order.

        Yields:
            Tick for each multiple of step in [0, t_final], followed by
            t_final itself when it is not a multiple.
        """
        step = self.step
        horizon = self.horizon
        n_full = horizon // step
        for k in range(int(n_full) + 1):
            exact = k * step
            yield Tick(index=k, exact=exact, time=float(exact))
        if n_full * step != horizon:
            yield Tick(index=int(n_full) + 1, exact=horizon, time=float(self.t_final))

    @property
    def instants(self) -> NDArray[np.float64]:
        """Scheduled instants as a float array."""
        return np.fromiter((tick.time for tick in self.ticks()), dtype=np.float64)

    def _close(self, t: float, target: float) -> bool:
        return abs(t - target) <= self.atol * max(1.0, abs(t))

    def exact_time(self, t: float) -> Fraction | None:
        """Map a solver time onto the exact scheduled instant it represents.

        Args:
            t: Floating time, possibly perturbed by solver rounding.

        Returns:
            The exact instant within tolerance of t, or None if t is not a
            scheduled instant.
        """
        step = self.step
        k = round(t / float(step))
        if 0 <= k * step <= self.horizon and self._close(t, float(k * step)):
            return k * step
        if self._close(t, float(self.t_final)):
            return self.horizon
        return None

    def is_multiple(self, t: float, period: float) -> bool:
        """Return True if t is (within tolerance) a multiple of period.

        Scheduled instants are compared exactly after being mapped onto their
        tick; any other time falls back to a floating tolerance test.

        Args:
            t: Floating time.
            period: Period to test against, > 0.

        Returns:
            Whether t is a multiple of period.
        """
        exact = self.exact_time(t)
        if exact is not None:
            return exact % as_fraction(period) == 0
        n = round(t / period)
        return self._close(t, n * period)


def build_scheduler(
    out_period: float,
    discontinuity_period: float,
    t_final: float,
) -> PeriodScheduler:
    """Build a PeriodScheduler after validating its inputs.

    Raises:
        ConfigurationError: If a period or the horizon is not positive.
    """
    return PeriodScheduler(
        out_period=float(out_period),
        discontinuity_period=float(discontinuity_period),
        t_final=float(t_final),
    )
