# src/biofilm_engine/errors.py
"""Error types for biofilm_engine.

This module centralizes the explicit error classes raised by the engine along
with a few helpers that build actionable, uniformly formatted messages.

Propagation policy:
- ConfigurationError and LayoutMismatchError are precondition failures and are
  raised immediately, before or outside of integration.
- IntegrationFailure aborts the run and carries the last reached time/state.
- DiagnosticHookFailure is isolated by the output dispatcher; it never stops
  an ongoing integration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


class BiofilmEngineError(Exception):
    """Base exception for biofilm_engine errors."""


class ConfigurationError(BiofilmEngineError, ValueError):
    """Raised when run configuration values are invalid or inconsistent."""


class LayoutMismatchError(BiofilmEngineError, ValueError):
    """Raised when an array length does not match its StateLayout range."""


class IntegrationFailure(BiofilmEngineError, RuntimeError):  # noqa: N818
    """Raised when the stiff solver cannot make progress.

    Attributes:
        t_last: Last time successfully reached by the solver.
        y_last: Flat state at t_last (copy).
        status: Solver status code reported by scipy (or None).
    """

    def __init__(
        self,
        message: str,
        *,
        t_last: float,
        y_last: NDArray[np.floating],
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.t_last = float(t_last)
        self.y_last = y_last
        self.status = status


class DiagnosticHookFailure(BiofilmEngineError, RuntimeError):  # noqa: N818
    """Raised when a growth-rate/source-term hook or plot sink fails."""


def raise_configuration_error(
    *,
    field: str,
    expected: str,
    got: object,
) -> None:
    """Raise a standardized ConfigurationError.

    Args:
        field: Name of the offending configuration field.
        expected: Human-readable description of a valid value.
        got: Actual observed value.

    Raises:
        ConfigurationError: Always.
    """
    msg = f"Invalid configuration for '{field}'. Expected {expected}. Got: {got!r}."
    raise ConfigurationError(msg)


def raise_layout_mismatch(*, name: str, expected: int, got: int) -> None:
    """Raise a standardized LayoutMismatchError.

    Args:
        name: Name of the field whose length is wrong.
        expected: Length required by the layout.
        got: Observed length.

    Raises:
        LayoutMismatchError: Always.
    """
    msg = f"{name} has length {got}; the state layout requires length {expected}."
    raise LayoutMismatchError(msg)
