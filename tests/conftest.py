"""Global pytest configuration and shared fixtures for biofilm_engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from biofilm_engine.config import BiofilmParams
from biofilm_engine.layout import StateLayout

# -----------------------------------------------------------------------------
# Parameter factories
# -----------------------------------------------------------------------------


def base_params_dict() -> dict[str, Any]:
    """Return a minimal valid parameter mapping using camel-case names."""
    return {
        "Nx": 1,
        "Ns": 1,
        "Nz": 3,
        "Xto": [1.0],
        "Sto": [25.0],
        "Pbo": [0.2],
        "Sbo": [5.0],
        "Lfo": 10.0,
        "tol": 1e-6,
        "tFinal": 6.0,
        "outPeriod": 2.0,
        "discontinuityPeriod": 3.0,
    }


@pytest.fixture
def make_params() -> Callable[..., BiofilmParams]:
    """
    Build BiofilmParams from the base mapping with overrides.

    Usage:
        def test_x(make_params):
            p = make_params(Nz=5, tFinal=1.0)
    """

    def _make(**overrides: Any) -> BiofilmParams:
        data = base_params_dict()
        data.update(overrides)
        return BiofilmParams.model_validate(data)

    return _make


@pytest.fixture
def layout_2_3_4() -> StateLayout:
    """Layout with Nx=2, Ns=3, Nz=4 (n_var = 2 + 3 + 8 + 12 + 1 = 26)."""
    return StateLayout.from_counts(2, 3, 4)
