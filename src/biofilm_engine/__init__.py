"""biofilm_engine: stirred tank + biofilm stiff ODE engine package."""

from __future__ import annotations

from .config import BiofilmParams, DiagnosticMode, check_parameters
from .diagnostics import (
    DiagnosticField,
    GrowthRateEvaluator,
    SourceTermEvaluator,
    evaluate_diagnostic,
    growth_rate_grid,
    particulate_concentrations,
    source_term_grid,
)
from .errors import (
    BiofilmEngineError,
    ConfigurationError,
    DiagnosticHookFailure,
    IntegrationFailure,
    LayoutMismatchError,
)
from .grid import BiofilmGrid, build_grid
from .layout import (
    StateLayout,
    UnpackedState,
    UnpackedTrajectory,
    initial_condition,
    pack,
    unpack,
    unpack_trajectory,
)
from .outputs import LoggingSink, NullSink, OutputDispatcher, OutputKinds, OutputSink
from .schedule import PeriodScheduler, Tick, build_scheduler
from .solver import BiofilmRun, BiofilmSolver, Hook, RHSFunction, Trajectory, solve_biofilm

__all__ = [
    "BiofilmEngineError",
    "BiofilmGrid",
    "BiofilmParams",
    "BiofilmRun",
    "BiofilmSolver",
    "ConfigurationError",
    "DiagnosticField",
    "DiagnosticHookFailure",
    "DiagnosticMode",
    "GrowthRateEvaluator",
    "Hook",
    "IntegrationFailure",
    "LayoutMismatchError",
    "LoggingSink",
    "NullSink",
    "OutputDispatcher",
    "OutputKinds",
    "OutputSink",
    "PeriodScheduler",
    "RHSFunction",
    "SourceTermEvaluator",
    "StateLayout",
    "Tick",
    "Trajectory",
    "UnpackedState",
    "UnpackedTrajectory",
    "build_grid",
    "build_scheduler",
    "check_parameters",
    "evaluate_diagnostic",
    "growth_rate_grid",
    "initial_condition",
    "pack",
    "particulate_concentrations",
    "solve_biofilm",
    "source_term_grid",
    "unpack",
    "unpack_trajectory",
]

__version__ = "0.1.0"
