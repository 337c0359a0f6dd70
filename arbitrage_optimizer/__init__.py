"""HMM-guided charge/discharge optimization for a single storage asset"""

from .errors import InputError, InsufficientDataError, OptimizerError, SearchFailure
from .models import (
    BatteryParameters,
    ClassificationMethod,
    OptimizationFailure,
    OptimizationResult,
    RegimeLabel,
    Schedule,
)
from .optimizer import ArbitrageOptimizer

__all__ = [
    "ArbitrageOptimizer",
    "BatteryParameters",
    "ClassificationMethod",
    "InputError",
    "InsufficientDataError",
    "OptimizationFailure",
    "OptimizationResult",
    "OptimizerError",
    "RegimeLabel",
    "Schedule",
    "SearchFailure",
]
