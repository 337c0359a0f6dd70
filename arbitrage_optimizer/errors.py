"""Exceptions raised by the optimization pipeline"""


class OptimizerError(Exception):
    """Base class for all optimizer errors"""
    error_type = "internal"


class InputError(OptimizerError, ValueError):
    """Empty or malformed price series, or invalid battery parameters"""
    error_type = "input"


class InsufficientDataError(OptimizerError):
    """Too few timesteps for a meaningful optimization"""
    error_type = "insufficient_data"

    def __init__(self, n_points: int, required: int):
        super().__init__(f"Insufficient data: {n_points} < {required} timesteps")
        self.n_points = n_points
        self.required = required


class SearchFailure(OptimizerError):
    """The metaheuristic search produced no usable schedule"""
    error_type = "search"
