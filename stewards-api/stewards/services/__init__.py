from stewards.services.result import Result
from stewards.services.state_machine import (
    InspectionStep,
    InvalidTransitionError,
    can_transition,
    derive_step,
    reset,
    transition,
)

__all__ = [
    "Result",
    "InspectionStep",
    "InvalidTransitionError",
    "can_transition",
    "derive_step",
    "reset",
    "transition",
]
