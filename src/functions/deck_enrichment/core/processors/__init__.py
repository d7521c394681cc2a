"""Unit stage processing."""

from .stages import TRANSITIONS, UnitStateMachine, can_transition, recover_interrupted

__all__ = ["TRANSITIONS", "UnitStateMachine", "can_transition", "recover_interrupted"]
