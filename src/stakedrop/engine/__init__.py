"""Epoch engine: lifecycle state machine and cross-chain consistency checks."""

from stakedrop.engine.state_machine import EpochStateMachine
from stakedrop.engine.consistency import check_consistency

__all__ = ["EpochStateMachine", "check_consistency"]
