"""Core data models for the bridge."""

from stakedrop.models.epoch import Deposit, Epoch, EpochStatus
from stakedrop.models.events import BridgeEvent, BridgeEventKind
from stakedrop.models.results import ChainSnapshot, FinalizationResult, Settlement

__all__ = [
    "Deposit",
    "Epoch",
    "EpochStatus",
    "BridgeEvent",
    "BridgeEventKind",
    "ChainSnapshot",
    "FinalizationResult",
    "Settlement",
]
