"""Cross-chain coordination: the epoch coordinator, adapter calls, polling."""

from stakedrop.bridge.coordinator import Coordinator
from stakedrop.bridge.poller import EpochPoller
from stakedrop.bridge.retry import AdapterCaller

__all__ = ["Coordinator", "EpochPoller", "AdapterCaller"]
