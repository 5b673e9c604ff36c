"""Chain adapter contracts and in-memory reference ledgers."""

from stakedrop.adapters.settlement import SettlementChainAdapter, SettlementStatus
from stakedrop.adapters.privacy import PrivacyChainAdapter, ProofKind
from stakedrop.adapters.memory import InMemoryPrivacyChain, InMemorySettlementChain

__all__ = [
    "SettlementChainAdapter",
    "SettlementStatus",
    "PrivacyChainAdapter",
    "ProofKind",
    "InMemoryPrivacyChain",
    "InMemorySettlementChain",
]
