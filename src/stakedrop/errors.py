"""Error taxonomy for the bridge coordinator.

Every error carries the last known epoch status (or None when raised by
a pure function that never saw an epoch) so that operator-facing messages
always say where the epoch stood when the failure happened.

Retry policy by class:
    InvalidInput, InvalidTransition, EmptyPoolError, AlreadyWithdrawn,
    ProofRejected, InconsistentState   never retried
    AdapterFailure (transient=True)    retried with bounded backoff
    StageFailed                        terminal for the current call
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class BridgeError(Exception):
    """Base class for all coordinator errors."""

    def __init__(self, message: str, status: Optional[Any] = None) -> None:
        self.message = message
        self.status = status
        super().__init__(self._render())

    def with_status(self, status: Optional[Any]) -> "BridgeError":
        """Attach ``status`` if the error has none yet. Returns self."""
        if self.status is None and status is not None:
            self.status = status
            self.args = (self._render(),)
        return self

    def _render(self) -> str:
        if self.status is None:
            return self.message
        label = getattr(self.status, "value", self.status)
        return f"{self.message} (epoch status: {label})"


class InvalidInput(BridgeError):
    """Malformed commitment, secret, amount or proof. Rejected before any I/O."""


class DuplicateCommitment(InvalidInput):
    """A commitment was registered twice in the same epoch."""


class InvalidTransition(BridgeError):
    """A state-machine precondition is unmet. No mutation occurred."""

    def __init__(
        self,
        message: str,
        status: Optional[Any] = None,
        reasons: Sequence[str] = (),
    ) -> None:
        self.reasons = list(reasons)
        if self.reasons:
            message = f"{message}: {'; '.join(self.reasons)}"
        super().__init__(message, status)


class AdapterFailure(BridgeError):
    """A chain adapter call failed.

    Transient failures (network, timeout, congestion) are retried by the
    coordinator. Non-transient ones surface immediately.
    """

    def __init__(
        self,
        message: str,
        status: Optional[Any] = None,
        transient: bool = True,
    ) -> None:
        self.transient = transient
        super().__init__(message, status)


class StageFailed(BridgeError):
    """A lifecycle stage could not be completed.

    Raised when retries are exhausted or when a stage aborted after part of
    it was already applied on one chain. State has not been advanced.
    """

    def __init__(
        self,
        stage: str,
        message: str,
        status: Optional[Any] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {message}", status)


class EmptyPoolError(BridgeError):
    """Winner selection was attempted with no registered commitments."""


class AlreadyWithdrawn(BridgeError):
    """A commitment has already been settled."""


class ProofRejected(BridgeError):
    """A winner/loser proof was unavailable or rejected by the privacy chain."""


class InconsistentState(BridgeError):
    """The two chains (or the coordinator and a chain) disagree.

    The coordinator does not reconcile automatically; an operator must.
    """

    def __init__(
        self,
        message: str,
        status: Optional[Any] = None,
        violations: Sequence[str] = (),
    ) -> None:
        self.violations = list(violations)
        if self.violations:
            message = f"{message}: {'; '.join(self.violations)}"
        super().__init__(message, status)
