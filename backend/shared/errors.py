"""
Error taxonomy for the matching & settlement engine.

None of these may escape a settlement cycle: the orchestrator isolates
them per prediction, and the effect of any of them is that a prediction
stays pending for longer.
"""
from __future__ import annotations

from typing import Optional


class SettlementEngineError(Exception):
    """Base for every error raised by the engine."""


class UpstreamUnavailable(SettlementEngineError):
    """Transport error, timeout, 429/5xx after retries, or an open circuit."""

    def __init__(self, provider: str, message: str, retry_after: Optional[float] = None) -> None:
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(f"{provider}: {message}")


class UpstreamMalformed(SettlementEngineError):
    """The upstream answered, but the payload does not have the expected shape."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ParseFailure(SettlementEngineError):
    """Market text could not be turned into a predicate."""

    def __init__(self, tag: str, text: str, reason: str) -> None:
        self.tag = tag
        self.text = text
        self.reason = reason
        super().__init__(f"cannot parse market {tag!r} / {text!r}: {reason}")


class NoMatch(SettlementEngineError):
    """No fixture cleared the matching thresholds."""

    def __init__(self, prediction_id: str) -> None:
        self.prediction_id = prediction_id
        super().__init__(f"no fixture matched prediction {prediction_id}")


class PersistenceError(SettlementEngineError):
    """Reading or writing the prediction store failed."""
