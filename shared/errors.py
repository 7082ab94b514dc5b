"""
Error hierarchy for the token agent.

Error kinds and how callers treat them:
- TransientError: I/O timeout, disconnect, rate limit. Retried with backoff
  inside the exchange adapter, surfaced only once retries are exhausted.
- DataQualityError: stale, out-of-order or malformed records. The record is
  dropped, a counter incremented, and the affected Assessment suppressed.
- InvariantViolation: fatal for the affected symbol. The last good state is
  retained and new intents are halted until operator acknowledgement.
- ExchangeError: order rejected / insufficient margin. The slice terminates
  REJECTED and the position view is reconciled from the exchange.

Policy outcomes (risk rejections, decision vetoes) are values, not errors.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors."""


class ConfigError(AgentError):
    """Invalid or missing configuration."""


class TransientError(AgentError):
    """Recoverable I/O failure (retry with backoff)."""


class ExchangeTimeout(TransientError):
    """An exchange call exceeded rest.timeout."""


class ExchangeDisconnected(TransientError):
    """The exchange transport dropped."""


class RateLimited(TransientError):
    """The exchange signalled a rate limit."""


class DataQualityError(AgentError):
    """A feed record or analyzer output failed validation."""


class InvariantViolation(AgentError):
    """
    A state invariant was broken (negative size, weight outside clamp,
    attribution not summing to 1, ...).
    """

    def __init__(self, message: str, symbol: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol


class ExchangeError(AgentError):
    """Exchange refused an operation."""

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class OrderRejected(ExchangeError):
    """Order rejected by the exchange."""


class InsufficientMargin(OrderRejected):
    """Order rejected for lack of margin."""
