"""
Feed adapter interfaces.

The core consumes market and social data only through these interfaces.
Chain RPC clients, exchange websockets and social ingestion live behind
them. A missing source simply yields nothing; the downstream domain is
then absent from the FusedView.
"""

from typing import AsyncIterator, Protocol

from shared.models import MarketSnapshot, SocialSample, SocialSource


class MarketFeed(Protocol):
    """Market data feed interface (duck-typed)."""

    def market(self, symbol: str) -> AsyncIterator[MarketSnapshot]: ...


class SocialFeed(Protocol):
    """Social data feed interface (duck-typed)."""

    def social(self, source: SocialSource, symbol: str) -> AsyncIterator[SocialSample]: ...
