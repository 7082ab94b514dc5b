"""Exchange adapters."""

from order_plane.broker.exchange import ExchangeAdapter, ResilientExchange
from order_plane.broker.paper_exchange import PaperExchange

__all__ = ["ExchangeAdapter", "PaperExchange", "ResilientExchange"]
