"""Feed interfaces and synthetic feeds for the data plane."""

from data_plane.adapters.feed_stub import SyntheticMarketFeed, SyntheticSocialFeed, make_virtual_feeds
from data_plane.adapters.feeds import MarketFeed, SocialFeed

__all__ = ["MarketFeed", "SocialFeed", "SyntheticMarketFeed", "SyntheticSocialFeed", "make_virtual_feeds"]
