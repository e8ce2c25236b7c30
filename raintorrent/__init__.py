"""Building blocks of a BitTorrent client: peer wire protocol, piece handling, caching, storage and resume data."""

__version__ = "0.1.0"