"""sanctionsync feed clients: fetching, parsing and normalization."""

from sanctionsync.clients.base import FeedDocument, FeedParser, RecordNormalizer
from sanctionsync.clients.fetcher import FeedFetcher, FetcherConfig
from sanctionsync.clients.ofac import (
    OFAC_ENTRY_URL_TEMPLATE,
    OFAC_LIST_SOURCE,
    OFAC_REPEATABLE_ELEMENTS,
    OFACNormalizer,
    OFACParser,
    xml_to_tree,
)

__all__ = [
    # Base protocols
    "FeedDocument",
    "FeedParser",
    "RecordNormalizer",
    # Transport
    "FeedFetcher",
    "FetcherConfig",
    # OFAC
    "OFAC_ENTRY_URL_TEMPLATE",
    "OFAC_LIST_SOURCE",
    "OFAC_REPEATABLE_ELEMENTS",
    "OFACNormalizer",
    "OFACParser",
    "xml_to_tree",
]
