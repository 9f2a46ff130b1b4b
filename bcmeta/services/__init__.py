"""Services module - page loading, aggregation, mutations, and session pooling."""

from .aggregator import MetadataAggregator
from .page_loader import PageLoader, LoaderState
from .mutations import MutationPrimitives
from .client import BCClient
from .pool import SessionPool

__all__ = [
    "MetadataAggregator",
    "PageLoader",
    "LoaderState",
    "MutationPrimitives",
    "BCClient",
    "SessionPool",
]
