"""
Upstream clients and fetchers for Soroban RPC and Horizon.
"""

from ingestion.extractors.base import UpstreamClient
from ingestion.extractors.soroban_rpc import SorobanRpcClient, EventFetcher, EventPage
from ingestion.extractors.horizon import HorizonClient, OperationFetcher, FetchResult

__all__ = [
    "UpstreamClient",
    "SorobanRpcClient",
    "EventFetcher",
    "EventPage",
    "HorizonClient",
    "OperationFetcher",
    "FetchResult",
]
