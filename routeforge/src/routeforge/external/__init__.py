"""Collaborators living outside the policy core: proxy-core runner and fetcher."""

from .fetcher import Fetcher, FetchResult, UrlFetcher, apply_relay
from .runner import CoreRunner, ExternalVerdict, SubprocessCoreRunner

__all__ = [
    "CoreRunner",
    "ExternalVerdict",
    "SubprocessCoreRunner",
    "Fetcher",
    "FetchResult",
    "UrlFetcher",
    "apply_relay",
]
