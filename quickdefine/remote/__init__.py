"""Remote dictionary source (tier 3)."""

from quickdefine.remote.fetcher import DEFAULT_BASE_URL, RemoteFetcher

__all__ = ["DEFAULT_BASE_URL", "RemoteFetcher"]
