"""Test doubles shared across the test suite."""

from typing import Any, Callable, Dict, List, Optional

import httpx

from quickdefine.remote.fetcher import RemoteFetcher

MEMORY_DB_URL = "sqlite+aiosqlite://"
TEST_BASE_URL = "https://dict.test/api/v2/entries/en"


def sample_entry(word: str) -> List[dict]:
    """Shape of a dictionaryapi.dev response body."""
    return [
        {
            "word": word,
            "meanings": [
                {
                    "partOfSpeech": "noun",
                    "definitions": [{"definition": f"Definition of {word}."}],
                }
            ],
        }
    ]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingHandler:
    """MockTransport handler that records requests and replies from a table.

    Words missing from ``entries`` get a 404.
    """

    def __init__(self, entries: Optional[Dict[str, Any]] = None) -> None:
        self.entries = entries if entries is not None else {}
        self.requests: List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        word = request.url.path.rsplit("/", 1)[-1]
        if word in self.entries:
            return httpx.Response(200, json=self.entries[word])
        return httpx.Response(404, json={"title": "No Definitions Found"})


def make_fetcher(handler: Callable[[httpx.Request], Any], **kwargs: Any) -> RemoteFetcher:
    """Build a RemoteFetcher wired to a MockTransport handler."""
    kwargs.setdefault("timeout_seconds", 0.5)
    kwargs.setdefault("retry_attempts", 2)
    kwargs.setdefault("retry_delay_seconds", 0.0)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteFetcher(base_url=TEST_BASE_URL, client=client, **kwargs)
