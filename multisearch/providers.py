"""
Autocomplete providers.

Each provider is described as data (URL template, response parser, extra
headers) and fetched through one shared httpx client. A fetch never raises:
transport and payload failures come back as a ProviderResult with ok=False
so the caller can log them and carry on with an empty list.

Wire formats:
- google / bing: OpenSearch suggestions, ["query", ["a", "b", ...], ...]
- duck: [{"phrase": "a"}, {"phrase": "b"}, ...]
- baidu: JSONP, cb({"q": "...", "s": ["a", "b", ...]})
"""
from __future__ import annotations

import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 1.5
DEFAULT_MAX_WORKERS = 16
DEFAULT_PROVIDER = "google"
JSONP_CALLBACK = "cb"

_JSONP_PATTERN = re.compile(r"^" + re.escape(JSONP_CALLBACK) + r"\((.*)\)\s*$")


class ProviderErrorCode(str, Enum):
    """Classification of provider failures for logging."""
    TIMEOUT = "timeout_error"
    NETWORK = "network_error"
    HTTP_STATUS = "http_status"
    BAD_PAYLOAD = "bad_payload"


def _strings(items: Iterable[Any]) -> List[str]:
    return [str(x) for x in items if x]


def parse_opensearch(text: str) -> List[str]:
    """Take index 1 of an OpenSearch suggestion array."""
    payload = json.loads(text)
    if isinstance(payload, list) and len(payload) > 1 and isinstance(payload[1], list):
        return _strings(payload[1])
    return []


def parse_phrase_list(text: str) -> List[str]:
    """Map a list of {"phrase": ...} objects to their phrases, dropping blanks."""
    payload = json.loads(text)
    if not isinstance(payload, list):
        return []
    return _strings(item.get("phrase") for item in payload if isinstance(item, dict))


def parse_jsonp_s(text: str) -> List[str]:
    """
    Unwrap ``cb({...})`` and return field ``s``.

    A different callback name or an unparseable interior yields [].
    """
    m = _JSONP_PATTERN.match(text)
    if not m:
        return []
    try:
        payload = json.loads(m.group(1))
    except ValueError:
        return []
    if isinstance(payload, dict) and isinstance(payload.get("s"), list):
        return _strings(payload["s"])
    return []


@dataclass(frozen=True)
class ProviderSpec:
    """How to query one suggestion endpoint and read its response."""
    name: str
    url_template: str
    parse: Callable[[str], List[str]]
    headers: Dict[str, str] = field(default_factory=dict)

    def build_url(self, query: str) -> str:
        # Same escaping as encodeURIComponent
        return self.url_template.format(q=quote(query, safe="!~*'()"))


DEFAULT_PROVIDERS: List[ProviderSpec] = [
    ProviderSpec(
        name="google",
        url_template="https://suggestqueries.google.com/complete/search?client=firefox&q={q}",
        parse=parse_opensearch,
    ),
    ProviderSpec(
        name="bing",
        url_template="https://api.bing.com/osjson.aspx?query={q}",
        parse=parse_opensearch,
    ),
    ProviderSpec(
        name="duck",
        url_template="https://duckduckgo.com/ac/?q={q}&type=list",
        parse=parse_phrase_list,
    ),
    ProviderSpec(
        name="baidu",
        url_template="https://suggestion.baidu.com/su?wd={q}&cb=" + JSONP_CALLBACK,
        parse=parse_jsonp_s,
        headers={"User-Agent": "Mozilla/5.0"},
    ),
]


@dataclass
class ProviderResult:
    """Outcome of one provider call."""
    provider: str
    suggestions: List[str] = field(default_factory=list)
    ok: bool = True
    error_code: Optional[ProviderErrorCode] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, provider: str, error_code: ProviderErrorCode, error: str) -> "ProviderResult":
        return cls(provider=provider, ok=False, error_code=error_code, error=error)


class DeadlineExceeded(Exception):
    """The whole call ran past its time budget."""


class SuggestionClient:
    """
    Fetches suggestions from the configured providers over one httpx client.

    Unknown provider names resolve to the default provider. Calls are never
    retried. ``timeout`` bounds the whole call, not each httpx phase: the
    request runs on a worker thread and the caller stops waiting once the
    budget is spent, while the worker drops the response at its next chunk.
    """

    def __init__(
        self,
        providers: Optional[Iterable[ProviderSpec]] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        default_provider: str = DEFAULT_PROVIDER,
        transport: Optional[httpx.BaseTransport] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.providers: Dict[str, ProviderSpec] = {
            p.name: p for p in (providers if providers is not None else DEFAULT_PROVIDERS)
        }
        if default_provider not in self.providers:
            raise ValueError(f"Default provider {default_provider!r} is not configured")
        self.default_provider = default_provider
        self.timeout = timeout
        self._client = httpx.Client(timeout=timeout, transport=transport, follow_redirects=True)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="suggest")

    def resolve(self, name: Optional[str]) -> ProviderSpec:
        spec = self.providers.get(name or "")
        if spec is None:
            logger.debug(f"Unknown provider {name!r}, using {self.default_provider}")
            spec = self.providers[self.default_provider]
        return spec

    def fetch(self, name: Optional[str], query: str) -> ProviderResult:
        """Query one provider within ``timeout`` seconds. Failures are returned, not raised."""
        spec = self.resolve(name)
        url = spec.build_url(query)
        deadline = time.monotonic() + self.timeout

        future = self._executor.submit(self._request, spec, url, deadline)
        try:
            result = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            future.cancel()
            result = ProviderResult.failure(
                spec.name, ProviderErrorCode.TIMEOUT, f"No response within {self.timeout}s",
            )

        if not result.ok:
            logger.warning(f"Suggestion provider {spec.name} failed [{result.error_code.value}]: {result.error}")
        return result

    def _request(self, spec: ProviderSpec, url: str, deadline: float) -> ProviderResult:
        try:
            with self._client.stream("GET", url, headers=spec.headers) as response:
                response.raise_for_status()
                chunks: List[bytes] = []
                for chunk in response.iter_bytes():
                    if time.monotonic() > deadline:
                        raise DeadlineExceeded(f"Response body not complete within {self.timeout}s")
                    chunks.append(chunk)
                text = b"".join(chunks).decode(response.encoding or "utf-8", errors="replace")
            suggestions = spec.parse(text)
        except httpx.HTTPStatusError as e:
            return ProviderResult.failure(
                spec.name, ProviderErrorCode.HTTP_STATUS, f"HTTP {e.response.status_code}",
            )
        except httpx.TimeoutException as e:
            return ProviderResult.failure(
                spec.name, ProviderErrorCode.TIMEOUT, f"Request timeout: {e}",
            )
        except DeadlineExceeded as e:
            return ProviderResult.failure(spec.name, ProviderErrorCode.TIMEOUT, str(e))
        except httpx.RequestError as e:
            return ProviderResult.failure(
                spec.name, ProviderErrorCode.NETWORK, f"Network error: {e}",
            )
        except ValueError as e:
            return ProviderResult.failure(
                spec.name, ProviderErrorCode.BAD_PAYLOAD, f"Malformed response: {e}",
            )
        return ProviderResult(provider=spec.name, suggestions=suggestions)

    def close(self) -> None:
        """Stop the worker pool and close the HTTP client."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._client.close()

    def __enter__(self) -> "SuggestionClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
