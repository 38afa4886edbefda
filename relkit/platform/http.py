"""HTTP client abstraction for registry polling.

- HttpClient: protocol for JSON GET requests (injectable for tests)
- RealHttpClient: urllib implementation
- MockHttpClient: canned responses for tests
"""

from __future__ import annotations

import json
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from relkit.core.result import Err, Ok, Result

__all__ = [
    "HttpClient",
    "HttpError",
    "MockHttpClient",
    "RealHttpClient",
]


@dataclass(frozen=True, slots=True)
class HttpError:
    """HTTP error details.

    Attributes:
        url: The URL that failed
        status: HTTP status code (0 for network errors)
        message: Human-readable error message
    """

    url: str
    status: int
    message: str

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status}: {self.message} ({self.url})"
        return f"{self.message} ({self.url})"


@runtime_checkable
class HttpClient(Protocol):
    def get_json(self, url: str) -> Result[object, HttpError]:
        """Fetch URL and parse the body as JSON (object or array)."""
        ...


class RealHttpClient:
    """urllib-based client using system certificates."""

    def __init__(self, timeout: float = 30.0, user_agent: str = "relkit") -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._ssl_context = ssl.create_default_context()

    def _request(self, url: str) -> Result[bytes, HttpError]:
        try:
            req = urllib.request.Request(
                url,
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            )
            with urllib.request.urlopen(
                req,
                timeout=self.timeout,
                context=self._ssl_context,
            ) as response:
                return Ok(response.read())
        except urllib.error.HTTPError as e:
            return Err(HttpError(url=url, status=e.code, message=str(e.reason)))
        except urllib.error.URLError as e:
            return Err(HttpError(url=url, status=0, message=str(e.reason)))
        except TimeoutError:
            return Err(HttpError(url=url, status=0, message="Request timed out"))
        except (ValueError, OSError) as e:
            return Err(HttpError(url=url, status=0, message=str(e)))

    def get_json(self, url: str) -> Result[object, HttpError]:
        result = self._request(url)
        if isinstance(result, Err):
            return result

        try:
            return Ok(json.loads(result.value.decode("utf-8")))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return Err(HttpError(url=url, status=0, message=f"JSON parse error: {e}"))


class MockHttpClient:
    """Mock HTTP client for testing.

    Responses may be queued per URL; the last queued response repeats.

    Usage:
        client = MockHttpClient()
        client.set_json("https://pypi.org/pypi/pkg/1.0.1/json", {"info": {}})
    """

    def __init__(self) -> None:
        self._responses: dict[str, list[object | HttpError]] = {}
        self.calls: list[str] = []

    def set_json(self, url: str, *responses: object | HttpError) -> None:
        self._responses[url] = list(responses)

    def get_json(self, url: str) -> Result[object, HttpError]:
        self.calls.append(url)
        queue = self._responses.get(url)
        if not queue:
            return Err(HttpError(url=url, status=404, message="Not found (mock)"))

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, HttpError):
            return Err(response)
        return Ok(response)
