"""
RetryClient: HTTP GET against the router with retries on transient failures.

The router and the app container come up concurrently with the first
request, so the first few attempts routinely hit a closed or half-open
socket. Only connection resets, premature end of stream and refused
connections are retried; anything else is a real test failure and
propagates immediately.
"""

import http.client
import logging
import time
from collections.abc import Iterator
from urllib.parse import urlsplit, urlunsplit

import requests

from .config import HarnessSettings, get_settings

logger = logging.getLogger(__name__)

# Root causes treated as "server not ready yet". RemoteDisconnected is a
# ConnectionResetError subclass; IncompleteRead is a premature end of body.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionResetError,
    ConnectionRefusedError,
    EOFError,
    http.client.IncompleteRead,
)


def _exception_chain(exception: BaseException) -> Iterator[BaseException]:
    """
    Yield the exception and everything it wraps.

    requests wraps urllib3 errors, which wrap socket errors, through a mix
    of ``__cause__``, implicit context, ``reason`` attributes and positional
    args, so all of those are followed.
    """
    seen: set[int] = set()
    pending: list[BaseException | None] = [exception]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        pending.append(current.__cause__)
        if current.__cause__ is None and not current.__suppress_context__:
            pending.append(current.__context__)
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            pending.append(reason)
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def is_transient(exception: BaseException) -> bool:
    """Check whether an exception is a retriable connection-level failure."""
    return any(isinstance(error, TRANSIENT_ERRORS) for error in _exception_chain(exception))


class RetryClient:
    """
    Retrying GET client targeting the router by default.

    Responses are returned as-is regardless of status code and redirects are
    not followed, so tests can assert on exactly what the router served.
    """

    def __init__(
        self,
        settings: HarnessSettings | None = None,
        session: requests.Session | None = None,
        debug: bool = False,
    ):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()
        self.debug = debug

    @property
    def host(self) -> str:
        return self.settings.router_host

    @property
    def port(self) -> int:
        return self.settings.router_port

    def resolve_url(self, path: str) -> str:
        """
        Normalize a path or URL into a full request target.

        A missing host defaults to the router host. The router port is forced
        when the host is the router host but the port differs, or when neither
        port nor scheme was given. The scheme defaults to http.

        Args:
            path: Path such as ``/health`` or a full URL

        Returns:
            Absolute URL string
        """
        parts = urlsplit(path)
        scheme = parts.scheme
        host = parts.hostname
        port = parts.port

        if host is None:
            host = self.host
        if (host == self.host and port != self.port) or (port is None and not scheme):
            port = self.port
        if not scheme:
            scheme = "http"

        netloc = f"[{host}]" if ":" in host else host
        if port is not None:
            netloc = f"{netloc}:{port}"
        if parts.username:
            userinfo = parts.username
            if parts.password:
                userinfo = f"{userinfo}:{parts.password}"
            netloc = f"{userinfo}@{netloc}"

        return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))

    def fetch(self, path: str, max_retries: int | None = None) -> requests.Response:
        """
        GET the resolved URL, retrying transient connection failures.

        Sleeps ``retry_backoff * retry_index`` before each retry, so the
        delays run 0.0, 0.01, 0.02, ... with the default backoff.

        Args:
            path: Path or URL, see resolve_url
            max_retries: Retries after the first attempt (settings default if None)

        Returns:
            The HTTP response, whatever its status

        Raises:
            requests.RequestException: The last transient failure once retries
                are exhausted, or any non-transient failure immediately
        """
        if max_retries is None:
            max_retries = self.settings.max_retries
        url = self.resolve_url(path)

        retry_count = 0
        while True:
            try:
                return self.session.get(
                    url, allow_redirects=False, timeout=self.settings.request_timeout
                )
            except (requests.RequestException, *TRANSIENT_ERRORS) as e:
                if not is_transient(e) or retry_count >= max_retries:
                    if retry_count:
                        logger.warning(f"GET {url} failed after {retry_count} retries: {e}")
                    raise

                if self.debug:
                    print(f"Retry Count: {retry_count}")
                logger.debug(f"GET {url} transient failure, retry {retry_count}: {e}")
                time.sleep(self.settings.retry_backoff * retry_count)
                retry_count += 1

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()

    def __str__(self) -> str:
        return f"RetryClient(target={self.host}:{self.port})"
