"""Resilient HTTP transport for the Roe API.

Every API call goes through ``HTTPTransport.request``, which retries
transport failures and retryable statuses (5xx, 408, 429) with exponential
backoff and jitter, honours ``Retry-After``, attaches request ids and runs
the configured hooks.

Two random sources are used on purpose. Backoff jitter uses the module-level
``random`` generator: it only spreads retries out, so speed matters and
predictability does not. Request ids use ``secrets``: they are sent to the
server and correlated across systems, so they must not collide.
"""

import io
import json
import logging
import random
import secrets
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import urlencode

import httpx
from pydantic import TypeAdapter

from roe.auth import RoeAuth
from roe.cancellation import CancellationToken, resolve_token
from roe.config import RoeConfig
from roe.errors import APIError, InputFileError, api_error_from_response, parse_retry_after
from roe.uploads import FileUpload
from roe.utils import is_file_path, is_http_url, is_uuid_string, looks_like_path

logger = logging.getLogger(__name__)

REQUEST_ID_PREFIX = "roe-"
BODY_PREVIEW_LIMIT = 512
REDACTED = "[redacted]"
RETRYABLE_STATUSES = frozenset({408, 429})

HeaderList = List[Tuple[str, str]]
Query = Optional[Mapping[str, Any]]


def generate_request_id() -> str:
    """Return a new request id: the ``roe-`` prefix plus 16 random bytes in hex."""
    try:
        return REQUEST_ID_PREFIX + secrets.token_hex(16)
    except NotImplementedError:
        # No OS randomness source available.
        return f"{REQUEST_ID_PREFIX}{time.time_ns()}"


def backoff_delay(config: RoeConfig, attempt: int) -> float:
    """Compute the sleep before retry number ``attempt + 1``.

    ``min(initial * multiplier**attempt, max_interval)`` scaled by a random
    factor in ``[1 - jitter, 1 + jitter]``, never below one millisecond.
    """
    delay = min(
        config.retry_initial_interval * (config.retry_multiplier ** attempt),
        config.retry_max_interval,
    )
    if config.retry_jitter > 0:
        delay *= 1 + random.uniform(-config.retry_jitter, config.retry_jitter)
    return max(delay, 0.001)


def _to_header_list(headers: Union[Mapping[str, str], Sequence[Tuple[str, str]], None]) -> HeaderList:
    if not headers:
        return []
    if isinstance(headers, Mapping):
        return list(headers.items())
    return [tuple(h) for h in headers]


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class HTTPTransport:
    """Shared HTTP layer for all resource clients.

    Holds one ``httpx.Client`` (and so one connection pool) and no per-call
    state, so a single instance may be used from several threads.

    Example:
        >>> transport = HTTPTransport(load_config())
        >>> transport.get_json("/v1/agents/", query={"page": 1})
    """

    def __init__(
        self,
        config: RoeConfig,
        auth: Optional[RoeAuth] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the transport.

        Args:
            config: Resolved client configuration
            auth: Header provider (defaults to one built from config)
            http_client: Pre-built httpx client, mainly for tests; the transport
                still closes it on ``close()``
        """
        self.config = config
        self.auth = auth or RoeAuth(config)
        self._client = http_client or self._build_client(config)
        self._log = config.logger or logger
        self._redact = {h.lower() for h in config.redact_headers}

    @staticmethod
    def _build_client(config: RoeConfig) -> httpx.Client:
        # httpx pools per origin; this client only ever talks to base_url.
        keepalive = min(config.max_idle_conns, config.max_idle_conns_per_host)
        limits = httpx.Limits(
            max_keepalive_connections=keepalive,
            keepalive_expiry=config.idle_conn_timeout,
        )
        kwargs: Dict[str, Any] = {"limits": limits}
        if config.proxy:
            kwargs["proxy"] = config.proxy
        return httpx.Client(**kwargs)

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Request loop
    # ------------------------------------------------------------------

    def build_url(self, path: str, query: Query = None) -> str:
        base = self.config.base_url.rstrip("/")
        if not path.startswith("/"):
            path = "/" + path
        url = base + path
        if query:
            params = httpx.QueryParams(url.partition("?")[2])
            for key, value in query.items():
                if value is None:
                    continue
                params = params.set(key, _form_value(value))
            url = url.partition("?")[0] + "?" + str(params)
        return url

    def _timeout(self, token: CancellationToken) -> Optional[float]:
        timeout: Optional[float] = self.config.timeout or None
        remaining = token.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        return timeout

    def _attach_request_id(self, request: httpx.Request) -> None:
        header = self.config.request_id_header
        if not header or request.headers.get(header):
            return
        if self.config.request_id:
            request.headers[header] = self.config.request_id
        elif self.config.auto_request_id:
            request.headers[header] = generate_request_id()

    def _should_retry(self, attempt: int, status_code: Optional[int] = None) -> bool:
        if attempt >= self.config.max_retries:
            return False
        if status_code is None:
            return True
        return status_code >= 500 or status_code in RETRYABLE_STATUSES

    def request(
        self,
        method: str,
        path: str,
        *,
        query: Query = None,
        headers: Union[Mapping[str, str], Sequence[Tuple[str, str]], None] = None,
        content: Optional[bytes] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> bytes:
        """Execute one logical API call with retries.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            query: Query parameters (values are set, not appended)
            headers: Per-call headers, appended after auth and extra headers
            content: Request body; resent unchanged on every attempt
            cancel: Cancellation token observed before each attempt, during sleeps and
                once each response arrives. An explicit cancel() while a request is in
                flight is seen when that request returns; deadlines also bound the
                HTTP timeout.

        Returns:
            Raw response body of the first 2xx response

        Raises:
            APIError: Non-retryable status, or the last status once retries run out
            httpx.TransportError: Last network failure once retries run out
            CancelledError: The token was cancelled or its deadline passed
        """
        token = resolve_token(cancel)
        url = self.build_url(path, query)
        call_headers = _to_header_list(headers)
        attempts = self.config.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            token.raise_if_cancelled()

            header_list = self.auth.headers() + list(self.config.extra_headers) + call_headers
            request = self._client.build_request(
                method,
                url,
                headers=httpx.Headers(header_list),
                content=content,
                timeout=self._timeout(token),
            )
            self._attach_request_id(request)
            self._run_request_hooks(request)
            self._log_request(request, attempt)

            started = time.monotonic()
            try:
                response = self._client.send(request)
                body = response.read()
            except httpx.TransportError as e:
                cancelled = token.error()
                if cancelled is not None:
                    raise cancelled from e
                if not self._should_retry(attempt):
                    raise
                last_error = e
                self._debug(f"retrying after error (attempt {attempt + 1}/{attempts}): {e}")
                token.sleep(backoff_delay(self.config, attempt))
                continue
            finally:
                duration = time.monotonic() - started

            response.close()
            token.raise_if_cancelled()
            self._log_response(request, response, body, duration)
            self._run_response_hooks(response, body)

            if 200 <= response.status_code < 300:
                return body

            error = api_error_from_response(
                response.status_code, body, response.headers, self.config.request_id_header
            )
            last_error = error
            if not self._should_retry(attempt, response.status_code):
                raise error

            self._debug(
                f"retrying after status {response.status_code} (attempt {attempt + 1}/{attempts})"
            )
            token.sleep(self._response_delay(attempt, error, response))

        raise last_error

    def _response_delay(self, attempt: int, error: APIError, response: httpx.Response) -> float:
        delay = backoff_delay(self.config, attempt)
        retry_after = getattr(error, "retry_after", None)
        if retry_after is None:
            retry_after = parse_retry_after(response.headers)
        if retry_after is not None and retry_after > delay:
            return retry_after
        return delay

    # ------------------------------------------------------------------
    # Hooks and logging
    # ------------------------------------------------------------------

    def _run_request_hooks(self, request: httpx.Request) -> None:
        for i, hook in enumerate(self.config.before_request):
            try:
                hook(request)
            except Exception as e:
                self._log.warning(f"request hook[{i}] failed: {e!r}")

    def _run_response_hooks(self, response: httpx.Response, body: bytes) -> None:
        for i, hook in enumerate(self.config.after_response):
            try:
                hook(response, body)
            except Exception as e:
                self._log.warning(f"response hook[{i}] failed: {e!r}")

    def redacted_headers(self, headers: httpx.Headers) -> List[Tuple[str, str]]:
        return [
            (name, REDACTED if name.lower() in self._redact else value)
            for name, value in headers.multi_items()
        ]

    def _debug(self, message: str) -> None:
        if self.config.debug:
            self._log.debug(message)

    def _log_request(self, request: httpx.Request, attempt: int) -> None:
        if not self.config.debug:
            return
        self._log.debug(
            f"[request] {request.method} {request.url} attempt={attempt + 1} "
            f"headers={self.redacted_headers(request.headers)}"
        )

    def _log_response(
        self, request: httpx.Request, response: httpx.Response, body: bytes, duration: float
    ) -> None:
        if not self.config.debug:
            return
        request_id = ""
        if self.config.request_id_header:
            request_id = response.headers.get(self.config.request_id_header, "")
        preview = body.decode("utf-8", errors="replace")
        if len(preview) > BODY_PREVIEW_LIMIT:
            preview = preview[:BODY_PREVIEW_LIMIT] + "…"
        self._log.debug(
            f"[response] {request.method} {request.url} status={response.status_code} "
            f"duration={duration:.3f}s request_id={request_id} body={preview}"
        )

    # ------------------------------------------------------------------
    # Convenience calls
    # ------------------------------------------------------------------

    @staticmethod
    def _decode(data: bytes, out: Optional[Any]) -> Any:
        if out is None:
            return None
        return TypeAdapter(out).validate_json(data)

    def get_json(
        self,
        path: str,
        query: Query = None,
        out: Optional[Any] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Any:
        """GET ``path`` and validate the JSON body as ``out`` (raw JSON when None)."""
        data = self.request("GET", path, query=query, cancel=cancel)
        if out is None:
            return json.loads(data) if data else None
        return self._decode(data, out)

    def get_bytes(
        self, path: str, query: Query = None, cancel: Optional[CancellationToken] = None
    ) -> bytes:
        return self.request("GET", path, query=query, cancel=cancel)

    def delete(
        self, path: str, query: Query = None, cancel: Optional[CancellationToken] = None
    ) -> None:
        self.request("DELETE", path, query=query, cancel=cancel)

    def _send_json(
        self,
        method: str,
        path: str,
        payload: Any,
        query: Query,
        out: Optional[Any],
        cancel: Optional[CancellationToken],
    ) -> Any:
        content = json.dumps(payload).encode("utf-8") if payload is not None else None
        data = self.request(
            method,
            path,
            query=query,
            headers=[("Content-Type", "application/json")],
            content=content,
            cancel=cancel,
        )
        return self._decode(data, out)

    def post_json(
        self,
        path: str,
        payload: Any = None,
        query: Query = None,
        out: Optional[Any] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Any:
        return self._send_json("POST", path, payload, query, out, cancel)

    def put_json(
        self,
        path: str,
        payload: Any = None,
        query: Query = None,
        out: Optional[Any] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Any:
        return self._send_json("PUT", path, payload, query, out, cancel)

    # ------------------------------------------------------------------
    # Dynamic inputs
    # ------------------------------------------------------------------

    def encode_dynamic_inputs(self, inputs: Mapping[str, Any]) -> Tuple[bytes, str]:
        """Encode agent inputs as a form body.

        Values are classified as follows:

        - ``FileUpload`` with only a URL: form value (the URL)
        - other ``FileUpload``, binary streams and bytes-like values: file part
        - strings: UUID-shaped values are form values; names of existing local
          files become file parts; other path-looking strings that are not
          http(s) URLs are rejected; everything else is a form value
        - booleans: ``"true"`` / ``"false"``; None is skipped; anything else ``str()``

        The string rules are heuristic. A bare word that happens to name a file
        in the working directory is uploaded, and a filename shaped like a
        UUID is sent as text.

        Returns:
            Tuple of (body, content type). The body is urlencoded when there
            are no file parts, multipart otherwise.

        Raises:
            InputFileError: A path-like string names no file, or a file is unusable
        """
        form: List[Tuple[str, str]] = []
        uploads: List[Tuple[str, FileUpload]] = []

        for key, value in inputs.items():
            if value is None:
                continue
            if isinstance(value, FileUpload):
                if value.is_remote:
                    form.append((key, value.url or ""))
                else:
                    uploads.append((key, value))
            elif isinstance(value, (bytes, bytearray, memoryview)):
                uploads.append((key, FileUpload(stream=io.BytesIO(bytes(value)), filename=key)))
            elif hasattr(value, "read"):
                uploads.append((key, FileUpload(stream=value, filename=key)))
            elif isinstance(value, str):
                if is_uuid_string(value):
                    form.append((key, value))
                elif is_file_path(value):
                    uploads.append((key, FileUpload(path=value)))
                elif looks_like_path(value) and not is_http_url(value):
                    raise InputFileError(
                        f"input {key} references a file that was not found: {value}"
                    )
                else:
                    form.append((key, value))
            else:
                form.append((key, _form_value(value)))

        if not uploads:
            return urlencode(form).encode("ascii"), "application/x-www-form-urlencoded"

        files = [(field, upload.read_part()) for field, upload in uploads]
        encoded = httpx.Request("POST", "http://roe.invalid/", data=dict(form), files=files)
        return encoded.read(), encoded.headers["Content-Type"]

    def post_dynamic_inputs(
        self,
        path: str,
        inputs: Mapping[str, Any],
        query: Query = None,
        out: Optional[Any] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Any:
        """POST agent inputs as a form and validate the JSON response as ``out``."""
        body, content_type = self.encode_dynamic_inputs(inputs)
        data = self.request(
            "POST",
            path,
            query=query,
            headers=[("Content-Type", content_type)],
            content=body,
            cancel=cancel,
        )
        return self._decode(data, out)

