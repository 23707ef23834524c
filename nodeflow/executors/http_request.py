from __future__ import annotations

import base64
from typing import Any, Dict, Mapping, Optional

import httpx

from nodeflow.config import Settings, get_settings
from nodeflow.executors.base import NodeExecutor, to_bool
from nodeflow.logging import get_logger
from nodeflow.service.models import (
    CredentialRequirement,
    DisplayOptions,
    ExecutionContext,
    ExecutionResult,
    NodeOption,
    NodeProperty,
    NodeSchema,
    ResourceHints,
)

logger = get_logger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class HttpRequestExecutor(NodeExecutor):
    """Call an arbitrary HTTP endpoint.

    URL, headers, body and query parameters are interpolated before the
    request. Non-2xx answers, timeouts and transport errors come back as
    failed results; 429 and 5xx answers and transport problems are marked
    retryable.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    def get_schema(self) -> NodeSchema:
        return NodeSchema(
            name="httpRequest",
            display_name="HTTP Request",
            description="Make HTTP requests to any API or webhook",
            group=("core", "network"),
            icon="fas:globe",
            color="#2196F3",
            credentials=(
                CredentialRequirement("httpEndpoint", required=False, display_name="HTTP Endpoint"),
            ),
            properties=(
                NodeProperty(
                    name="method",
                    display_name="Method",
                    type="options",
                    required=True,
                    default="GET",
                    options=tuple(NodeOption(m, m) for m in HTTP_METHODS),
                ),
                NodeProperty(
                    name="url",
                    display_name="URL",
                    type="string",
                    required=True,
                    placeholder="https://api.example.com/endpoint",
                    description="The URL to make the request to",
                ),
                NodeProperty(
                    name="headers",
                    display_name="Headers",
                    type="json",
                    default={},
                    description="HTTP headers as JSON object",
                ),
                NodeProperty(
                    name="body",
                    display_name="Body",
                    type="json",
                    description="Request body (for POST, PUT, PATCH)",
                    display_options=DisplayOptions(show={"method": list(BODY_METHODS)}),
                ),
                NodeProperty(
                    name="queryParameters",
                    display_name="Query Parameters",
                    type="json",
                    default={},
                    description="URL query parameters as JSON object",
                ),
                NodeProperty(
                    name="timeout",
                    display_name="Timeout (seconds)",
                    type="number",
                    default=30,
                    description="Request timeout in seconds",
                ),
                NodeProperty(
                    name="followRedirects",
                    display_name="Follow Redirects",
                    type="boolean",
                    default=True,
                ),
                NodeProperty(
                    name="ignoreSSLIssues",
                    display_name="Ignore SSL Issues",
                    type="boolean",
                    default=False,
                    description="Ignore SSL certificate issues (not recommended for production)",
                ),
                NodeProperty(
                    name="responseFormat",
                    display_name="Response Format",
                    type="options",
                    default="json",
                    options=(
                        NodeOption("JSON", "json"),
                        NodeOption("Text", "text"),
                        NodeOption("Binary", "binary"),
                    ),
                ),
            ),
            resources=ResourceHints(memory_mb=32, timeout_seconds=60, rate_limit_per_minute=200),
        )

    def _client(
        self, *, timeout: float, follow_redirects: bool = True, verify: bool = True
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout, connect=min(timeout, self.settings.http_connect_timeout_seconds)
            ),
            follow_redirects=follow_redirects,
            max_redirects=self.settings.http_max_redirects,
            verify=verify,
            transport=self._transport,
        )

    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        params = context.parameters
        method = str(params.get("method") or "GET").upper()
        response_format = params.get("responseFormat") or "json"
        try:
            timeout = float(
                self.replace_variables(params.get("timeout"), context)
                or self.settings.http_timeout_seconds
            )
        except (TypeError, ValueError):
            return self.error_result(f"Invalid timeout: {params.get('timeout')}")

        raw_url = str(self.replace_variables(params.get("url"), context) or "")
        try:
            url = httpx.URL(raw_url)
        except httpx.InvalidURL as exc:
            return self.error_result(f"Invalid URL: {exc}")
        if url.scheme not in ("http", "https") or not url.host:
            return self.error_result(f"Invalid URL: {raw_url}")

        headers = self.process_value(params.get("headers") or {}, context)
        query = self.process_value(params.get("queryParameters") or {}, context)
        if not isinstance(headers, Mapping) or not isinstance(query, Mapping):
            return self.error_result("Headers and Query Parameters must be JSON objects")
        query = {k: str(v) for k, v in query.items() if v is not None}
        if query:
            url = url.copy_merge_params(query)

        request_kwargs: Dict[str, Any] = {"headers": {k: str(v) for k, v in headers.items()}}
        body = params.get("body")
        if body is not None and method in BODY_METHODS:
            body = self.process_value(body, context)
            if isinstance(body, (dict, list)):
                request_kwargs["json"] = body
            else:
                request_kwargs["content"] = str(body)

        logger.info("http_request_started", node_id=context.node_id, method=method, url=str(url))
        try:
            async with self._client(
                timeout=timeout,
                follow_redirects=to_bool(params.get("followRedirects"), True),
                verify=not to_bool(params.get("ignoreSSLIssues"), False),
            ) as client:
                response = await client.request(method, url, **request_kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("http_request_timeout", node_id=context.node_id, url=str(url), error=str(exc))
            return self.error_result(f"Request timed out after {timeout:g}s", should_retry=True)
        except httpx.HTTPError as exc:
            logger.warning("http_request_failed", node_id=context.node_id, url=str(url), error=str(exc))
            return self.error_result(f"Request failed: {exc}", should_retry=True)

        if not response.is_success:
            retryable = response.status_code == 429 or response.status_code >= 500
            logger.warning(
                "http_request_error_status",
                node_id=context.node_id,
                status_code=response.status_code,
                retryable=retryable,
            )
            return self.error_result(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                should_retry=retryable,
                retry_after=_retry_after_seconds(response) if retryable else None,
                metadata={
                    "statusCode": response.status_code,
                    "response": {
                        "statusCode": response.status_code,
                        "statusText": response.reason_phrase,
                        "headers": dict(response.headers),
                        "data": response.text,
                    },
                },
            )

        output = {
            "statusCode": response.status_code,
            "statusText": response.reason_phrase,
            "headers": dict(response.headers),
            "data": self._response_data(response, response_format),
            "url": str(url),
            "method": method,
        }
        return self.success_result(
            output,
            {
                "statusCode": response.status_code,
                "responseSize": len(response.content),
                "apiCallsUsed": 1,
            },
        )

    def _response_data(self, response: httpx.Response, response_format: str) -> Any:
        if response_format == "text":
            return response.text
        if response_format == "binary":
            return {
                "data": base64.b64encode(response.content).decode("ascii"),
                "contentType": response.headers.get("content-type"),
                "size": len(response.content),
            }
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def test_connection(self, credentials: Mapping[str, Any]) -> bool:
        base_url = credentials.get("baseUrl") or credentials.get("url")
        if not base_url:
            return False
        headers = {}
        if credentials.get("token"):
            headers["Authorization"] = f"Bearer {credentials['token']}"
        try:
            async with self._client(timeout=self.settings.http_timeout_seconds) as client:
                response = await client.get(str(base_url), headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("http_connection_test_failed", error=str(exc))
            return False
        return response.status_code < 500
