"""httpx client for service-to-service calls with typed downstream errors."""
from __future__ import annotations

from typing import Any

import httpx
import structlog

from services.shared.config import ServiceEndpoint
from services.shared.errors import (
    DownstreamAbortError,
    DownstreamStatusError,
    DownstreamTimeoutError,
)

logger = structlog.get_logger(__name__)

INTERNAL_SECRET_HEADER = "x-internal-service-secret"


class ServiceClient:
    """
    One client per downstream service.

    Every request is bounded by the endpoint timeout. A deadline surfaces
    as DownstreamTimeoutError, a dropped connection as DownstreamAbortError
    and any non-2xx response as DownstreamStatusError.
    """

    def __init__(
        self,
        endpoint: ServiceEndpoint,
        *,
        internal_secret: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        headers = {"accept": "application/json"}
        if internal_secret:
            headers[INTERNAL_SECRET_HEADER] = internal_secret
        self._client = httpx.AsyncClient(
            timeout=endpoint.timeout_seconds,
            headers=headers,
            transport=transport,
        )

    @property
    def endpoint(self) -> ServiceEndpoint:
        return self._endpoint

    async def get(self, path: str, *, params: dict[str, Any] | None = None, headers: dict[str, str] | None = None) -> Any:
        return await self._request("GET", path, params=params, headers=headers)

    async def post(self, path: str, *, json: Any = None, headers: dict[str, str] | None = None) -> Any:
        return await self._request("POST", path, json=json, headers=headers)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self._endpoint.url(path)
        name = self._endpoint.name
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("downstream_timeout", service=name, url=url)
            raise DownstreamTimeoutError(
                name, f"no response within {self._endpoint.timeout_seconds}s"
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("downstream_aborted", service=name, url=url, error=str(exc))
            raise DownstreamAbortError(name, f"request aborted: {exc}") from exc

        if not response.is_success:
            raise DownstreamStatusError(name, response.status_code, _body(response))
        if not response.content:
            return None
        return _body(response)


def _body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
