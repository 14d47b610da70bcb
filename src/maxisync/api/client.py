"""
HTTP client for the local inventory backend.

Manifesto:
    The client never raises on a failed call. Every request resolves to an
    :class:`ApiResponse` whose ``success`` flag callers must check;
    transport errors, timeouts, HTTP error statuses and malformed bodies
    all become ``ApiResponse(success=False, ...)``. The synchronization
    core relies on this: a fetch or write that fails is a value to inspect,
    not an exception that might escape a listener.

Architecture:
    ::

        ApiClient(base_url, timeout=10.0)
          ├── request(method, endpoint, data, requires_auth) → ApiResponse
          ├── products: get_products / get_product / create_product /
          │             update_product / update_product_stock /
          │             delete_product / get_product_by_barcode
          ├── users:    get_users / get_user / create_user / update_user / delete_user
          ├── sales:    get_sales / get_sale / create_sale / update_sale / delete_sale
          ├── transactions: get_transactions / get_transaction / create_transaction
          ├── health()
          ├── fetcher_for(kind)  ─ list fetch used by the cache store
          └── replay(ApiRequest) ─ re-issue a serialized request (offline queue)

Tags:
    http, httpx, api-client, maxisync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from maxisync.core.enums import EntityKind
from maxisync.core.errors import ApiError, ConnectionUnavailableError, ErrorCategory
from maxisync.core.logging import get_logger

logger = get_logger(__name__)

_BODY_METHODS = {"post", "put", "patch"}


@dataclass
class ApiRequest:
    """Serializable description of a backend call."""

    method: str
    endpoint: str
    data: Any = None
    requires_auth: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApiRequest:
        return cls(
            method=data["method"],
            endpoint=data["endpoint"],
            data=data.get("data"),
            requires_auth=data.get("requires_auth", True),
        )


@dataclass
class ApiResponse:
    """Discriminated result of a backend call.

    Attributes:
        success: Whether the call succeeded
        data: Decoded JSON payload on success
        message: Human-readable failure message
        error: Failure details
        status: HTTP status, ``None`` when the backend was never reached
        queued: True when the write was deferred to the offline queue
    """

    success: bool
    data: Any = None
    message: str | None = None
    error: ApiError | None = None
    status: int | None = None
    queued: bool = False

    @classmethod
    def ok(cls, data: Any = None, status: int | None = 200) -> ApiResponse:
        return cls(success=True, data=data, status=status)

    @classmethod
    def failure(
        cls,
        message: str,
        *,
        status: int | None = None,
        details: Any = None,
        endpoint: str | None = None,
        rejected: bool = False,
    ) -> ApiResponse:
        """Failed result; ``rejected`` marks a request the client refused to send."""
        if rejected:
            error = ApiError(message, status=status, category=ErrorCategory.INVOCATION)
        elif status is None:
            error = ConnectionUnavailableError(message)
        else:
            error = ApiError(message, status=status)
        if endpoint:
            error.with_context(endpoint=endpoint)
        if details is not None:
            error.with_context(details=details)
        return cls(success=False, message=message, error=error, status=status)

    @classmethod
    def deferred(cls, message: str = "Operation queued for replay") -> ApiResponse:
        return cls(success=False, message=message, queued=True)

    @classmethod
    def from_payload(cls, payload: Any, status: int | None = 200) -> ApiResponse:
        """Interpret a decoded 2xx body; honors ``{"success": false}`` envelopes."""
        if isinstance(payload, dict) and payload.get("success") is False:
            return cls.failure(
                payload.get("message") or "Request failed",
                status=status,
                details=payload.get("error"),
            )
        return cls.ok(payload, status=status)

    @property
    def is_connection_error(self) -> bool:
        """True when the backend could not be reached at all."""
        return (
            not self.success
            and not self.queued
            and isinstance(self.error, ConnectionUnavailableError)
        )

    def record(self, key: str | None = None) -> dict[str, Any] | None:
        """Single record from the payload (``{"product": {...}}`` or the body itself)."""
        if not self.success or not isinstance(self.data, dict):
            return None
        if key and isinstance(self.data.get(key), dict):
            return self.data[key]
        return self.data

    def records(self, key: str | None = None) -> list[dict[str, Any]]:
        """List of records from the payload, unwrapping common envelopes."""
        if not self.success:
            return []
        payload = self.data
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            for candidate in (key, "data", "items"):
                if candidate and isinstance(payload.get(candidate), list):
                    return payload[candidate]
        return []


Fetcher = Callable[[], Awaitable[ApiResponse]]


class ApiClient:
    """Async client for the inventory backend REST API.

    Example::

        async with ApiClient("http://127.0.0.1:5000/api", token=token) as api:
            response = await api.get_products()
            if response.success:
                products = response.records("products")
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url + "/",
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Session token ────────────────────────────────────────────

    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token

    # ── Core request ─────────────────────────────────────────────

    async def request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        *,
        requires_auth: bool = True,
    ) -> ApiResponse:
        """Perform a request; never raises."""
        method = method.lower()
        path = endpoint.lstrip("/")

        if requires_auth and not self._token:
            logger.warning("api_no_session", method=method, endpoint=path)
            return ApiResponse.failure(
                "No active session. Please log in again.", status=401, endpoint=path
            )

        headers = {}
        if requires_auth:
            headers["Authorization"] = f"Bearer {self._token}"

        kwargs: dict[str, Any] = {"headers": headers}
        if data is not None:
            if method in _BODY_METHODS:
                kwargs["json"] = data
            elif method == "get" and isinstance(data, dict):
                kwargs["params"] = data

        try:
            response = await self._client.request(method.upper(), path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("api_timeout", method=method, endpoint=path, error=str(exc))
            return ApiResponse.failure(f"Request timed out: {exc}", endpoint=path)
        except httpx.HTTPError as exc:
            logger.error("api_connection_error", method=method, endpoint=path, error=str(exc))
            return ApiResponse.failure(str(exc) or "Connection error", endpoint=path)
        except httpx.InvalidURL as exc:
            logger.error("api_invalid_url", method=method, endpoint=path, error=str(exc))
            return ApiResponse.failure(f"Invalid request URL: {exc}", endpoint=path, rejected=True)
        except (TypeError, ValueError) as exc:
            # the body could not be encoded as JSON
            logger.error("api_encoding_error", method=method, endpoint=path, error=str(exc))
            return ApiResponse.failure(
                f"Request body could not be encoded: {exc}", endpoint=path, rejected=True
            )

        payload = self._decode(response)

        if response.is_error:
            if response.status_code == 401 and requires_auth:
                logger.warning("api_token_rejected", endpoint=path)
                self._token = None
            message = None
            if isinstance(payload, dict):
                message = payload.get("message")
            logger.error(
                "api_error_status",
                method=method,
                endpoint=path,
                status=response.status_code,
            )
            return ApiResponse.failure(
                message or f"HTTP {response.status_code}",
                status=response.status_code,
                details=payload,
                endpoint=path,
            )

        logger.debug("api_response", method=method, endpoint=path, status=response.status_code)
        return ApiResponse.from_payload(payload, status=response.status_code)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def replay(self, request: ApiRequest) -> ApiResponse:
        """Re-issue a serialized request."""
        return await self.request(
            request.method,
            request.endpoint,
            request.data,
            requires_auth=request.requires_auth,
        )

    async def health(self) -> ApiResponse:
        return await self.request("get", "health", requires_auth=False)

    # ── Products ─────────────────────────────────────────────────

    async def get_products(self) -> ApiResponse:
        return await self.request("get", "products")

    async def get_product(self, product_id: str) -> ApiResponse:
        return await self.request("get", f"products/{product_id}")

    async def create_product(self, data: dict[str, Any]) -> ApiResponse:
        return await self.request("post", "products", data)

    async def update_product(self, product_id: str, data: dict[str, Any]) -> ApiResponse:
        return await self.request("put", f"products/{product_id}", data)

    async def update_product_stock(self, product_id: str, data: dict[str, Any]) -> ApiResponse:
        """PATCH ``{stock, stock_surtido?}`` for a product."""
        return await self.request("patch", f"products/{product_id}/stock", data)

    async def delete_product(self, product_id: str) -> ApiResponse:
        return await self.request("delete", f"products/{product_id}")

    async def get_product_by_barcode(self, barcode: str) -> ApiResponse:
        return await self.request("get", f"products/barcode/{barcode}")

    # ── Users ────────────────────────────────────────────────────

    async def get_users(self) -> ApiResponse:
        return await self.request("get", "users")

    async def get_user(self, user_id: str) -> ApiResponse:
        return await self.request("get", f"users/{user_id}")

    async def create_user(self, data: dict[str, Any]) -> ApiResponse:
        return await self.request("post", "users", data)

    async def update_user(self, user_id: str, data: dict[str, Any]) -> ApiResponse:
        return await self.request("put", f"users/{user_id}", data)

    async def delete_user(self, user_id: str) -> ApiResponse:
        return await self.request("delete", f"users/{user_id}")

    # ── Sales ────────────────────────────────────────────────────

    async def get_sales(self) -> ApiResponse:
        return await self.request("get", "sales")

    async def get_sale(self, sale_id: str) -> ApiResponse:
        return await self.request("get", f"sales/{sale_id}")

    async def create_sale(self, data: dict[str, Any]) -> ApiResponse:
        return await self.request("post", "sales", data)

    async def update_sale(self, sale_id: str, data: dict[str, Any]) -> ApiResponse:
        return await self.request("put", f"sales/{sale_id}", data)

    async def delete_sale(self, sale_id: str) -> ApiResponse:
        return await self.request("delete", f"sales/{sale_id}")

    # ── Transactions ─────────────────────────────────────────────

    async def get_transactions(self, params: dict[str, Any] | None = None) -> ApiResponse:
        return await self.request("get", "transactions", params)

    async def get_transaction(self, transaction_id: str) -> ApiResponse:
        return await self.request("get", f"transactions/{transaction_id}")

    async def create_transaction(self, data: dict[str, Any]) -> ApiResponse:
        return await self.request("post", "transactions", data)

    # ── Cache integration ────────────────────────────────────────

    def fetcher_for(self, kind: EntityKind) -> Fetcher:
        """List fetch for an entity kind."""
        fetchers: dict[EntityKind, Fetcher] = {
            EntityKind.PRODUCTS: self.get_products,
            EntityKind.SALES: self.get_sales,
            EntityKind.TRANSACTIONS: self.get_transactions,
            EntityKind.USERS: self.get_users,
        }
        return fetchers[kind]

    def fetchers(self) -> dict[EntityKind, Fetcher]:
        return {kind: self.fetcher_for(kind) for kind in EntityKind}


__all__ = ["ApiClient", "ApiRequest", "ApiResponse", "Fetcher"]
