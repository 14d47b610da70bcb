"""Backend REST API client."""

from maxisync.api.client import ApiClient, ApiRequest, ApiResponse, Fetcher

__all__ = ["ApiClient", "ApiRequest", "ApiResponse", "Fetcher"]
