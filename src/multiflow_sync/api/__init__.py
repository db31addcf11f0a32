"""HTTP client for the Multiflow REST API."""

from multiflow_sync.api.client import ApiClient

__all__ = ["ApiClient"]
