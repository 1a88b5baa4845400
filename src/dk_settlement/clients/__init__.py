"""API clients for market data sources."""

from dk_settlement.clients.base import APIError, BaseClient, RateLimitError
from dk_settlement.clients.energidataservice import EnergiDataServiceClient

__all__ = ["APIError", "BaseClient", "EnergiDataServiceClient", "RateLimitError"]
