"""
Balance Source Exceptions - Custom exception hierarchy.

Configuration and exchange-rate errors are fatal. Holder fetch errors
are absorbed by the fetcher unless strict mode is enabled.
"""

from datetime import datetime
from typing import Any, Optional


class BalanceSourceError(Exception):
    """Base exception for all balance source errors."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.source_name = source_name
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source_name": self.source_name,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.source_name:
            parts.append(f"[source={self.source_name}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class ConfigurationError(BalanceSourceError):
    """Missing or invalid configuration."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.config_key = config_key

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data


class UnknownProtocolError(ConfigurationError):
    """No source is registered for the requested protocol."""

    def __init__(
        self,
        message: str,
        protocol: Optional[str] = None,
        known_protocols: Optional[list[str]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, "protocol", None, context)
        self.protocol = protocol
        self.known_protocols = known_protocols or []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "protocol": self.protocol,
            "known_protocols": self.known_protocols,
        })
        return data


class MissingMultiplierError(ConfigurationError):
    """Caller did not supply a multiplier for a configured asset."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        asset_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, "multipliers", None, context)
        self.asset_id = asset_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["asset_id"] = self.asset_id
        return data


class QueryError(BalanceSourceError):
    """Non-success response from the height-pinned query layer."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        height: Optional[int] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        self.height = height

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
            "height": self.height,
        })
        return data


class ExchangeRateError(BalanceSourceError):
    """Pool-share supply is zero or negative at the pinned height."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        asset_id: Optional[str] = None,
        underlying_supply: Optional[int] = None,
        share_supply: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, None, context)
        self.asset_id = asset_id
        self.underlying_supply = underlying_supply
        self.share_supply = share_supply

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "asset_id": self.asset_id,
            "underlying_supply": self.underlying_supply,
            "share_supply": self.share_supply,
        })
        return data


class HolderFetchError(BalanceSourceError):
    """A single holder's balance read failed."""

    def __init__(
        self,
        message: str,
        source_name: Optional[str] = None,
        address: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, source_name, original_error, context)
        self.address = address

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["address"] = self.address
        return data
