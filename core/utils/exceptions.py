# Structured exception hierarchy for the unified trading client

from enum import Enum
from typing import Dict, Any, Optional
from datetime import datetime, timezone


class TradingClientError(Exception):
    """Base exception for all trading client errors"""

    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)


# Configuration Errors
class ConfigurationError(TradingClientError):
    """Malformed or incomplete configuration - fatal to that construction attempt"""

    def __init__(self, message: str, config_field: Optional[str] = None,
                 config_value: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.config_field = config_field
        self.config_value = config_value


# Validation Errors
class ValidationError(TradingClientError):
    """Caller input violates the data model - raised before any network call"""

    def __init__(self, message: str, field: str, value: Any = None,
                 expected_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.expected_type = expected_type


# Broker Rejection Errors
class BackendErrorKind(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    MARKET_CLOSED = "market_closed"
    UNKNOWN_SYMBOL = "unknown_symbol"
    NOT_TRADABLE = "not_tradable"
    DUPLICATE_ORDER = "duplicate_order"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    REJECTED = "rejected"


class BackendError(TradingClientError):
    """Broker processed the request and rejected it"""

    kind: BackendErrorKind = BackendErrorKind.REJECTED

    def __init__(self, message: str, broker: str, api_error_code: Optional[str] = None,
                 api_response: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.broker = broker
        self.api_error_code = api_error_code
        self.api_response = api_response or {}


class InsufficientFundsError(BackendError):
    """Not enough buying power for the order - not retryable"""
    kind = BackendErrorKind.INSUFFICIENT_FUNDS


class MarketClosedError(BackendError):
    """Market is closed - may succeed later"""
    kind = BackendErrorKind.MARKET_CLOSED
    retryable = True


class UnknownSymbolError(BackendError):
    """Order references a symbol the broker does not know"""
    kind = BackendErrorKind.UNKNOWN_SYMBOL


class NotTradableError(BackendError):
    """Asset exists but cannot be traded"""
    kind = BackendErrorKind.NOT_TRADABLE


class DuplicateOrderError(BackendError):
    """Client order id was already used"""
    kind = BackendErrorKind.DUPLICATE_ORDER


class RateLimitError(BackendError):
    """Broker throttled the request - may succeed later"""
    kind = BackendErrorKind.RATE_LIMITED
    retryable = True


class AuthenticationError(BackendError):
    """Broker refused the credentials"""
    kind = BackendErrorKind.AUTHENTICATION


class OrderRejectedError(BackendError):
    """Any other provider-side rejection"""
    kind = BackendErrorKind.REJECTED


# Lookup Errors
class NotFoundError(TradingClientError):
    """Lookup target does not exist at the backend - terminal"""

    def __init__(self, message: str, resource: str, identifier: str, **kwargs):
        super().__init__(message, **kwargs)
        self.resource = resource
        self.identifier = identifier


# Transport Errors
class TransportError(TradingClientError):
    """Network, timeout or protocol-level I/O failure"""

    def __init__(self, message: str, broker: Optional[str] = None,
                 retryable: bool = True, **kwargs):
        super().__init__(message, **kwargs)
        self.broker = broker
        self.retryable = retryable


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error is worth retrying later.

    The client itself never retries order submission; this is advisory
    information for callers and for the subscription engine.
    """
    if isinstance(error, TradingClientError):
        return bool(error.retryable)
    return False


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "retryable": is_retryable_error(error)
    }

    if isinstance(error, TradingClientError):
        if error.correlation_id:
            context["correlation_id"] = error.correlation_id
        if error.details:
            context["error_details"] = error.details

        if isinstance(error, BackendError):
            context["broker"] = error.broker
            context["rejection_kind"] = error.kind.value
            if error.api_error_code:
                context["api_error_code"] = error.api_error_code

        if isinstance(error, TransportError) and error.broker:
            context["broker"] = error.broker

        if isinstance(error, NotFoundError):
            context["resource"] = error.resource
            context["identifier"] = error.identifier

        if isinstance(error, ValidationError):
            context["field"] = error.field

    if additional_context:
        context.update(additional_context)

    return context
