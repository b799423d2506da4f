# Mapping of Alpaca REST error responses onto the client error taxonomy

from typing import Any, Dict, Optional, Type

import httpx

from core.utils.exceptions import (
    AuthenticationError,
    BackendError,
    DuplicateOrderError,
    InsufficientFundsError,
    MarketClosedError,
    NotTradableError,
    OrderRejectedError,
    RateLimitError,
    TradingClientError,
    TransportError,
    UnknownSymbolError,
)

# Substrings of Alpaca's "message" field, checked in order
_REJECTION_PATTERNS = (
    (("insufficient buying power", "insufficient qty", "insufficient funds", "buying power"), InsufficientFundsError),
    (("market is closed", "market closed", "outside of market hours"), MarketClosedError),
    (("client_order_id must be unique", "duplicate", "already exists"), DuplicateOrderError),
    (("not tradable", "not active", "is not fractionable", "cannot be traded"), NotTradableError),
    (("asset not found", "could not find asset", "invalid symbol", "unknown symbol"), UnknownSymbolError),
)


def error_payload(response: httpx.Response) -> Dict[str, Any]:
    """Best-effort decode of an Alpaca error body; never raises."""
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text[:500]} if response.text else {}
    return data if isinstance(data, dict) else {"message": str(data)}


def classify_rejection(message: str) -> Type[BackendError]:
    text = message.lower()
    for needles, error_cls in _REJECTION_PATTERNS:
        if any(needle in text for needle in needles):
            return error_cls
    return OrderRejectedError


def map_error_response(response: httpx.Response, broker: str,
                       operation: str) -> TradingClientError:
    """
    Translate a non-2xx Alpaca response.

    404 handling for lookups is left to the caller, which knows what the
    missing resource is.
    """
    status = response.status_code
    payload = error_payload(response)
    message = str(payload.get("message") or response.reason_phrase or f"HTTP {status}")
    code: Optional[str] = str(payload["code"]) if payload.get("code") is not None else None
    details = {"status_code": status, "operation": operation}

    if status >= 500:
        return TransportError(f"Alpaca server error during {operation}: {message}",
                              broker=broker, details=details)
    if status == 401:
        return AuthenticationError(message, broker=broker, api_error_code=code,
                                   api_response=payload, details=details)
    if status == 429:
        return RateLimitError(message, broker=broker, api_error_code=code,
                              api_response=payload, details=details)
    if status == 403:
        error_cls = classify_rejection(message)
        if error_cls is OrderRejectedError and any(
            word in message.lower() for word in ("unauthorized", "forbidden", "not authorized")
        ):
            error_cls = AuthenticationError
        return error_cls(message, broker=broker, api_error_code=code,
                         api_response=payload, details=details)
    if status == 404 and operation == "submit_order":
        return UnknownSymbolError(message, broker=broker, api_error_code=code,
                                  api_response=payload, details=details)

    error_cls = classify_rejection(message)
    return error_cls(message, broker=broker, api_error_code=code,
                     api_response=payload, details=details)
