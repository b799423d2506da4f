"""
Contract-level order and symbol validation.

Runs before any adapter call so that invalid input never reaches a broker.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from core.schemas.models import Asset, Order, canonical_symbol
from core.trading.interfaces import BackendCapabilities
from core.utils.exceptions import ValidationError


def validate_symbol(symbol: Optional[str]) -> str:
    """Return the canonical form of `symbol` or raise ValidationError."""
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValidationError("Symbol must be a non-empty string", field="symbol", value=symbol)
    return canonical_symbol(symbol)


def validate_order(order: Order, capabilities: BackendCapabilities,
                   asset: Optional[Asset] = None) -> None:
    """
    Check an order against the contract rules.

    Args:
        order: The caller's order value
        capabilities: Capabilities of the bound adapter
        asset: Snapshot from an earlier get_asset call in this session, if any

    Raises:
        ValidationError: naming the first offending field
    """
    validate_symbol(order.symbol)

    if not order.quantity.is_finite() or order.quantity <= 0:
        raise ValidationError("Order quantity must be greater than zero",
                              field="quantity", value=order.quantity)

    order_type = order.order_type
    if order_type.requires_limit_price != (order.limit_price is not None):
        raise ValidationError(
            f"limit_price is {'required' if order_type.requires_limit_price else 'not allowed'} "
            f"for {order_type.value} orders",
            field="limit_price", value=order.limit_price,
        )
    if order_type.requires_stop_price != (order.stop_price is not None):
        raise ValidationError(
            f"stop_price is {'required' if order_type.requires_stop_price else 'not allowed'} "
            f"for {order_type.value} orders",
            field="stop_price", value=order.stop_price,
        )
    for field in ("limit_price", "stop_price"):
        price: Optional[Decimal] = getattr(order, field)
        if price is not None and (not price.is_finite() or price <= 0):
            raise ValidationError(f"{field} must be greater than zero", field=field, value=price)

    if order.is_fractional:
        if not capabilities.fractional_orders:
            raise ValidationError("Backend does not accept fractional quantities",
                                  field="quantity", value=order.quantity)
        if asset is not None and not asset.fractionable:
            raise ValidationError(f"{asset.symbol} is not fractionable",
                                  field="quantity", value=order.quantity)

    if order.client_order_id is not None:
        if not capabilities.idempotency_tokens:
            raise ValidationError("Backend does not support client order ids",
                                  field="client_order_id", value=order.client_order_id)
        if not order.client_order_id.strip():
            raise ValidationError("client_order_id must not be blank",
                                  field="client_order_id", value=order.client_order_id)
