from typing import Any, Dict

from core.money import from_minor
from modules.realtime.enums.event_enums import EntityType, EventType
from modules.realtime.services.broadcast_channel import broadcast_channel
from ..models.order_models import Order


def order_to_wire(order: Order) -> Dict[str, Any]:
    """camelCase order shape used in broadcast events and state snapshots."""
    return {
        "id": order.id,
        "orderNumber": order.order_number,
        "orderType": order.order_type,
        "tableId": order.table_id,
        "customerName": order.customer_name,
        "customerPhone": order.customer_phone,
        "deliveryAddress": order.delivery_address,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "subtotal": str(from_minor(order.subtotal)),
        "deliveryFee": str(from_minor(order.delivery_fee)),
        "total": str(from_minor(order.total)),
        "items": [
            {
                "name": item.name,
                "quantity": item.quantity,
                "unitPrice": str(from_minor(item.unit_price)),
                "isCustom": item.is_custom,
            }
            for item in order.order_items
        ],
        "createdAt": order.created_at.isoformat() if order.created_at else None,
    }


def publish_order_status(order: Order, **extra):
    payload = {
        "status": order.status,
        "paymentStatus": order.payment_status,
        "archived": order.archived_at is not None,
    }
    payload.update(extra)
    broadcast_channel.publish(
        EventType.ORDER_STATUS_UPDATED,
        EntityType.ORDER,
        order.id,
        payload,
        table_id=order.table_id,
        order_id=order.id,
    )
