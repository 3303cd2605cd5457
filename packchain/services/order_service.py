"""
Order service - shopping list validation into per-supplier orders.
Handles numbering, frozen pricing, deletion and order reads.
"""
import logging
import uuid
from decimal import Decimal
from datetime import datetime, timezone
from typing import List, Dict, Optional, Any

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from packchain.models import (
    Order, OrderLine, OrderStatus, OrderStatusHistory, MasterOrder,
    ShoppingListStatus, UserRole,
)
from packchain.exceptions import BadRequestError, ForbiddenError, NotFoundError, OrderLockedError
from packchain.permissions import Actor, require_station_access, require_permission
from packchain.services.catalog_service import get_pricing_terms
from packchain.services.shopping_list_service import find_draft, unlink_master_order
from packchain.services.workflow_service import refresh_master_order, lock_master_order, parse_status

logger = logging.getLogger(__name__)


def _config_value(name: str, default: str) -> str:
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def _token() -> str:
    return uuid.uuid4().hex[:8].upper()


def generate_order_number(supplier_id: int, now: Optional[datetime] = None) -> str:
    """Generate a unique order number: CMD-<yyyymmdd>-<supplier suffix>-<token>."""
    now = now or datetime.now(timezone.utc)
    prefix = _config_value('ORDER_NUMBER_PREFIX', 'CMD')
    return f"{prefix}-{now:%Y%m%d}-{supplier_id % 10000:04d}-{_token()}"


def generate_master_reference(now: Optional[datetime] = None) -> str:
    """Generate a unique master order reference: CG-<yyyymmddHHMMSS>-<token>."""
    now = now or datetime.now(timezone.utc)
    prefix = _config_value('MASTER_ORDER_PREFIX', 'CG')
    return f"{prefix}-{now:%Y%m%d%H%M%S}-{_token()}"


def validate_shopping_list(session: Session, station_id: int, actor: Actor) -> MasterOrder:
    """
    Turn the station's DRAFT list into one order per supplier under a new
    master order.

    Steps:
    1. Lock the draft (FOR UPDATE)
    2. Partition lines by supplier, in order of first appearance
    3. Create one REGISTERED order per partition with frozen catalog terms
    4. Create the master order over all orders
    5. Mark the list PROCESSED and link it to the master order
    6. Commit (all or nothing)

    Returns:
        The created MasterOrder

    Raises:
        BadRequestError: missing or empty draft, line without catalog terms
        ForbiddenError: actor may not act for the station
    """
    require_station_access(actor, station_id)
    require_permission(actor, 'validate_shopping_list')

    try:
        # Step 1: Lock draft
        draft = find_draft(session, station_id, lock=True)
        if not draft or not draft.lines:
            raise BadRequestError('The shopping list is empty.')

        # Step 2: Partition by supplier
        partitions = {}
        for line in draft.lines:
            partitions.setdefault(line.supplier_id, []).append(line)

        # Step 4 (created first so orders attach to it)
        master = MasterOrder(
            reference_code=generate_master_reference(),
            station_id=station_id,
            general_status=OrderStatus.REGISTERED,
            created_by_id=actor.actor_id
        )
        session.add(master)

        # Step 3: One order per supplier
        for supplier_id, lines in partitions.items():
            master.orders.append(_build_order(session, station_id, supplier_id, lines, actor))

        refresh_master_order(master)

        # Step 5: Close the list
        draft.status = ShoppingListStatus.PROCESSED
        draft.processed_at = datetime.now(timezone.utc)
        draft.master_order = master

        # Step 6: Commit
        session.commit()

        logger.info(
            f"[ORDERS] Shopping list #{draft.id} validated: master {master.reference_code}, "
            f"{len(master.orders)} order(s), total {master.total_excluding_tax}"
        )
        return master

    except Exception:
        session.rollback()
        raise


def get_order(session: Session, order_id: int, actor: Actor) -> Order:
    """Fetch an order visible to the actor."""
    order = _visible_orders(session, actor).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError(f'Order #{order_id} not found.')
    return order


def list_orders(
    session: Session,
    actor: Actor,
    status=None,
    master_order_id: Optional[int] = None
) -> List[Order]:
    """Orders visible to the actor, newest first."""
    query = _visible_orders(session, actor)
    if status is not None:
        query = query.filter(Order.status == parse_status(status))
    if master_order_id is not None:
        query = query.filter(Order.master_order_id == master_order_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def delete_order(session: Session, order_id: int, actor: Actor) -> Dict[str, Any]:
    """
    Delete a REGISTERED order of the caller's station.

    The order leaves its master order, whose total, supplier count and status
    are recomputed. A master order left without orders is deleted too.

    Returns:
        dict with the deleted order number and what happened to the master
    """
    if actor is None or actor.role != UserRole.STATION.value:
        raise ForbiddenError('Only the ordering station can delete an order.')
    require_permission(actor, 'delete_orders')

    try:
        order = session.query(Order).filter(
            Order.id == order_id,
            Order.station_id == actor.entity_id
        ).with_for_update().populate_existing().first()

        if not order:
            raise NotFoundError(f'Order #{order_id} not found.')

        if order.status != OrderStatus.REGISTERED:
            raise OrderLockedError(payload={'current_status': order.status.value})

        order_number = order.order_number
        master = lock_master_order(session, order.master_order_id)
        master_id, master_reference = master.id, master.reference_code
        master.orders.remove(order)
        session.delete(order)

        master_deleted = not master.orders
        if master_deleted:
            unlink_master_order(session, master_id)
            session.delete(master)
        else:
            refresh_master_order(master)

        session.commit()

        logger.info(
            f"[ORDERS] Order {order_number} deleted"
            + (f", master {master_reference} removed" if master_deleted else "")
        )
        return {
            'order_number': order_number,
            'master_order_id': master_id,
            'master_deleted': master_deleted,
            'master_total': None if master_deleted else master.total_excluding_tax,
        }

    except Exception:
        session.rollback()
        raise


def serialize_order(order: Order, include_lines: bool = True) -> Dict[str, Any]:
    """Plain dict representation of an order."""
    data = {
        'id': order.id,
        'order_number': order.order_number,
        'master_order_id': order.master_order_id,
        'station_id': order.station_id,
        'supplier_id': order.supplier_id,
        'supplier_name': order.supplier.name if order.supplier else None,
        'status': order.status.value,
        'total_excluding_tax': str(order.total_excluding_tax),
        'version': order.version,
        'created_at': _iso(order.created_at),
        'shipment': None,
        'receipt': None,
        'rejection_reason': order.rejection_reason,
    }

    if order.dispatched_at or order.carrier:
        data['shipment'] = {
            'carrier': order.carrier,
            'tracking_number': order.tracking_number,
            'dispatched_at': _iso(order.dispatched_at),
            'delivery_note_key': order.delivery_note_key,
        }
    if order.received_at:
        data['receipt'] = {
            'received_at': _iso(order.received_at),
            'signed_delivery_note_key': order.signed_delivery_note_key,
        }

    if include_lines:
        data['lines'] = [
            {
                'id': line.id,
                'article_id': line.article_id,
                'ordered_quantity': line.ordered_quantity,
                'unit_price': str(line.unit_price),
                'line_total': str(line.line_total),
                'packaging_unit': line.packaging_unit,
                'quantity_per_package': line.quantity_per_package,
                'supplier_reference': line.supplier_reference,
                'desired_delivery_date': _iso(line.desired_delivery_date),
                'confirmed_delivery_date': _iso(line.confirmed_delivery_date),
                'received_quantity': line.received_quantity,
            }
            for line in order.lines
        ]
        data['non_conformities'] = [
            {
                'id': nc.id,
                'stage': nc.stage.value,
                'description': nc.description,
                'photo_keys': list(nc.photo_keys or []),
                'reported_at': _iso(nc.reported_at),
            }
            for nc in order.non_conformities
        ]
        data['status_history'] = [
            {'status': h.status.value, 'changed_at': _iso(h.changed_at), 'comment': h.comment}
            for h in order.status_history
        ]

    return data


# =============================================================================
# PRIVATE HELPERS
# =============================================================================

def _build_order(session, station_id, supplier_id, lines, actor) -> Order:
    """Create a REGISTERED order with catalog terms frozen onto its lines."""
    order = Order(
        order_number=generate_order_number(supplier_id),
        station_id=station_id,
        supplier_id=supplier_id,
        status=OrderStatus.REGISTERED,
        created_by_id=actor.actor_id
    )

    total = Decimal('0')
    for line in lines:
        terms = get_pricing_terms(session, line.article_id, line.supplier_id)
        if not terms:
            raise BadRequestError(
                f'No catalog terms for article "{line.article.code}" at supplier "{line.supplier.name}".',
                payload={'article_id': line.article_id, 'supplier_id': line.supplier_id}
            )

        order.lines.append(OrderLine(
            article_id=line.article_id,
            ordered_quantity=line.quantity,
            unit_price=terms['unit_price'],
            packaging_unit=terms['packaging_unit'],
            quantity_per_package=terms['quantity_per_package'],
            supplier_reference=terms['supplier_reference'],
            desired_delivery_date=line.desired_delivery_date
        ))
        total += terms['unit_price'] * line.quantity

    order.total_excluding_tax = total.quantize(Decimal('0.01'))
    order.status_history.append(OrderStatusHistory(
        status=OrderStatus.REGISTERED,
        changed_by_id=actor.actor_id
    ))
    return order


def _visible_orders(session, actor):
    query = session.query(Order)
    if actor is None:
        raise ForbiddenError()
    if actor.is_managing_party:
        return query
    if actor.role == UserRole.STATION.value:
        return query.filter(Order.station_id == actor.entity_id)
    if actor.role == UserRole.SUPPLIER.value:
        return query.filter(Order.supplier_id == actor.entity_id)
    raise ForbiddenError()


def _iso(value):
    return value.isoformat() if value is not None else None
