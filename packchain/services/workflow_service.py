"""
Workflow service - order status state machine and master order propagation.

Orders move one step at a time along
REGISTERED -> CONFIRMED -> SHIPPED -> RECEIVED -> CLOSED -> INVOICED -> ARCHIVED.
REJECTED is terminal and only reachable from REGISTERED or CONFIRMED.
Every change of a child order recomputes its master order in the same
transaction.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, Iterable, List

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from packchain.models import (
    Order, OrderStatus, OrderStatusHistory, MasterOrder, NonConformity, NonConformityStage,
)
from packchain.exceptions import BadRequestError, ForbiddenError, NotFoundError, ConflictError
from packchain.permissions import Actor, require_permission

logger = logging.getLogger(__name__)


STATUS_SEQUENCE = [
    OrderStatus.REGISTERED,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.RECEIVED,
    OrderStatus.CLOSED,
    OrderStatus.INVOICED,
    OrderStatus.ARCHIVED,
]
STATUS_RANK = {status: rank for rank, status in enumerate(STATUS_SEQUENCE)}

REJECTABLE_STATUSES = (OrderStatus.REGISTERED, OrderStatus.CONFIRMED)


def _supplier_or_managing(actor, order):
    return actor.is_managing_party or actor.is_supplier(order.supplier_id)


def _supplier_only(actor, order):
    return actor.is_supplier(order.supplier_id)


def _station_only(actor, order):
    return actor.is_station(order.station_id)


def _station_or_managing(actor, order):
    return actor.is_managing_party or actor.is_station(order.station_id)


def _managing_only(actor, order):
    return actor.is_managing_party


# target status -> (allowed source statuses, permission, actor check)
TRANSITION_RULES = {
    OrderStatus.CONFIRMED: ((OrderStatus.REGISTERED,), 'confirm_orders', _supplier_or_managing),
    OrderStatus.SHIPPED: ((OrderStatus.CONFIRMED,), 'ship_orders', _supplier_only),
    OrderStatus.RECEIVED: ((OrderStatus.SHIPPED,), 'receive_orders', _station_only),
    OrderStatus.CLOSED: ((OrderStatus.RECEIVED,), 'close_orders', _managing_only),
    OrderStatus.INVOICED: ((OrderStatus.CLOSED,), 'invoice_orders', _managing_only),
    OrderStatus.ARCHIVED: ((OrderStatus.INVOICED,), 'archive_orders', _managing_only),
    OrderStatus.REJECTED: (REJECTABLE_STATUSES, 'cancel_orders', _station_or_managing),
}


def _coerce_status(value) -> Optional[OrderStatus]:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except (TypeError, ValueError):
        return None


def parse_status(value, field: str = 'status') -> OrderStatus:
    """Status filter or target given by a caller; unknown values are a BadRequest."""
    status = _coerce_status(value)
    if status is None:
        raise BadRequestError(f'Unknown order status for {field}: {value}', payload={'field': field})
    return status


def _as_int(value, field):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BadRequestError(f'Invalid integer for {field}: {value}', payload={'field': field})


def derive_general_status(statuses: Iterable) -> Optional[OrderStatus]:
    """
    Aggregate child order statuses into a master order status.

    The least advanced status among non-rejected children wins. When every
    child is REJECTED the result is REJECTED; with no children it is None.
    Unknown values are ignored.
    """
    known = [s for s in (_coerce_status(v) for v in statuses) if s is not None]
    if not known:
        return None

    live = [s for s in known if s != OrderStatus.REJECTED]
    if not live:
        return OrderStatus.REJECTED

    return min(live, key=STATUS_RANK.__getitem__)


def refresh_master_order(master: MasterOrder) -> MasterOrder:
    """
    Recompute total, supplier count and general status from the child orders.
    Does not flush. A master without children keeps its stored status.
    """
    orders = list(master.orders)

    total = sum((Decimal(o.total_excluding_tax) for o in orders), Decimal('0'))
    master.total_excluding_tax = total.quantize(Decimal('0.01'))
    master.supplier_count = len({o.supplier_id for o in orders})

    general_status = derive_general_status(o.status for o in orders)
    if general_status is not None:
        master.general_status = general_status

    return master


def lock_master_order(session: Session, master_order_id: int) -> Optional[MasterOrder]:
    return session.query(MasterOrder).filter(
        MasterOrder.id == master_order_id
    ).with_for_update().populate_existing().first()


def _as_date(value, field):
    if value is None or isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise BadRequestError(f'Invalid date for {field}: {value}')


def _lines_by_id(order, line_values, field):
    """Map {line_id: value} onto the order's lines; unknown ids are rejected."""
    lines = {line.id: line for line in order.lines}
    mapped = []
    for line_id, value in (line_values or {}).items():
        line = lines.get(_as_int(line_id, field))
        if line is None:
            raise BadRequestError(f'Line {line_id} does not belong to order {order.order_number}.', payload={'field': field})
        mapped.append((line, value))
    return mapped


# =============================================================================
# PAYLOAD APPLIERS
# =============================================================================

def _apply_confirmation(order: Order, payload: Dict[str, Any], actor: Actor) -> None:
    dates = payload.get('confirmed_delivery_dates')
    for line, value in _lines_by_id(order, dates, 'confirmed_delivery_dates'):
        line.confirmed_delivery_date = _as_date(value, 'confirmed_delivery_dates')


def _apply_shipment(order: Order, payload: Dict[str, Any], actor: Actor) -> None:
    carrier = (payload.get('carrier') or '').strip()
    if not carrier:
        raise BadRequestError('Shipment details require a carrier.', payload={'field': 'carrier'})

    order.carrier = carrier
    order.dispatched_at = payload.get('dispatched_at') or datetime.now(timezone.utc)
    order.tracking_number = payload.get('tracking_number')
    order.delivery_note_key = payload.get('delivery_note_key')


def _apply_receipt(order: Order, payload: Dict[str, Any], actor: Actor) -> None:
    order.received_at = payload.get('received_at') or datetime.now(timezone.utc)
    order.signed_delivery_note_key = payload.get('signed_delivery_note_key')

    for line, quantity in _lines_by_id(order, payload.get('received_quantities'), 'received_quantities'):
        quantity = _as_int(quantity, 'received_quantities')
        if quantity < 0:
            raise BadRequestError('Received quantity cannot be negative.', payload={'field': 'received_quantities'})
        line.received_quantity = quantity

    for report in payload.get('non_conformities') or []:
        description = (report.get('description') or '').strip()
        if not description:
            raise BadRequestError('A non-conformity needs a description.', payload={'field': 'non_conformities'})
        order.non_conformities.append(NonConformity(
            stage=NonConformityStage.RECEPTION,
            description=description,
            photo_keys=list(report.get('photo_keys') or []),
            reported_by_id=actor.actor_id,
            reported_at=order.received_at,
        ))


def _apply_rejection(order: Order, payload: Dict[str, Any], actor: Actor) -> None:
    order.rejection_reason = payload.get('reason')


PAYLOAD_APPLIERS = {
    OrderStatus.CONFIRMED: _apply_confirmation,
    OrderStatus.SHIPPED: _apply_shipment,
    OrderStatus.RECEIVED: _apply_receipt,
    OrderStatus.REJECTED: _apply_rejection,
}


# =============================================================================
# TRANSITIONS
# =============================================================================

def transition_order(
    session: Session,
    order_id: int,
    target_status,
    actor: Actor,
    payload: Optional[Dict[str, Any]] = None,
    expected_version: Optional[int] = None
) -> Order:
    """
    Move an order one step along its lifecycle.

    Steps:
    1. Lock the order row
    2. Check the caller's version, when given
    3. Check the move is adjacent and the actor may perform it
    4. Apply the transition payload and record history
    5. Recompute the master order
    6. Commit

    Raises:
        BadRequestError: unknown target, non-adjacent move, missing payload
        ForbiddenError: role or ownership failure
        NotFoundError: unknown order
        ConflictError: the order changed since the caller read it
    """
    target = _coerce_status(target_status)
    payload = payload or {}

    try:
        # Step 1: Lock order
        order = session.query(Order).filter(Order.id == order_id).with_for_update().populate_existing().first()
        if not order:
            raise NotFoundError(f'Order #{order_id} not found.')

        # Step 2: Optimistic guard
        if expected_version is not None and order.version != expected_version:
            raise ConflictError(payload={'current_version': order.version})

        # Step 3: Adjacency and role
        rule = TRANSITION_RULES.get(target)
        if rule is None:
            raise BadRequestError(f'Unknown target status: {target_status}')

        allowed_sources, permission, actor_check = rule
        previous = order.status
        if previous not in allowed_sources:
            raise BadRequestError(
                f'Cannot move order {order.order_number} from {previous.value} to {target.value}.',
                payload={'current_status': previous.value, 'target_status': target.value}
            )

        require_permission(actor, permission)
        if not actor_check(actor, order):
            raise ForbiddenError(f'You are not allowed to move order {order.order_number} to {target.value}.')

        # Step 4: Payload and history
        applier = PAYLOAD_APPLIERS.get(target)
        if applier:
            applier(order, payload, actor)

        order.status = target
        order.status_history.append(OrderStatusHistory(
            status=target,
            comment=payload.get('comment') or payload.get('reason'),
            changed_by_id=actor.actor_id,
        ))
        session.flush()

        # Step 5: Propagate to master
        master = lock_master_order(session, order.master_order_id)
        refresh_master_order(master)

        # Step 6: Commit
        session.commit()

        logger.info(
            f"[ORDERS] Order {order.order_number}: {previous.value} -> {target.value} "
            f"(actor={actor.actor_id}, master status={master.general_status.value})"
        )
        return order

    except StaleDataError:
        session.rollback()
        logger.warning(f"[ORDERS] Concurrent update detected on order #{order_id}")
        raise ConflictError()
    except Exception:
        session.rollback()
        raise


def confirm_order(session, order_id, actor, confirmed_delivery_dates=None, expected_version=None):
    """Supplier (or managing party) accepts the order, optionally dating each line."""
    payload = {'confirmed_delivery_dates': confirmed_delivery_dates}
    return transition_order(session, order_id, OrderStatus.CONFIRMED, actor, payload, expected_version)


def ship_order(session, order_id, actor, carrier, dispatched_at=None, tracking_number=None,
               delivery_note_key=None, expected_version=None):
    payload = {
        'carrier': carrier,
        'dispatched_at': dispatched_at,
        'tracking_number': tracking_number,
        'delivery_note_key': delivery_note_key,
    }
    return transition_order(session, order_id, OrderStatus.SHIPPED, actor, payload, expected_version)


def receive_order(session, order_id, actor, received_at=None, signed_delivery_note_key=None,
                  received_quantities=None, non_conformities=None, expected_version=None):
    """
    Station records delivery.

    ``received_quantities`` maps line ids to delivered quantities and
    ``non_conformities`` is a list of ``{'description', 'photo_keys'}``.
    """
    payload = {
        'received_at': received_at,
        'signed_delivery_note_key': signed_delivery_note_key,
        'received_quantities': received_quantities,
        'non_conformities': non_conformities,
    }
    return transition_order(session, order_id, OrderStatus.RECEIVED, actor, payload, expected_version)


def close_order(session, order_id, actor, expected_version=None):
    return transition_order(session, order_id, OrderStatus.CLOSED, actor, None, expected_version)


def invoice_order(session, order_id, actor, expected_version=None):
    return transition_order(session, order_id, OrderStatus.INVOICED, actor, None, expected_version)


def archive_order(session, order_id, actor, expected_version=None):
    return transition_order(session, order_id, OrderStatus.ARCHIVED, actor, None, expected_version)


def cancel_order(session, order_id, actor, reason=None, expected_version=None):
    """Reject an order that has not shipped yet."""
    return transition_order(session, order_id, OrderStatus.REJECTED, actor, {'reason': reason}, expected_version)


def record_non_conformity(
    session: Session,
    order_id: int,
    description: str,
    photo_keys: Optional[List[str]],
    actor: Actor
) -> NonConformity:
    """Report a post-reception non-conformity on a RECEIVED or CLOSED order."""
    require_permission(actor, 'report_non_conformities')

    description = (description or '').strip()
    if not description:
        raise BadRequestError('A non-conformity needs a description.')

    try:
        order = session.query(Order).filter(Order.id == order_id).with_for_update().populate_existing().first()
        if not order:
            raise NotFoundError(f'Order #{order_id} not found.')
        if not actor.is_station(order.station_id):
            raise ForbiddenError('Only the receiving station can report a non-conformity.')
        if order.status not in (OrderStatus.RECEIVED, OrderStatus.CLOSED):
            raise BadRequestError(
                f'Non-conformities can only be reported on received orders (status: {order.status.value}).'
            )

        non_conformity = NonConformity(
            stage=NonConformityStage.POST_RECEPTION,
            description=description,
            photo_keys=list(photo_keys or []),
            reported_by_id=actor.actor_id,
            reported_at=datetime.now(timezone.utc),
        )
        order.non_conformities.append(non_conformity)
        session.commit()

        logger.info(f"[ORDERS] Non-conformity reported on order {order.order_number}")
        return non_conformity

    except Exception:
        session.rollback()
        raise
