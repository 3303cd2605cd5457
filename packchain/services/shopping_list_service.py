"""Shopping List Service - the station's persistent draft basket."""

from decimal import Decimal
from datetime import date
from typing import Optional, Dict, Any, Tuple
import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from packchain.models import (
    Station, Article, Supplier, ShoppingList, ShoppingListLine, ShoppingListStatus,
)
from packchain.exceptions import PackchainError, BadRequestError, NotFoundError
from packchain.permissions import Actor, require_station_access, require_permission
from packchain.services.catalog_service import get_pricing_terms

logger = logging.getLogger(__name__)


def find_draft(session: Session, station_id: int, lock: bool = False) -> Optional[ShoppingList]:
    """Return the station's DRAFT list, optionally locking the row."""
    query = session.query(ShoppingList).filter(
        ShoppingList.station_id == station_id,
        ShoppingList.status == ShoppingListStatus.DRAFT
    )
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()


def _get_or_create_draft(session: Session, station_id: int, actor: Actor) -> ShoppingList:
    draft = find_draft(session, station_id)
    if draft:
        return draft

    if not session.get(Station, station_id):
        raise NotFoundError('Station not found.')

    draft = ShoppingList(
        station_id=station_id,
        status=ShoppingListStatus.DRAFT,
        created_by_id=actor.actor_id
    )
    session.add(draft)
    logger.info(f"[ORDERS] New draft shopping list for station {station_id}")
    # Only flush: the caller owns the transaction
    session.flush()
    return draft


def get_or_create_draft(session: Session, station_id: int, actor: Actor) -> ShoppingList:
    """
    Get the station's DRAFT list or create an empty one.
    At most one DRAFT per station; calling twice returns the same list.
    """
    require_station_access(actor, station_id)
    require_permission(actor, 'edit_shopping_list')

    try:
        draft = _get_or_create_draft(session, station_id, actor)
        session.commit()
        return draft
    except IntegrityError:
        # Another request created the draft first (partial unique index)
        session.rollback()
        draft = find_draft(session, station_id)
        if not draft:
            raise
        return draft
    except PackchainError:
        session.rollback()
        raise


def upsert_line(
    session: Session,
    station_id: int,
    article_id: int,
    supplier_id: int,
    quantity: int,
    desired_delivery_date: Optional[date],
    actor: Actor
) -> ShoppingListLine:
    """
    Set quantity and desired date of the (article, supplier) line of the draft,
    appending the line when the pair is new.
    """
    require_station_access(actor, station_id)
    require_permission(actor, 'edit_shopping_list')

    if quantity is None or quantity <= 0:
        raise BadRequestError('Quantity must be greater than 0.')

    try:
        if not session.get(Article, article_id):
            raise NotFoundError('Article not found.')
        if not session.get(Supplier, supplier_id):
            raise NotFoundError('Supplier not found.')

        draft = _get_or_create_draft(session, station_id, actor)

        line = next(
            (existing for existing in draft.lines
             if existing.article_id == article_id and existing.supplier_id == supplier_id),
            None
        )
        if line:
            line.quantity = quantity
            line.desired_delivery_date = desired_delivery_date
        else:
            line = ShoppingListLine(
                article_id=article_id,
                supplier_id=supplier_id,
                quantity=quantity,
                desired_delivery_date=desired_delivery_date
            )
            draft.lines.append(line)

        session.commit()
        return line

    except Exception:
        session.rollback()
        raise


def remove_line(session: Session, station_id: int, line_id: int, actor: Actor) -> None:
    """Remove a line from the caller's draft."""
    require_station_access(actor, station_id)
    require_permission(actor, 'edit_shopping_list')

    draft = find_draft(session, station_id)
    line = None
    if draft:
        line = next((existing for existing in draft.lines if existing.id == line_id), None)
    if not line:
        raise NotFoundError('Line not found in the current shopping list.')

    draft.lines.remove(line)
    session.commit()


def clear_draft(session: Session, station_id: int, actor: Actor) -> None:
    """Clear all lines from the draft."""
    require_station_access(actor, station_id)
    require_permission(actor, 'edit_shopping_list')

    draft = find_draft(session, station_id)
    if not draft:
        return

    draft.lines.clear()
    session.commit()


def calculate_draft_totals(session: Session, draft: ShoppingList) -> Dict[str, Any]:
    """
    Estimated totals grouped by supplier, using live catalog prices.

    Lines without catalog terms are listed with ``unit_price`` None and left
    out of the total; validating such a draft fails.
    """
    groups = {}
    total = Decimal('0')

    for line in draft.lines:
        group = groups.get(line.supplier_id)
        if group is None:
            group = groups[line.supplier_id] = {
                'supplier_id': line.supplier_id,
                'supplier_name': line.supplier.name,
                'total': Decimal('0'),
                'lines': [],
            }

        terms = get_pricing_terms(session, line.article_id, line.supplier_id)
        unit_price = terms['unit_price'] if terms else None
        line_total = (unit_price * line.quantity).quantize(Decimal('0.01')) if terms else None

        group['lines'].append({
            'line_id': line.id,
            'article_id': line.article_id,
            'article_code': line.article.code,
            'designation': line.article.designation,
            'quantity': line.quantity,
            'desired_delivery_date': line.desired_delivery_date,
            'unit_price': unit_price,
            'line_total': line_total,
        })
        if line_total is not None:
            group['total'] += line_total
            total += line_total

    return {
        'total': total.quantize(Decimal('0.01')),
        'suppliers': list(groups.values()),
    }


def get_draft_with_totals(
    session: Session,
    station_id: int,
    actor: Actor
) -> Tuple[Optional[ShoppingList], Dict[str, Any]]:
    """Get draft with totals dictionary."""
    require_station_access(actor, station_id)
    require_permission(actor, 'edit_shopping_list')

    draft = find_draft(session, station_id)
    if not draft:
        return None, {'total': Decimal('0.00'), 'suppliers': []}

    return draft, calculate_draft_totals(session, draft)


def unlink_master_order(session: Session, master_order_id: int) -> None:
    """Clear the link from processed lists to a master order being deleted."""
    session.query(ShoppingList).filter(
        ShoppingList.master_order_id == master_order_id
    ).update({ShoppingList.master_order_id: None}, synchronize_session='fetch')
