"""Master order service - reads, self-healing status and cascading deletion."""
import logging
from typing import List, Dict, Any

from sqlalchemy.orm import Session

from packchain.models import MasterOrder, UserRole
from packchain.exceptions import ForbiddenError, NotFoundError
from packchain.permissions import Actor, require_managing_party, require_permission
from packchain.services.order_service import serialize_order
from packchain.services.shopping_list_service import unlink_master_order
from packchain.services.storage_service import get_storage_service
from packchain.services.workflow_service import derive_general_status, lock_master_order, parse_status

logger = logging.getLogger(__name__)


def get_master_order(session: Session, master_order_id: int, actor: Actor) -> MasterOrder:
    """
    Fetch a master order visible to the actor.

    A stored general status that disagrees with the child orders is repaired
    and saved.
    """
    master = _visible_master_orders(session, actor).filter(MasterOrder.id == master_order_id).first()
    if not master:
        raise NotFoundError(f'Master order #{master_order_id} not found.')

    if _heal_general_status(master):
        session.commit()
    return master


def list_master_orders(session: Session, actor: Actor, status=None) -> List[MasterOrder]:
    """Master orders visible to the actor, newest first."""
    query = _visible_master_orders(session, actor)
    if status is not None:
        query = query.filter(MasterOrder.general_status == parse_status(status))
    masters = query.order_by(MasterOrder.created_at.desc(), MasterOrder.id.desc()).all()

    healed = [master for master in masters if _heal_general_status(master)]
    if healed:
        session.commit()
    return masters


def delete_master_order(
    session: Session,
    master_order_id: int,
    actor: Actor,
    storage=None
) -> Dict[str, Any]:
    """
    Delete a master order, its orders and their stored documents.

    Steps:
    1. Lock the master order
    2. Collect every document key of the child orders (delivery notes,
       signed delivery notes, non-conformity photos of both stages)
    3. Clear the originating shopping list's link
    4. Delete child orders, then the master order
    5. Commit
    6. Remove all collected documents with one bulk call

    Object-store failures are logged and reported, never raised: the
    database deletion is already committed.

    Args:
        storage: Object store exposing ``remove_objects(keys)``; defaults to
            the configured StorageService

    Returns:
        dict with the deleted reference, order count and document outcome
    """
    require_managing_party(actor)

    try:
        # Step 1: Lock master
        master = lock_master_order(session, master_order_id)
        if not master:
            raise NotFoundError(f'Master order #{master_order_id} not found.')

        reference_code = master.reference_code

        # Step 2: Collect document keys
        keys = []
        for order in master.orders:
            keys.extend(order.document_keys())

        # Step 3: Unlink shopping list
        unlink_master_order(session, master_order_id)

        # Step 4: Children first, then master (delete cascade on master.orders)
        orders = list(master.orders)
        session.delete(master)

        # Step 5: Commit
        session.commit()

    except Exception:
        session.rollback()
        raise

    logger.info(f"[ORDERS] Master order {reference_code} deleted with {len(orders)} order(s)")

    # Step 6: Documents (after commit, no locks held)
    failed_keys = []
    if keys:
        try:
            storage = storage or get_storage_service()
            failed_keys = storage.remove_objects(keys)
        except Exception as e:
            logger.exception(f"[STORAGE] Document cleanup failed for master order {reference_code}: {e}")
            failed_keys = list(keys)

        if failed_keys:
            logger.warning(
                f"[STORAGE] {len(failed_keys)} document(s) of master order {reference_code} "
                f"left in storage; run cleanup-orphan-documents"
            )

    return {
        'reference_code': reference_code,
        'orders_deleted': len(orders),
        'documents_requested': len(keys),
        'documents_failed': failed_keys,
    }


def serialize_master_order(master: MasterOrder, include_orders: bool = True) -> Dict[str, Any]:
    """Plain dict representation of a master order."""
    data = {
        'id': master.id,
        'reference_code': master.reference_code,
        'station_id': master.station_id,
        'general_status': master.general_status.value,
        'total_excluding_tax': str(master.total_excluding_tax),
        'supplier_count': master.supplier_count,
        'created_at': master.created_at.isoformat() if master.created_at else None,
    }
    if include_orders:
        data['orders'] = [serialize_order(order, include_lines=False) for order in master.orders]
    return data


# =============================================================================
# PRIVATE HELPERS
# =============================================================================

def _visible_master_orders(session, actor):
    require_permission(actor, 'view_master_orders')
    query = session.query(MasterOrder)
    if actor.is_managing_party:
        return query
    if actor.role == UserRole.STATION.value:
        return query.filter(MasterOrder.station_id == actor.entity_id)
    raise ForbiddenError()


def _heal_general_status(master: MasterOrder) -> bool:
    derived = derive_general_status(order.status for order in master.orders)
    if derived is None or derived == master.general_status:
        return False

    logger.warning(
        f"[ORDERS] Master order {master.reference_code} stored status "
        f"{master.general_status.value} disagrees with its orders, repaired to {derived.value}"
    )
    master.general_status = derived
    return True
