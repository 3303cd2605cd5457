"""Orphaned-document cleanup - objects in storage no live order references."""
import logging
from typing import Dict, Any, Set

from sqlalchemy.orm import Session

from packchain.models import Order, NonConformity

logger = logging.getLogger(__name__)


def referenced_document_keys(session: Session, storage) -> Set[str]:
    """Every object key referenced by an order, normalized by the storage."""
    keys = set()

    rows = session.query(Order.delivery_note_key, Order.signed_delivery_note_key).all()
    for delivery_note_key, signed_delivery_note_key in rows:
        for key in (delivery_note_key, signed_delivery_note_key):
            if key:
                keys.add(storage.object_key(key))

    for (photo_keys,) in session.query(NonConformity.photo_keys).all():
        for key in photo_keys or []:
            keys.add(storage.object_key(key))

    return keys


def cleanup_orphaned_documents(session: Session, storage, prefix: str = '', dry_run: bool = False) -> Dict[str, Any]:
    """
    Remove stored objects under ``prefix`` that no order references.

    Catches leftovers of a failed bulk removal after a master order deletion.
    All orphans go out in one ``remove_objects`` call.

    Returns:
        dict with listed/referenced counts, orphaned keys and failed keys
    """
    stored = storage.list_keys(prefix)
    referenced = referenced_document_keys(session, storage)
    orphaned = [key for key in stored if key not in referenced]

    logger.info(
        f"[STORAGE] Orphan scan under '{prefix or '/'}': {len(stored)} stored, "
        f"{len(referenced)} referenced, {len(orphaned)} orphaned"
    )

    failed = []
    if orphaned and not dry_run:
        failed = storage.remove_objects(orphaned)

    return {
        'listed': len(stored),
        'referenced': len(referenced),
        'orphaned': orphaned,
        'failed': failed,
        'dry_run': dry_run,
    }
