"""
Supplier service - suppliers, their sites and the activation cascade.

Deactivating a supplier deactivates all of its sites and SUPPLIER users.
Every write path that can touch the ``active`` flag goes through
``_apply_supplier_active`` so the cascade cannot be bypassed.
"""
import logging
from typing import List, Dict, Optional, Any

from sqlalchemy.orm import Session

from packchain.models import Supplier, SupplierSite, AppUser, UserRole
from packchain.exceptions import BadRequestError, NotFoundError
from packchain.permissions import Actor, require_managing_party

logger = logging.getLogger(__name__)

SUPPLIER_FIELDS = ('name', 'siret', 'specialization', 'notes')
SITE_FIELDS = (
    'name', 'street', 'postal_code', 'city', 'country',
    'contact_name', 'contact_email', 'contact_phone',
)


def get_supplier(session: Session, supplier_id: int, lock: bool = False) -> Supplier:
    query = session.query(Supplier).filter(Supplier.id == supplier_id)
    if lock:
        query = query.with_for_update().populate_existing()
    supplier = query.first()
    if not supplier:
        raise NotFoundError(f'Supplier #{supplier_id} not found.')
    return supplier


def create_supplier(
    session: Session,
    actor: Actor,
    name: str,
    sites: List[Dict[str, Any]],
    siret: Optional[str] = None,
    specialization: Optional[str] = None,
    notes: Optional[str] = None,
    active: bool = True
) -> Supplier:
    """
    Create a supplier with at least one site.
    The first site becomes principal when none is flagged.
    """
    require_managing_party(actor)
    active = _as_flag(active, 'active')

    name = (name or '').strip()
    if not name:
        raise BadRequestError('Supplier name is required.')
    if not sites:
        raise BadRequestError('A supplier needs at least one site.')
    if sum(1 for site in sites if site.get('is_principal')) > 1:
        raise BadRequestError('Only one site can be principal.')

    try:
        if session.query(Supplier).filter(Supplier.name == name).first():
            raise BadRequestError(f'A supplier named "{name}" already exists.')

        supplier = Supplier(
            name=name,
            siret=siret,
            specialization=specialization,
            notes=notes,
            active=active
        )
        for site_data in sites:
            supplier.sites.append(_build_site(site_data, supplier_active=active))

        if not any(site.is_principal for site in supplier.sites):
            supplier.sites[0].is_principal = True

        session.add(supplier)
        session.commit()

        logger.info(f"[SUPPLIERS] Supplier '{supplier.name}' created with {len(supplier.sites)} site(s)")
        return supplier

    except Exception:
        session.rollback()
        raise


def set_supplier_active(session: Session, supplier_id: int, active: bool, actor: Actor) -> Supplier:
    """
    Activate or deactivate a supplier.

    Deactivation cascades to every site and every SUPPLIER user bound to the
    supplier. Reactivation only flips the supplier flag.
    """
    require_managing_party(actor)
    active = _as_flag(active, 'active')

    try:
        supplier = get_supplier(session, supplier_id, lock=True)
        _apply_supplier_active(session, supplier, active)
        session.commit()
        return supplier
    except Exception:
        session.rollback()
        raise


def update_supplier(session: Session, supplier_id: int, changes: Dict[str, Any], actor: Actor) -> Supplier:
    """Targeted partial update; only the given fields change."""
    require_managing_party(actor)

    unknown = set(changes) - set(SUPPLIER_FIELDS) - {'active'}
    if unknown:
        raise BadRequestError(f'Unknown supplier field(s): {", ".join(sorted(unknown))}')

    try:
        supplier = get_supplier(session, supplier_id, lock=True)

        for field in SUPPLIER_FIELDS:
            if field in changes:
                setattr(supplier, field, changes[field])
        if 'name' in changes:
            _check_name(session, supplier)

        if 'active' in changes:
            _apply_supplier_active(session, supplier, _as_flag(changes['active'], 'active'))

        session.commit()
        return supplier
    except Exception:
        session.rollback()
        raise


def replace_supplier(session: Session, supplier_id: int, data: Dict[str, Any], actor: Actor) -> Supplier:
    """
    Whole-record save: every editable field takes the given value (None when
    absent). ``active`` keeps its current value when absent.
    Sites are managed through the site operations.
    """
    require_managing_party(actor)

    try:
        supplier = get_supplier(session, supplier_id, lock=True)

        for field in SUPPLIER_FIELDS:
            setattr(supplier, field, data.get(field))
        _check_name(session, supplier)

        _apply_supplier_active(session, supplier, _as_flag(data.get('active', supplier.active), 'active'))

        session.commit()
        return supplier
    except Exception:
        session.rollback()
        raise


def add_site(session: Session, supplier_id: int, site_data: Dict[str, Any], actor: Actor) -> SupplierSite:
    """
    Add a site. A site added to an inactive supplier is inactive; a site
    flagged principal takes the flag from the current principal.
    """
    require_managing_party(actor)

    try:
        supplier = get_supplier(session, supplier_id, lock=True)
        site = _build_site(site_data, supplier_active=supplier.active)

        if site.is_principal:
            _clear_principal(supplier)
        supplier.sites.append(site)

        session.commit()
        logger.info(f"[SUPPLIERS] Site '{site.name}' added to supplier '{supplier.name}'")
        return site
    except Exception:
        session.rollback()
        raise


def update_site(
    session: Session,
    supplier_id: int,
    site_id: int,
    changes: Dict[str, Any],
    actor: Actor
) -> SupplierSite:
    """Update site fields; activity changes go through the site cascade rules."""
    require_managing_party(actor)

    unknown = set(changes) - set(SITE_FIELDS) - {'is_principal', 'active'}
    if unknown:
        raise BadRequestError(f'Unknown site field(s): {", ".join(sorted(unknown))}')

    try:
        supplier = get_supplier(session, supplier_id, lock=True)
        site = _get_site(supplier, site_id)

        for field in SITE_FIELDS:
            if field in changes:
                setattr(site, field, changes[field])

        if 'is_principal' in changes and _as_flag(changes['is_principal'], 'is_principal'):
            _clear_principal(supplier)
            site.is_principal = True
        elif 'is_principal' in changes:
            site.is_principal = False

        if 'active' in changes:
            _apply_site_active(session, supplier, site, _as_flag(changes['active'], 'active'))

        session.commit()
        return site
    except Exception:
        session.rollback()
        raise


def delete_site(session: Session, supplier_id: int, site_id: int, actor: Actor) -> None:
    """
    Delete a site. The only site of a supplier cannot be deleted; deleting the
    principal site promotes the next one.
    """
    require_managing_party(actor)

    try:
        supplier = get_supplier(session, supplier_id, lock=True)
        site = _get_site(supplier, site_id)

        if len(supplier.sites) <= 1:
            raise BadRequestError('A supplier must keep at least one site.')

        was_principal = site.is_principal
        supplier.sites.remove(site)
        if was_principal:
            supplier.sites[0].is_principal = True

        session.commit()
        logger.info(f"[SUPPLIERS] Site #{site_id} deleted from supplier '{supplier.name}'")
    except Exception:
        session.rollback()
        raise


def deactivate_site(session: Session, supplier_id: int, site_id: int, actor: Actor) -> SupplierSite:
    """Deactivate a site; the last active site takes the supplier down with it."""
    return update_site(session, supplier_id, site_id, {'active': False}, actor)


def reactivate_site(session: Session, supplier_id: int, site_id: int, actor: Actor) -> SupplierSite:
    """Reactivate a site; an inactive supplier is reactivated (flag only)."""
    return update_site(session, supplier_id, site_id, {'active': True}, actor)


# =============================================================================
# PRIVATE HELPERS
# =============================================================================

def _apply_supplier_active(session: Session, supplier: Supplier, active: bool) -> None:
    """Set the supplier flag and, on deactivation, cascade to sites and users. No commit."""
    supplier.active = active
    if active:
        logger.info(f"[SUPPLIERS] Supplier '{supplier.name}' reactivated")
        return

    for site in supplier.sites:
        site.active = False

    users = session.query(AppUser).filter(
        AppUser.role == UserRole.SUPPLIER.value,
        AppUser.entity_id == supplier.id
    ).all()
    for user in users:
        user.active = False

    logger.info(
        f"[SUPPLIERS] Supplier '{supplier.name}' deactivated: "
        f"{len(supplier.sites)} site(s), {len(users)} user(s) deactivated"
    )


def _apply_site_active(session: Session, supplier: Supplier, site: SupplierSite, active: bool) -> None:
    site.active = active
    if active:
        if not supplier.active:
            supplier.active = True
            logger.info(f"[SUPPLIERS] Supplier '{supplier.name}' reactivated by site '{site.name}'")
        return

    if supplier.active and not any(other.active for other in supplier.sites):
        _apply_supplier_active(session, supplier, False)


def _build_site(site_data: Dict[str, Any], supplier_active: bool) -> SupplierSite:
    name = (site_data.get('name') or '').strip()
    if not name:
        raise BadRequestError('Site name is required.')

    site = SupplierSite(
        is_principal=_as_flag(site_data.get('is_principal', False), 'is_principal'),
        active=_as_flag(site_data.get('active', True), 'active') and supplier_active,
    )
    for field in SITE_FIELDS:
        setattr(site, field, site_data.get(field))
    site.name = name
    return site


def _get_site(supplier: Supplier, site_id: int) -> SupplierSite:
    site = next((s for s in supplier.sites if s.id == site_id), None)
    if not site:
        raise NotFoundError(f'Site #{site_id} not found for supplier "{supplier.name}".')
    return site


def _clear_principal(supplier: Supplier) -> None:
    for site in supplier.sites:
        site.is_principal = False


def _check_name(session: Session, supplier: Supplier) -> None:
    name = (supplier.name or '').strip()
    if not name:
        raise BadRequestError('Supplier name is required.')
    supplier.name = name
    duplicate = session.query(Supplier).filter(
        Supplier.name == name,
        Supplier.id != supplier.id
    ).first()
    if duplicate:
        raise BadRequestError(f'A supplier named "{name}" already exists.')


def _as_flag(value, field: str) -> bool:
    """Accept only real booleans for activity and principal flags."""
    if not isinstance(value, bool):
        raise BadRequestError(f'{field} must be true or false, got {value!r}.', payload={'field': field})
    return value
