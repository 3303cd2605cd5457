"""Catalog service - per-supplier pricing and packaging terms of articles."""
from decimal import Decimal
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session
from packchain.models import Article, ArticleSupplier, Supplier
from packchain.exceptions import BadRequestError, NotFoundError


def get_pricing_terms(session: Session, article_id: int, supplier_id: int) -> Optional[Dict[str, Any]]:
    """
    Current catalog terms of an article at a supplier.

    Returns None when the pair has no catalog entry.
    """
    entry = session.query(ArticleSupplier).filter(
        ArticleSupplier.article_id == article_id,
        ArticleSupplier.supplier_id == supplier_id
    ).first()

    if not entry:
        return None

    return {
        'unit_price': Decimal(entry.unit_price),
        'packaging_unit': entry.packaging_unit,
        'quantity_per_package': entry.quantity_per_package,
        'supplier_reference': entry.supplier_reference,
    }


def set_pricing_terms(
    session: Session,
    article_id: int,
    supplier_id: int,
    unit_price: Decimal,
    packaging_unit: Optional[str] = None,
    quantity_per_package: int = 1,
    supplier_reference: Optional[str] = None
) -> ArticleSupplier:
    """Create or replace the catalog entry of an (article, supplier) pair."""
    unit_price = Decimal(str(unit_price))
    if unit_price < 0:
        raise BadRequestError('Unit price cannot be negative.')
    if quantity_per_package is None or quantity_per_package <= 0:
        raise BadRequestError('Quantity per package must be greater than 0.')

    if not session.get(Article, article_id):
        raise NotFoundError('Article not found.')
    if not session.get(Supplier, supplier_id):
        raise NotFoundError('Supplier not found.')

    entry = session.query(ArticleSupplier).filter(
        ArticleSupplier.article_id == article_id,
        ArticleSupplier.supplier_id == supplier_id
    ).first()

    if not entry:
        entry = ArticleSupplier(article_id=article_id, supplier_id=supplier_id)
        session.add(entry)

    entry.unit_price = unit_price.quantize(Decimal('0.01'))
    entry.packaging_unit = packaging_unit
    entry.quantity_per_package = quantity_per_package
    entry.supplier_reference = supplier_reference
    session.flush()
    return entry


def list_article_suppliers(session: Session, article_id: int) -> List[Dict[str, Any]]:
    """Catalog entries of an article across suppliers, cheapest first."""
    entries = session.query(ArticleSupplier).filter(
        ArticleSupplier.article_id == article_id
    ).order_by(ArticleSupplier.unit_price, ArticleSupplier.supplier_id).all()

    return [
        {
            'supplier_id': entry.supplier_id,
            'supplier_name': entry.supplier.name,
            'supplier_active': entry.supplier.active,
            'unit_price': Decimal(entry.unit_price),
            'packaging_unit': entry.packaging_unit,
            'quantity_per_package': entry.quantity_per_package,
            'supplier_reference': entry.supplier_reference,
        }
        for entry in entries
    ]
