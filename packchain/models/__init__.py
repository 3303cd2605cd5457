"""Models package - exports all SQLAlchemy models."""
# Parties
from packchain.models.station import Station
from packchain.models.app_user import AppUser, UserRole, MANAGING_ROLES
from packchain.models.supplier import Supplier, SupplierSite

# Catalog
from packchain.models.article import Article, ArticleSupplier

# Ordering
from packchain.models.shopping_list import ShoppingList, ShoppingListLine, ShoppingListStatus
from packchain.models.order import (
    Order, OrderLine, OrderStatus, NonConformity, NonConformityStage, OrderStatusHistory,
)
from packchain.models.master_order import MasterOrder

__all__ = [
    # Parties
    'Station', 'AppUser', 'UserRole', 'MANAGING_ROLES', 'Supplier', 'SupplierSite',
    # Catalog
    'Article', 'ArticleSupplier',
    # Ordering
    'ShoppingList', 'ShoppingListLine', 'ShoppingListStatus',
    'Order', 'OrderLine', 'OrderStatus', 'NonConformity', 'NonConformityStage', 'OrderStatusHistory',
    'MasterOrder',
]
