import pytest
from decimal import Decimal
import uuid

from packchain import create_app
from packchain.database import get_session, create_all, drop_all
from packchain.models import (
    Station, AppUser, UserRole, Supplier, SupplierSite, Article, ArticleSupplier,
)
from packchain.permissions import Actor


class FakeStorage:
    """In-memory object store recording bulk removals."""

    def __init__(self, keys=None, fail_keys=None, broken=False):
        self.keys = set(keys or [])
        self.fail_keys = set(fail_keys or [])
        self.broken = broken
        self.remove_calls = []

    def object_key(self, key_or_url):
        return key_or_url

    def list_keys(self, prefix=''):
        return sorted(key for key in self.keys if key.startswith(prefix))

    def remove_objects(self, keys):
        keys = list(keys)
        self.remove_calls.append(keys)
        if self.broken:
            raise ConnectionError('object store unreachable')
        failed = [key for key in keys if key in self.fail_keys]
        self.keys -= set(keys) - self.fail_keys
        return failed


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Fresh schema and database session for each test."""
    create_all()
    session = get_session()
    yield session
    session.rollback()
    session.remove()
    drop_all()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def make_storage():
    """Factory for object stores with preloaded keys or failures."""
    return FakeStorage


# =============================================================================
# PARTIES
# =============================================================================

@pytest.fixture(scope='function')
def station(session):
    """Create test station."""
    suffix = str(uuid.uuid4())[:8]
    station = Station(name=f'Station {suffix}', internal_code=f'ST-{suffix}', active=True)
    session.add(station)
    session.commit()
    return station


@pytest.fixture(scope='function')
def other_station(session):
    """Create second station for isolation tests."""
    suffix = str(uuid.uuid4())[:8]
    station = Station(name=f'Other Station {suffix}', internal_code=f'OS-{suffix}', active=True)
    session.add(station)
    session.commit()
    return station


def _make_supplier(session, label, site_count=1):
    suffix = str(uuid.uuid4())[:8]
    supplier = Supplier(name=f'Supplier {label} {suffix}', active=True)
    for index in range(site_count):
        supplier.sites.append(SupplierSite(
            name=f'{label} site {index + 1}',
            city='Agen',
            is_principal=index == 0,
            active=True
        ))
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def supplier_x(session):
    """Supplier with two sites."""
    return _make_supplier(session, 'X', site_count=2)


@pytest.fixture(scope='function')
def supplier_y(session):
    """Supplier with a single site."""
    return _make_supplier(session, 'Y', site_count=1)


def _make_user(session, role, entity_id=None):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(
        email=f'{role.value.lower()}-{suffix}@test.com',
        full_name=f'{role.value.title()} User',
        role=role.value,
        entity_id=entity_id,
        active=True
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def manager(session):
    return Actor.from_user(_make_user(session, UserRole.MANAGER))


@pytest.fixture(scope='function')
def station_actor(session, station):
    return Actor.from_user(_make_user(session, UserRole.STATION, station.id))


@pytest.fixture(scope='function')
def other_station_actor(session, other_station):
    return Actor.from_user(_make_user(session, UserRole.STATION, other_station.id))


@pytest.fixture(scope='function')
def supplier_x_actor(session, supplier_x):
    return Actor.from_user(_make_user(session, UserRole.SUPPLIER, supplier_x.id))


@pytest.fixture(scope='function')
def supplier_y_actor(session, supplier_y):
    return Actor.from_user(_make_user(session, UserRole.SUPPLIER, supplier_y.id))


@pytest.fixture(scope='function')
def make_user(session):
    """Factory for extra users."""
    def factory(role, entity_id=None):
        return _make_user(session, role, entity_id)
    return factory


# =============================================================================
# CATALOG
# =============================================================================

def _make_article(session, code):
    article = Article(code=f'{code}-{str(uuid.uuid4())[:6]}', designation=f'Article {code}', active=True)
    session.add(article)
    session.commit()
    return article


@pytest.fixture(scope='function')
def article_a(session):
    return _make_article(session, 'A')


@pytest.fixture(scope='function')
def article_b(session):
    return _make_article(session, 'B')


@pytest.fixture(scope='function')
def article_c(session):
    return _make_article(session, 'C')


@pytest.fixture(scope='function')
def catalog(session, supplier_x, supplier_y, article_a, article_b, article_c):
    """
    Catalog terms:
    - A at X: 10.00, B at X: 5.00
    - C at Y: 20.00
    """
    entries = [
        ArticleSupplier(article_id=article_a.id, supplier_id=supplier_x.id, unit_price=Decimal('10.00'),
                        packaging_unit='crate', quantity_per_package=12, supplier_reference='X-A'),
        ArticleSupplier(article_id=article_b.id, supplier_id=supplier_x.id, unit_price=Decimal('5.00'),
                        packaging_unit='box', quantity_per_package=1, supplier_reference='X-B'),
        ArticleSupplier(article_id=article_c.id, supplier_id=supplier_y.id, unit_price=Decimal('20.00'),
                        packaging_unit='pallet', quantity_per_package=40, supplier_reference='Y-C'),
    ]
    session.add_all(entries)
    session.commit()
    return entries


# =============================================================================
# ORDERS
# =============================================================================

@pytest.fixture(scope='function')
def filled_draft(session, station, station_actor, catalog, supplier_x, supplier_y, article_a, article_b, article_c):
    """Draft with X(A x3, B x2) and Y(C x1)."""
    from packchain.services.shopping_list_service import upsert_line, find_draft

    upsert_line(session, station.id, article_a.id, supplier_x.id, 3, None, station_actor)
    upsert_line(session, station.id, article_c.id, supplier_y.id, 1, None, station_actor)
    upsert_line(session, station.id, article_b.id, supplier_x.id, 2, None, station_actor)
    return find_draft(session, station.id)


@pytest.fixture(scope='function')
def validated_master(session, station, station_actor, filled_draft):
    """Master order with a 40.00 order at X and a 20.00 order at Y."""
    from packchain.services.order_service import validate_shopping_list

    return validate_shopping_list(session, station.id, station_actor)
