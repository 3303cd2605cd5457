"""
Integration tests for order status transitions and master order propagation.
"""

import pytest
from datetime import date, datetime, timezone
from sqlalchemy import update

from packchain.exceptions import BadRequestError, ForbiddenError, NotFoundError, ConflictError
from packchain.models import Order, OrderStatus, MasterOrder, NonConformityStage
from packchain.services import workflow_service
from packchain.services.workflow_service import (
    transition_order, confirm_order, ship_order, receive_order, close_order, invoice_order,
    archive_order, cancel_order, record_non_conformity,
)


@pytest.fixture
def orders(validated_master):
    """(order at X, order at Y)"""
    order_x, order_y = validated_master.orders
    return order_x, order_y


def _master(session, master_id):
    session.expire_all()
    return session.get(MasterOrder, master_id)


def _advance_to_received(session, order, supplier_actor, station_actor):
    confirm_order(session, order.id, supplier_actor)
    ship_order(session, order.id, supplier_actor, carrier='Geodis')
    return receive_order(session, order.id, station_actor)


class TestHappyPath:
    """Full lifecycle with payloads."""

    def test_full_lifecycle(self, session, orders, supplier_x_actor, station_actor, manager):
        order_x, _ = orders
        line_id = order_x.lines[0].id
        dispatched = datetime(2026, 10, 20, 8, 30, tzinfo=timezone.utc)

        confirm_order(session, order_x.id, supplier_x_actor, confirmed_delivery_dates={line_id: '2026-10-25'})
        ship_order(session, order_x.id, supplier_x_actor, carrier='Geodis', dispatched_at=dispatched,
                   tracking_number='GX-1', delivery_note_key='orders/x/bl.pdf')
        receive_order(
            session, order_x.id, station_actor,
            signed_delivery_note_key='orders/x/bl-signed.pdf',
            received_quantities={line_id: 2},
            non_conformities=[{'description': 'One crate broken', 'photo_keys': ['orders/x/nc-1.jpg']}],
        )
        close_order(session, order_x.id, manager)
        invoice_order(session, order_x.id, manager)
        order = archive_order(session, order_x.id, manager)

        assert order.status == OrderStatus.ARCHIVED
        assert order.carrier == 'Geodis'
        assert order.tracking_number == 'GX-1'
        assert order.received_at is not None
        line = next(l for l in order.lines if l.id == line_id)
        assert line.confirmed_delivery_date == date(2026, 10, 25)
        assert line.received_quantity == 2
        assert order.non_conformities[0].stage == NonConformityStage.RECEPTION
        assert [h.status for h in order.status_history] == [
            OrderStatus.REGISTERED, OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.RECEIVED,
            OrderStatus.CLOSED, OrderStatus.INVOICED, OrderStatus.ARCHIVED,
        ]

    def test_dispatch_date_defaults_to_now(self, session, orders, supplier_x_actor):
        order_x, _ = orders
        confirm_order(session, order_x.id, supplier_x_actor)

        order = ship_order(session, order_x.id, supplier_x_actor, carrier='DB Schenker')

        assert order.dispatched_at is not None

    def test_managing_party_can_confirm(self, session, orders, manager):
        order_x, _ = orders

        assert confirm_order(session, order_x.id, manager).status == OrderStatus.CONFIRMED


class TestInvalidTransitions:
    """Rejected moves leave the order untouched."""

    def test_non_adjacent(self, session, orders, supplier_x_actor):
        order_x, _ = orders

        with pytest.raises(BadRequestError):
            ship_order(session, order_x.id, supplier_x_actor, carrier='Geodis')

        assert session.get(Order, order_x.id).status == OrderStatus.REGISTERED

    def test_no_going_back(self, session, orders, supplier_x_actor, manager):
        order_x, _ = orders
        confirm_order(session, order_x.id, supplier_x_actor)

        with pytest.raises(BadRequestError):
            transition_order(session, order_x.id, OrderStatus.REGISTERED, manager)

    def test_unknown_target(self, session, orders, manager):
        order_x, _ = orders

        with pytest.raises(BadRequestError):
            transition_order(session, order_x.id, 'LOST', manager)

    def test_non_numeric_received_quantity(self, session, orders, supplier_x_actor, station_actor):
        """A quantity that is not a number fails the receipt as a bad request."""
        order_x, _ = orders
        line_id = order_x.lines[0].id
        confirm_order(session, order_x.id, supplier_x_actor)
        ship_order(session, order_x.id, supplier_x_actor, carrier='Geodis')

        with pytest.raises(BadRequestError) as exc:
            receive_order(session, order_x.id, station_actor, received_quantities={line_id: 'two'})

        assert exc.value.payload == {'field': 'received_quantities'}
        assert session.get(Order, order_x.id).status == OrderStatus.SHIPPED

    def test_non_numeric_line_id(self, session, orders, supplier_x_actor):
        order_x, _ = orders

        with pytest.raises(BadRequestError):
            confirm_order(session, order_x.id, supplier_x_actor, confirmed_delivery_dates={'first': '2026-10-25'})

        assert session.get(Order, order_x.id).status == OrderStatus.REGISTERED

    def test_rejected_is_terminal(self, session, orders, station_actor, supplier_x_actor):
        order_x, _ = orders
        cancel_order(session, order_x.id, station_actor, reason='Duplicate')

        with pytest.raises(BadRequestError):
            confirm_order(session, order_x.id, supplier_x_actor)
        with pytest.raises(BadRequestError):
            cancel_order(session, order_x.id, station_actor)

    def test_cannot_cancel_shipped_order(self, session, orders, supplier_x_actor, station_actor):
        order_x, _ = orders
        confirm_order(session, order_x.id, supplier_x_actor)
        ship_order(session, order_x.id, supplier_x_actor, carrier='Geodis')

        with pytest.raises(BadRequestError):
            cancel_order(session, order_x.id, station_actor)

    def test_shipment_requires_carrier(self, session, orders, supplier_x_actor):
        order_x, _ = orders
        confirm_order(session, order_x.id, supplier_x_actor)

        with pytest.raises(BadRequestError):
            ship_order(session, order_x.id, supplier_x_actor, carrier='  ', tracking_number='T-1')

        order = session.get(Order, order_x.id)
        assert order.status == OrderStatus.CONFIRMED
        assert order.tracking_number is None

    def test_confirmation_with_foreign_line(self, session, orders, supplier_x_actor):
        order_x, order_y = orders

        with pytest.raises(BadRequestError):
            confirm_order(session, order_x.id, supplier_x_actor,
                          confirmed_delivery_dates={order_y.lines[0].id: '2026-10-25'})

    def test_unknown_order(self, session, manager):
        with pytest.raises(NotFoundError):
            close_order(session, 999999, manager)


class TestRoles:
    """Role and ownership checks."""

    def test_other_supplier_cannot_confirm(self, session, orders, supplier_y_actor):
        order_x, _ = orders

        with pytest.raises(ForbiddenError):
            confirm_order(session, order_x.id, supplier_y_actor)

    def test_manager_cannot_ship(self, session, orders, supplier_x_actor, manager):
        order_x, _ = orders
        confirm_order(session, order_x.id, supplier_x_actor)

        with pytest.raises(ForbiddenError):
            ship_order(session, order_x.id, manager, carrier='Geodis')

    def test_only_owning_station_receives(self, session, orders, supplier_x_actor, other_station_actor, manager):
        order_x, _ = orders
        confirm_order(session, order_x.id, supplier_x_actor)
        ship_order(session, order_x.id, supplier_x_actor, carrier='Geodis')

        with pytest.raises(ForbiddenError):
            receive_order(session, order_x.id, other_station_actor)
        with pytest.raises(ForbiddenError):
            receive_order(session, order_x.id, manager)
        assert session.get(Order, order_x.id).status == OrderStatus.SHIPPED

    def test_station_cannot_close(self, session, orders, supplier_x_actor, station_actor):
        order_x, _ = orders
        _advance_to_received(session, order_x, supplier_x_actor, station_actor)

        with pytest.raises(ForbiddenError):
            close_order(session, order_x.id, station_actor)

    def test_supplier_cannot_cancel(self, session, orders, supplier_x_actor):
        order_x, _ = orders

        with pytest.raises(ForbiddenError):
            cancel_order(session, order_x.id, supplier_x_actor)


class TestMasterPropagation:
    """The master order follows its children."""

    def test_least_advanced_child_wins(self, session, validated_master, orders,
                                       supplier_x_actor, supplier_y_actor):
        order_x, order_y = orders

        confirm_order(session, order_x.id, supplier_x_actor)
        ship_order(session, order_x.id, supplier_x_actor, carrier='Geodis')
        assert _master(session, validated_master.id).general_status == OrderStatus.REGISTERED

        confirm_order(session, order_y.id, supplier_y_actor)
        assert _master(session, validated_master.id).general_status == OrderStatus.CONFIRMED

    def test_rejected_children_are_ignored(self, session, validated_master, orders, station_actor, supplier_x_actor):
        order_x, order_y = orders

        cancel_order(session, order_y.id, station_actor)
        assert _master(session, validated_master.id).general_status == OrderStatus.REGISTERED

        confirm_order(session, order_x.id, supplier_x_actor)
        assert _master(session, validated_master.id).general_status == OrderStatus.CONFIRMED

    def test_all_rejected(self, session, validated_master, orders, station_actor, manager):
        order_x, order_y = orders

        cancel_order(session, order_x.id, station_actor)
        cancel_order(session, order_y.id, manager, reason='Budget frozen')

        master = _master(session, validated_master.id)
        assert master.general_status == OrderStatus.REJECTED
        assert len(master.orders) == 2


class TestConcurrency:
    """Optimistic version guard."""

    def test_version_increments(self, session, orders, supplier_x_actor):
        order_x, _ = orders
        version = session.get(Order, order_x.id).version

        order = confirm_order(session, order_x.id, supplier_x_actor)

        assert order.version == version + 1

    def test_stale_version_conflicts(self, session, orders, supplier_x_actor, station_actor):
        """A caller holding an outdated version is told to refetch."""
        order_x, _ = orders
        stale_version = session.get(Order, order_x.id).version
        confirm_order(session, order_x.id, supplier_x_actor, expected_version=stale_version)

        with pytest.raises(ConflictError) as exc:
            cancel_order(session, order_x.id, station_actor, expected_version=stale_version)

        assert exc.value.status_code == 409
        assert 'Refetch' in exc.value.message
        assert session.get(Order, order_x.id).status == OrderStatus.CONFIRMED

    def test_concurrent_write_at_flush_conflicts(self, session, orders, supplier_x_actor, monkeypatch):
        """A row rewritten between the locked read and the flush is a conflict."""
        order_x, _ = orders
        version = session.get(Order, order_x.id).version

        def concurrent_writer(order, payload, actor):
            session.execute(
                update(Order)
                .where(Order.id == order.id)
                .values(version=Order.version + 1)
                .execution_options(synchronize_session=False)
            )

        monkeypatch.setitem(workflow_service.PAYLOAD_APPLIERS, OrderStatus.CONFIRMED, concurrent_writer)

        with pytest.raises(ConflictError) as exc:
            confirm_order(session, order_x.id, supplier_x_actor)

        assert exc.value.status_code == 409
        session.expire_all()
        order = session.get(Order, order_x.id)
        assert order.status == OrderStatus.REGISTERED
        assert order.version == version
        assert len(order.status_history) == 1


class TestNonConformity:
    """Post-reception reports."""

    def test_report_after_reception(self, session, orders, supplier_x_actor, station_actor):
        order_x, _ = orders
        _advance_to_received(session, order_x, supplier_x_actor, station_actor)

        report = record_non_conformity(session, order_x.id, 'Mould on film', ['nc/post-1.jpg'], station_actor)

        assert report.stage == NonConformityStage.POST_RECEPTION
        assert report.photo_keys == ['nc/post-1.jpg']

    def test_report_before_reception(self, session, orders, station_actor):
        order_x, _ = orders

        with pytest.raises(BadRequestError):
            record_non_conformity(session, order_x.id, 'Too early', [], station_actor)

    def test_report_by_other_station(self, session, orders, supplier_x_actor, station_actor, other_station_actor):
        order_x, _ = orders
        _advance_to_received(session, order_x, supplier_x_actor, station_actor)

        with pytest.raises(ForbiddenError):
            record_non_conformity(session, order_x.id, 'Not mine', [], other_station_actor)
