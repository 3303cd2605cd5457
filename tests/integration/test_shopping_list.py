"""
Integration tests for the station's draft shopping list.
"""

import pytest
from datetime import date
from decimal import Decimal

from packchain.exceptions import BadRequestError, ForbiddenError, NotFoundError
from packchain.models import ShoppingList, ShoppingListStatus
from packchain.services.shopping_list_service import (
    get_or_create_draft, upsert_line, remove_line, clear_draft, get_draft_with_totals,
)


class TestDraft:
    """Tests for get_or_create_draft."""

    def test_idempotent(self, session, station, station_actor):
        """Calling twice returns the same DRAFT list."""
        first = get_or_create_draft(session, station.id, station_actor)
        second = get_or_create_draft(session, station.id, station_actor)

        assert first.id == second.id
        assert first.status == ShoppingListStatus.DRAFT
        assert session.query(ShoppingList).filter_by(station_id=station.id).count() == 1

    def test_managing_party_acts_for_station(self, session, station, manager):
        draft = get_or_create_draft(session, station.id, manager)

        assert draft.station_id == station.id
        assert draft.created_by_id == manager.actor_id

    def test_other_station_forbidden(self, session, station, other_station_actor):
        with pytest.raises(ForbiddenError):
            get_or_create_draft(session, station.id, other_station_actor)

    def test_supplier_forbidden(self, session, station, supplier_x_actor):
        with pytest.raises(ForbiddenError):
            get_or_create_draft(session, station.id, supplier_x_actor)

    def test_unknown_station(self, session, manager):
        with pytest.raises(NotFoundError):
            get_or_create_draft(session, 999999, manager)


class TestLines:
    """Tests for line editing."""

    def test_upsert_replaces_existing_pair(self, session, station, station_actor, article_a, supplier_x):
        upsert_line(session, station.id, article_a.id, supplier_x.id, 3, None, station_actor)
        line = upsert_line(session, station.id, article_a.id, supplier_x.id, 7, date(2026, 11, 2), station_actor)

        draft = get_or_create_draft(session, station.id, station_actor)
        assert len(draft.lines) == 1
        assert line.quantity == 7
        assert line.desired_delivery_date == date(2026, 11, 2)

    def test_same_article_other_supplier_appends(self, session, station, station_actor,
                                                 article_a, supplier_x, supplier_y):
        upsert_line(session, station.id, article_a.id, supplier_x.id, 3, None, station_actor)
        upsert_line(session, station.id, article_a.id, supplier_y.id, 4, None, station_actor)

        draft = get_or_create_draft(session, station.id, station_actor)
        assert [(l.supplier_id, l.quantity) for l in draft.lines] == [(supplier_x.id, 3), (supplier_y.id, 4)]

    @pytest.mark.parametrize('quantity', [0, -2])
    def test_quantity_must_be_positive(self, session, station, station_actor, article_a, supplier_x, quantity):
        with pytest.raises(BadRequestError):
            upsert_line(session, station.id, article_a.id, supplier_x.id, quantity, None, station_actor)

    def test_unknown_article(self, session, station, station_actor, supplier_x):
        with pytest.raises(NotFoundError):
            upsert_line(session, station.id, 999999, supplier_x.id, 1, None, station_actor)

    def test_remove_line(self, session, station, station_actor, filled_draft):
        line_id = filled_draft.lines[0].id

        remove_line(session, station.id, line_id, station_actor)

        draft = get_or_create_draft(session, station.id, station_actor)
        assert line_id not in [l.id for l in draft.lines]
        assert len(draft.lines) == 2

    def test_remove_line_of_other_station(self, session, station, filled_draft,
                                          other_station, other_station_actor):
        """A line outside the caller's draft is not found."""
        with pytest.raises(NotFoundError):
            remove_line(session, other_station.id, filled_draft.lines[0].id, other_station_actor)

    def test_clear_draft(self, session, station, station_actor, filled_draft):
        clear_draft(session, station.id, station_actor)

        draft = get_or_create_draft(session, station.id, station_actor)
        assert draft.id == filled_draft.id
        assert draft.lines == []


class TestDraftTotals:
    """Tests for the estimated totals."""

    def test_grouped_by_supplier(self, session, station, station_actor, filled_draft, supplier_x, supplier_y):
        draft, totals = get_draft_with_totals(session, station.id, station_actor)

        assert draft.id == filled_draft.id
        assert totals['total'] == Decimal('60.00')
        assert [g['supplier_id'] for g in totals['suppliers']] == [supplier_x.id, supplier_y.id]
        assert [g['total'] for g in totals['suppliers']] == [Decimal('40.00'), Decimal('20.00')]

    def test_no_draft(self, session, station, station_actor):
        draft, totals = get_draft_with_totals(session, station.id, station_actor)

        assert draft is None
        assert totals == {'total': Decimal('0.00'), 'suppliers': []}

    def test_unpriced_line(self, session, station, station_actor, article_c, supplier_x):
        """A pair without catalog terms is listed but not priced."""
        upsert_line(session, station.id, article_c.id, supplier_x.id, 2, None, station_actor)

        _, totals = get_draft_with_totals(session, station.id, station_actor)

        assert totals['total'] == Decimal('0.00')
        assert totals['suppliers'][0]['lines'][0]['unit_price'] is None

    def test_other_station_refused(self, session, station, filled_draft, other_station_actor):
        """A station cannot read another station's draft or its prices."""
        with pytest.raises(ForbiddenError):
            get_draft_with_totals(session, station.id, other_station_actor)

    def test_supplier_refused(self, session, station, filled_draft, supplier_x_actor):
        with pytest.raises(ForbiddenError):
            get_draft_with_totals(session, station.id, supplier_x_actor)

    def test_managing_party_allowed(self, session, station, filled_draft, manager):
        _, totals = get_draft_with_totals(session, station.id, manager)

        assert totals['total'] == Decimal('60.00')
