"""
Integration tests for creating, editing and reading estimates.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from app.exceptions import ValidationError, InvalidStateError, NotFoundError
from app.models import ActivityAction, Estimate, EstimateActivity, EstimateStatus
from app.services.estimate_service import (
    create_estimate,
    get_estimate,
    get_estimate_stats,
    list_estimates,
    recompute_stored_totals,
    update_estimate,
)
from app.services.pricing_service import STORED_PLACES, calculate_totals
from app.utils.formatters import round_money


class TestCreateEstimate:
    """Tests for create_estimate."""

    def test_create_computes_and_stores_totals(self, make_estimate):
        estimate = make_estimate()

        assert estimate.id is not None
        assert estimate.status == EstimateStatus.DRAFT
        assert estimate.version == 1
        assert estimate.is_latest_version is True
        assert estimate.parent_estimate_id is None
        assert estimate.material_cost == Decimal('80')
        assert estimate.labor_cost == Decimal('20')
        assert estimate.subtotal == Decimal('100')
        assert estimate.profit_amount == Decimal('10')
        assert estimate.total_before_vat == Decimal('110')
        assert estimate.vat_amount == Decimal('11')
        assert estimate.total == Decimal('121')

    def test_lines_keep_input_order_and_prices(self, make_estimate):
        estimate = make_estimate()

        assert [item.name for item in estimate.items] == ['PVC pipe 20mm', 'Fittings']
        assert [item.sort_order for item in estimate.items] == [0, 1]
        assert estimate.items[0].total_cost == Decimal('20')
        assert estimate.items[0].markup_amount == Decimal('2')
        assert estimate.items[0].total_price == Decimal('22')
        assert estimate.labor_items[0].total_price == Decimal('20')
        assert estimate.labor_items[0].days is None

    def test_estimate_number_format(self, make_estimate):
        first = make_estimate()
        second = make_estimate()
        year = datetime.now().year

        assert first.estimate_no == f'EST-{year}-0001'
        assert second.estimate_no == f'EST-{year}-0002'

    def test_create_logs_activity(self, session, make_estimate):
        estimate = make_estimate()

        activities = session.query(EstimateActivity).filter_by(estimate_id=estimate.id).all()
        assert len(activities) == 1
        assert activities[0].action == ActivityAction.CREATED
        assert activities[0].actor_id == 'estimator-1'

    @pytest.mark.parametrize('kwargs,field', [
        ({'title': '  '}, 'title'),
        ({'service_request_id': ''}, 'service_request_id'),
        ({'items': [], 'labor_items': []}, 'items'),
        ({'params': {'vat_rate': '120'}}, 'vat_rate'),
        ({'items': [{'name': 'Pipe', 'quantity': '0', 'unit_cost': '1'}]}, 'quantity'),
        ({'items': [{'name': '', 'quantity': '1', 'unit_cost': '1'}]}, 'name'),
        ({'labor_items': [{'description': 'Helper', 'rate_type': 'DAILY', 'quantity': 1}]}, 'days'),
        ({'items': 'abc'}, 'items'),
        ({'items': [5]}, 'items'),
        ({'labor_items': ['Plumber']}, 'labor_items'),
        ({'items': [{'name': 'Pipe', 'quantity': '0.0000001', 'unit_cost': '1'}]}, 'quantity'),
        ({'labor_items': [{'description': 'Helper', 'rate_type': 'HOURLY', 'quantity': 1,
                           'hours': '1.2345', 'hourly_rate': '100'}]}, 'hours'),
    ])
    def test_invalid_input_writes_nothing(self, session, make_estimate, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            make_estimate(**kwargs)

        assert exc_info.value.field == field
        assert session.query(Estimate).count() == 0

    def test_labor_only_estimate_is_allowed(self, make_estimate):
        estimate = make_estimate(items=[])

        assert estimate.material_cost == 0
        assert estimate.labor_cost == Decimal('20')

    def test_descriptive_fields(self, session, params, material):
        estimate = create_estimate(
            session, 'SR-7', 'AC service', [material()], [], params, 'estimator-1',
            scope='Two split units', estimated_start_date='2026-03-01', estimated_end_date='2026-03-03'
        )

        assert estimate.scope == 'Two split units'
        assert estimate.estimated_end_date.isoformat() == '2026-03-03'

    def test_end_date_before_start_date(self, session, params, material):
        with pytest.raises(ValidationError) as exc_info:
            create_estimate(
                session, 'SR-7', 'AC service', [material()], [], params, 'estimator-1',
                estimated_start_date='2026-03-05', estimated_end_date='2026-03-01'
            )

        assert exc_info.value.field == 'estimated_end_date'


class TestUpdateEstimate:
    """Tests for update_estimate."""

    def test_update_recomputes_totals(self, session, make_estimate, material):
        estimate = make_estimate()

        updated = update_estimate(session, estimate.id, 'estimator-1', {
            'items': [material(quantity='10', unit_cost='10', markup_type='NONE')],
            'vat_rate': '0',
            'title': 'Revised scope',
        })

        assert updated.title == 'Revised scope'
        assert len(updated.items) == 1
        assert updated.material_cost == Decimal('100')
        assert updated.subtotal == Decimal('120')
        assert updated.profit_amount == Decimal('12')
        assert updated.vat_amount == 0
        assert updated.total == Decimal('132')

    def test_update_replaces_lines_and_logs_activity(self, session, make_estimate, labor):
        estimate = make_estimate()

        update_estimate(session, estimate.id, 'estimator-2', {
            'labor_items': [labor(description='Electrician'), labor(description='Helper', hours='2')],
        })

        estimate = get_estimate(session, estimate.id)
        assert [item.description for item in estimate.labor_items] == ['Electrician', 'Helper']
        assert estimate.labor_cost == Decimal('30')
        assert [a.action for a in estimate.activities] == [ActivityAction.CREATED, ActivityAction.UPDATED]
        assert estimate.activities[-1].actor_id == 'estimator-2'

    def test_update_allowed_in_revision_requested(self, session, make_estimate):
        estimate = make_estimate(status='REVISION_REQUESTED')

        updated = update_estimate(session, estimate.id, 'estimator-1', {'transport_cost': '10'})

        assert updated.subtotal == Decimal('110')

    @pytest.mark.parametrize('status', ['PENDING_MANAGER_APPROVAL', 'APPROVED', 'REJECTED'])
    def test_update_rejected_outside_editable_statuses(self, session, make_estimate, status):
        estimate = make_estimate(status=status)

        with pytest.raises(InvalidStateError) as exc_info:
            update_estimate(session, estimate.id, 'estimator-1', {'title': 'Nope'})

        assert exc_info.value.status_code == 409
        assert exc_info.value.current_status == status
        assert get_estimate(session, estimate.id).title == 'Replace kitchen plumbing'

    def test_invalid_update_leaves_estimate_unchanged(self, session, make_estimate, material):
        estimate = make_estimate()

        with pytest.raises(ValidationError):
            update_estimate(session, estimate.id, 'estimator-1', {
                'title': 'Changed',
                'items': [material(unit_cost='-1')],
            })

        estimate = get_estimate(session, estimate.id)
        assert estimate.title == 'Replace kitchen plumbing'
        assert estimate.total == Decimal('121')
        assert len(estimate.items) == 2

    def test_update_missing_estimate(self, session):
        with pytest.raises(NotFoundError):
            update_estimate(session, 999, 'estimator-1', {'title': 'x'})


class TestReads:
    """Tests for listing and stats."""

    def test_list_newest_first_with_search(self, session, make_estimate):
        make_estimate(title='Roof repair')
        make_estimate(title='Kitchen plumbing')
        make_estimate(title='Roof insulation', service_request_id='SR-200')

        estimates, total = list_estimates(session)
        assert total == 3
        assert estimates[0].title == 'Roof insulation'

        roofs, total = list_estimates(session, search='roof')
        assert total == 2

        by_request, total = list_estimates(session, service_request_id='SR-200')
        assert [e.title for e in by_request] == ['Roof insulation']

    def test_list_filters_status_and_paginates(self, session, make_estimate):
        make_estimate()
        make_estimate(status='APPROVED')
        make_estimate(status='APPROVED')

        approved, total = list_estimates(session, status=EstimateStatus.APPROVED, per_page=1, page=2)
        assert total == 2
        assert len(approved) == 1

    def test_stats(self, session, make_estimate):
        make_estimate()
        make_estimate(status='APPROVED')
        make_estimate(status='REJECTED')
        make_estimate(status='PENDING_MANAGER_APPROVAL')

        stats = get_estimate_stats(session)

        assert stats['total_estimates'] == 4
        assert stats['draft_estimates'] == 1
        assert stats['pending_approval'] == 1
        assert stats['approved_estimates'] == 1
        assert stats['rejected_estimates'] == 1
        assert stats['approval_rate'] == Decimal('50.0')
        assert stats['approved_value'] == Decimal('121')
        assert stats['total_value'] == Decimal('484')

    def test_get_missing_estimate(self, session):
        with pytest.raises(NotFoundError):
            get_estimate(session, 12345)


class TestRecomputeStoredTotals:
    """Tests for the maintenance recompute."""

    def test_recompute_fixes_stale_draft_totals(self, session, make_estimate):
        draft = make_estimate()
        approved = make_estimate(status='APPROVED')

        session.query(Estimate).update({Estimate.total: Decimal('1')}, synchronize_session=False)
        session.commit()

        assert recompute_stored_totals(session) == 1
        assert get_estimate(session, draft.id).total == Decimal('121')
        assert get_estimate(session, approved.id).total == Decimal('1')

    def test_stored_figures_survive_reload(self, session, make_estimate, material, labor):
        estimate = make_estimate(
            items=[material(quantity='3.333333', unit_cost='7.777777', markup_value='12.5')],
            labor_items=[labor(quantity=3, hours='1.234', hourly_rate='100', markup_type='PERCENTAGE',
                               markup_value='3.3')],
            params={'profit_margin_value': '7.5', 'vat_rate': '5', 'discount_type': 'PERCENTAGE',
                    'discount_value': '3.3'},
        )
        estimate_id = estimate.id
        session.expire_all()

        stored = get_estimate(session, estimate_id)
        recomputed = calculate_totals(
            [item.pricing_input() for item in stored.items],
            [item.pricing_input() for item in stored.labor_items],
            stored.commercial_params(),
        )

        assert stored.labor_items[0].hours == Decimal('1.234')
        assert stored.total == round_money(recomputed.total, STORED_PLACES)
        assert stored.items[0].total_price == round_money(recomputed.item_prices[0].total_price, STORED_PLACES)
        assert recompute_stored_totals(session) == 0
