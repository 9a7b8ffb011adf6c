import pytest

from app import create_app
from app import database
from app.services.estimate_service import create_estimate
from app.services import estimate_workflow_service as workflow


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite)."""
    app = create_app('config.TestConfig')
    return app


@pytest.fixture(scope='function')
def session(app):
    """Fresh schema and database session for each test."""
    database.drop_all()
    database.create_all()
    session = database.get_session()
    yield session
    session.rollback()
    session.remove()


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def actor_headers():
    return {'X-Actor-Id': 'estimator-1'}


@pytest.fixture
def manager_headers():
    return {'X-Actor-Id': 'manager-1'}


def material_line(**overrides):
    line = {
        'name': 'PVC pipe 20mm',
        'item_type': 'MATERIAL',
        'quantity': '2',
        'unit': 'm',
        'unit_cost': '10',
        'markup_type': 'PERCENTAGE',
        'markup_value': '10',
    }
    line.update(overrides)
    return line


def labor_line(**overrides):
    line = {
        'description': 'Plumber',
        'rate_type': 'HOURLY',
        'quantity': 1,
        'hours': '4',
        'hourly_rate': '5',
        'markup_type': 'NONE',
        'markup_value': '0',
    }
    line.update(overrides)
    return line


# With default_items() and one labor_line(): 22 + 58 + 20 = subtotal 100, total 121
DEFAULT_PARAMS = {
    'transport_cost': '0',
    'profit_margin_type': 'PERCENTAGE',
    'profit_margin_value': '10',
    'vat_rate': '10',
    'discount_type': 'NONE',
    'discount_value': '0',
}


def default_items():
    return [
        material_line(),
        material_line(name='Fittings', quantity='1', unit_cost='58', markup_type='NONE', markup_value='0'),
    ]


@pytest.fixture
def make_estimate(session):
    """
    Factory creating an estimate with subtotal 100 and total 121, optionally
    walked through the workflow to a given status.
    """
    def _make(status='DRAFT', title='Replace kitchen plumbing', service_request_id='SR-100',
              items=None, labor_items=None, params=None, actor_id='estimator-1'):
        estimate = create_estimate(
            session,
            service_request_id=service_request_id,
            title=title,
            items=default_items() if items is None else items,
            labor_items=[labor_line()] if labor_items is None else labor_items,
            params=dict(DEFAULT_PARAMS, **(params or {})),
            actor_id=actor_id,
        )
        if status == 'DRAFT':
            return estimate

        workflow.submit_estimate(session, estimate.id, actor_id)
        if status == 'PENDING_MANAGER_APPROVAL':
            return estimate
        if status == 'APPROVED':
            workflow.approve_estimate(session, estimate.id, 'manager-1')
        elif status == 'REJECTED':
            workflow.reject_estimate(session, estimate.id, 'manager-1', 'Too expensive')
        elif status == 'REVISION_REQUESTED':
            workflow.request_revision(session, estimate.id, 'manager-1', 'Add labor breakdown')
        else:
            raise ValueError(f'Unsupported fixture status: {status}')
        return estimate

    return _make


@pytest.fixture
def material():
    """Builder for raw material line payloads."""
    return material_line


@pytest.fixture
def labor():
    """Builder for raw labor line payloads."""
    return labor_line


@pytest.fixture
def params():
    """Commercial parameters giving profit 10%, no discount and VAT 10%."""
    return dict(DEFAULT_PARAMS)
