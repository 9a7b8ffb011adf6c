"""
Integration tests for the estimates HTTP API.
"""

import pytest

API = '/api/v1/estimates'


def _create_payload(material, labor, params, **overrides):
    payload = {
        'service_request_id': 'SR-100',
        'title': 'Replace kitchen plumbing',
        'items': [
            material(),
            material(name='Fittings', quantity='1', unit_cost='58', markup_type='NONE'),
        ],
        'labor_items': [labor()],
        'params': params,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def created(client, actor_headers, material, labor, params):
    response = client.post(f'{API}/', json=_create_payload(material, labor, params), headers=actor_headers)
    assert response.status_code == 201
    return response.get_json()


class TestEstimateCrud:
    """Tests for create, read, update endpoints."""

    def test_create_returns_totals_and_actions(self, created):
        assert created['status'] == 'DRAFT'
        assert created['version'] == 1
        assert created['total'].startswith('121')
        assert created['display']['total'] == '121.000 BHD'
        assert created['available_actions'] == ['submit', 'cancel']
        assert created['activities'][0]['action'] == 'CREATED'
        assert len(created['items']) == 2

    def test_create_requires_actor(self, client, material, labor, params):
        response = client.post(f'{API}/', json=_create_payload(material, labor, params))

        assert response.status_code == 401
        assert 'X-Actor-Id' in response.get_json()['message']

    def test_create_validation_error(self, client, actor_headers, material, labor, params):
        payload = _create_payload(material, labor, params, title='')

        response = client.post(f'{API}/', json=payload, headers=actor_headers)

        assert response.status_code == 400
        body = response.get_json()
        assert body['status'] == 'error'
        assert body['field'] == 'title'

    def test_create_with_malformed_items(self, client, actor_headers, material, labor, params):
        payload = _create_payload(material, labor, params, items='abc')

        response = client.post(f'{API}/', json=payload, headers=actor_headers)

        assert response.status_code == 400
        assert response.get_json()['field'] == 'items'

    def test_create_rejects_hours_beyond_stored_scale(self, client, actor_headers, material, labor, params):
        payload = _create_payload(material, labor, params, labor_items=[labor(hours='1.2345')])

        response = client.post(f'{API}/', json=payload, headers=actor_headers)

        assert response.status_code == 400
        assert response.get_json()['field'] == 'hours'

    def test_create_applies_configured_defaults(self, client, actor_headers, material):
        payload = {'service_request_id': 'SR-1', 'title': 'Defaults', 'items': [material(markup_type='NONE')]}

        body = client.post(f'{API}/', json=payload, headers=actor_headers).get_json()

        assert body['vat_rate'].startswith('10')
        assert body['profit_margin_type'] == 'PERCENTAGE'
        assert body['total'].startswith('24.2')

    def test_get_and_list(self, client, created):
        response = client.get(f"{API}/{created['id']}")
        assert response.status_code == 200
        assert response.get_json()['estimate_no'] == created['estimate_no']

        listing = client.get(f'{API}/?status=DRAFT').get_json()
        assert listing['total'] == 1
        assert listing['estimates'][0]['id'] == created['id']

    def test_get_missing_returns_404(self, client, session):
        response = client.get(f'{API}/999')

        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'

    def test_list_with_unknown_status(self, client, session):
        response = client.get(f'{API}/?status=SHIPPED')

        assert response.status_code == 400

    def test_update(self, client, created, actor_headers):
        response = client.put(
            f"{API}/{created['id']}", json={'params': {'transport_cost': '10'}}, headers=actor_headers
        )

        assert response.status_code == 200
        assert response.get_json()['subtotal'].startswith('110')

    def test_update_after_approval_conflicts(self, client, created, actor_headers, manager_headers):
        client.post(f"{API}/{created['id']}/submit", headers=actor_headers)
        client.post(f"{API}/{created['id']}/approve", headers=manager_headers)

        response = client.put(f"{API}/{created['id']}", json={'title': 'Late change'}, headers=actor_headers)

        assert response.status_code == 409
        body = response.get_json()
        assert body['current_status'] == 'APPROVED'
        assert body['action'] == 'update'

    def test_stats(self, client, created):
        stats = client.get(f'{API}/stats').get_json()

        assert stats['total_estimates'] == 1
        assert stats['draft_estimates'] == 1


class TestCalculation:
    """Tests for the stateless pricing endpoints."""

    def test_calculate(self, client, session, material, params):
        response = client.post(f'{API}/calculate', json={
            'items': [material(quantity='2', unit_cost='10')],
            'params': dict(params, profit_margin_type='NONE', vat_rate='0'),
        })

        assert response.status_code == 200
        body = response.get_json()
        assert body['totals']['total'] == '22'
        assert body['items'][0]['markup_amount'] == '2'
        assert body['is_negative'] is False

    def test_calculate_flags_negative_total(self, client, session, params):
        body = client.post(f'{API}/calculate', json={
            'params': dict(params, transport_cost='10', discount_type='FIXED', discount_value='100'),
        }).get_json()

        assert body['is_negative'] is True
        assert len(body['warnings']) == 1

    def test_solve_discount(self, client, session, params):
        response = client.post(f'{API}/solve-discount', json={
            'params': dict(params, transport_cost='100'),
            'target_total': '100',
        })

        body = response.get_json()
        assert body['discount_type'] == 'FIXED'
        assert body['discount_value'] == '19.091'
        assert body['discount_needed'] is True

    @pytest.mark.parametrize('payload,field', [
        ({'items': [5]}, 'items'),
        ({'items': 'abc'}, 'items'),
        ({'labor_items': [['Plumber']]}, 'labor_items'),
        ({'params': 'abc'}, 'params'),
    ])
    def test_calculate_malformed_payload(self, client, session, payload, field):
        response = client.post(f'{API}/calculate', json=payload)

        assert response.status_code == 400
        assert response.get_json()['field'] == field

    def test_solve_discount_invalid_target(self, client, session, params):
        response = client.post(f'{API}/solve-discount', json={'params': params, 'target_total': '-5'})

        assert response.status_code == 400
        assert response.get_json()['field'] == 'target_total'


class TestWorkflowEndpoints:
    """Tests for POST /<id>/<action>."""

    def test_full_happy_path(self, client, created, actor_headers, manager_headers):
        estimate_id = created['id']

        submit = client.post(f'{API}/{estimate_id}/submit', headers=actor_headers)
        assert submit.status_code == 200
        assert submit.get_json()['new_status'] == 'PENDING_MANAGER_APPROVAL'

        approve = client.post(f'{API}/{estimate_id}/approve', headers=manager_headers)
        assert approve.get_json()['estimate']['available_actions'] == ['cancel', 'convert_to_quote']

        convert = client.post(
            f'{API}/{estimate_id}/convert-to-quote', json={'terms': 'Net 30'}, headers=manager_headers
        )
        assert convert.status_code == 201
        body = convert.get_json()
        assert body['new_status'] == 'CONVERTED'
        assert body['quote']['terms'] == 'Net 30'
        assert body['quote']['total'].startswith('121')
        assert body['estimate']['converted_to_quote']['quote_no'] == body['quote']['quote_no']

    def test_reject_without_reason(self, client, created, actor_headers, manager_headers):
        client.post(f"{API}/{created['id']}/submit", headers=actor_headers)

        response = client.post(f"{API}/{created['id']}/reject", json={}, headers=manager_headers)

        assert response.status_code == 400
        assert response.get_json()['field'] == 'reason'

    def test_illegal_action_conflicts(self, client, created, manager_headers):
        response = client.post(f"{API}/{created['id']}/approve", headers=manager_headers)

        assert response.status_code == 409
        assert response.get_json()['current_status'] == 'DRAFT'

    def test_unknown_action(self, client, created, actor_headers):
        response = client.post(f"{API}/{created['id']}/publish", headers=actor_headers)

        assert response.status_code == 404

    def test_revision_endpoint(self, client, created, actor_headers, manager_headers):
        estimate_id = created['id']
        client.post(f'{API}/{estimate_id}/submit', headers=actor_headers)
        client.post(f'{API}/{estimate_id}/reject', json={'reason': 'Too high'}, headers=manager_headers)

        response = client.post(f'{API}/{estimate_id}/create-revision', headers=actor_headers)

        assert response.status_code == 201
        revision = response.get_json()['estimate']
        assert revision['version'] == 2
        assert revision['parent_estimate_id'] == estimate_id
        assert revision['estimate_no'] == f"{created['estimate_no']}-V2"

        history = client.get(f'{API}/{estimate_id}/revisions').get_json()['revisions']
        assert [e['version'] for e in history] == [1, 2]

        listing = client.get(f'{API}/').get_json()
        assert [e['version'] for e in listing['estimates']] == [2]
        all_versions = client.get(f'{API}/?all_versions=1').get_json()
        assert all_versions['total'] == 2

    def test_activities_endpoint(self, client, created, actor_headers):
        client.post(f"{API}/{created['id']}/cancel", json={'reason': 'Duplicate'}, headers=actor_headers)

        activities = client.get(f"{API}/{created['id']}/activities").get_json()['activities']

        assert [a['action'] for a in activities] == ['CREATED', 'CANCELLED']
        assert activities[1]['actor_id'] == 'estimator-1'


class TestMetrics:
    """Tests for the Prometheus endpoint."""

    def test_metrics_exposes_transition_counter(self, client, created, actor_headers):
        client.post(f"{API}/{created['id']}/submit", headers=actor_headers)

        response = client.get('/metrics')

        assert response.status_code == 200
        assert b'estimate_transitions_total' in response.data
        assert b'http_requests_total' in response.data
