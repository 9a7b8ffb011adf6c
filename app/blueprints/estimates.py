"""Estimates blueprint: JSON API for pricing, editing and approving estimates."""
from flask import Blueprint, request, jsonify, current_app, g
from app.database import get_session
from app.exceptions import ValidationError
from app.middleware import require_actor
from app.models import EstimateStatus
from app.services.activity_service import get_activities
from app.services.estimate_service import (
    DATE_FIELDS, DETAIL_FIELDS,
    create_estimate, estimate_warnings, get_estimate, get_estimate_stats,
    get_revision_history, list_estimates, preview_discount, preview_totals,
    update_estimate,
)
from app.services.estimate_workflow_service import (
    WorkflowAction, get_available_actions, perform_action
)
from app.services.pricing_service import TOTAL_FIELDS, parse_enum
from app.utils.formatters import format_money
from app.utils.number_format import parse_int

estimates_bp = Blueprint('estimates', __name__, url_prefix='/api/v1/estimates')

# URL segment -> workflow action
ACTION_ROUTES = {action.value.replace('_', '-'): action for action in WorkflowAction}


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _money(value):
    return format_money(
        value,
        places=current_app.config.get('MONEY_DECIMALS', 3),
        currency=current_app.config.get('CURRENCY_CODE')
    )


def _totals_payload(totals):
    """Full-precision figures as strings plus formatted display values."""
    figures = totals.as_dict()
    figures['transport_cost'] = totals.transport_cost
    return {
        'totals': {name: str(value) for name, value in figures.items()},
        'display': {name: _money(value) for name, value in figures.items()},
        'items': [
            {'total_cost': str(p.total_cost), 'markup_amount': str(p.markup_amount), 'total_price': str(p.total_price)}
            for p in totals.item_prices
        ],
        'labor_items': [
            {'total_cost': str(p.total_cost), 'markup_amount': str(p.markup_amount), 'total_price': str(p.total_price)}
            for p in totals.labor_prices
        ],
        'is_negative': totals.is_negative,
        'warnings': [str(w) for w in totals.warnings],
    }


def _estimate_payload(estimate, detail=False):
    data = estimate.to_dict()
    data['display'] = {name: _money(getattr(estimate, name)) for name in TOTAL_FIELDS}
    data['available_actions'] = get_available_actions(estimate)
    data['warnings'] = estimate_warnings(estimate)
    if detail:
        data['activities'] = [activity.to_dict() for activity in estimate.activities]
        data['revisions'] = [
            {'id': r.id, 'estimate_no': r.estimate_no, 'version': r.version, 'status': r.status.value}
            for r in estimate.revisions
        ]
    return data


def _default_params(data):
    """Fill commercial parameters the client left out with configured defaults."""
    params = data.get('params') or {}
    if not isinstance(params, dict):
        raise ValidationError('params must be an object', field='params')
    params = dict(params)
    for key in ('transport_cost', 'profit_margin_type', 'profit_margin_value',
                'vat_rate', 'discount_type', 'discount_value'):
        if key in data and key not in params:
            params[key] = data[key]
    params.setdefault('vat_rate', current_app.config.get('DEFAULT_VAT_RATE'))
    params.setdefault('profit_margin_type', current_app.config.get('DEFAULT_PROFIT_MARGIN_TYPE'))
    params.setdefault('profit_margin_value', current_app.config.get('DEFAULT_PROFIT_MARGIN_VALUE'))
    return params


@estimates_bp.route('/', methods=['GET'])
def list_view():
    """List estimates (latest versions unless all_versions=1)."""
    db_session = get_session()

    status = request.args.get('status', '').strip()
    status = parse_enum(EstimateStatus, status, 'status') if status else None

    max_page_size = current_app.config.get('API_MAX_PAGE_SIZE', 100)
    page = parse_int(request.args.get('page'), 'page', default=1)
    per_page = parse_int(request.args.get('per_page'), 'per_page', default=current_app.config.get('API_PAGE_SIZE', 20))
    per_page = min(max(per_page, 1), max_page_size)

    estimates, total = list_estimates(
        db_session,
        status=status,
        search=request.args.get('search', '').strip() or None,
        service_request_id=request.args.get('service_request_id', '').strip() or None,
        latest_only=request.args.get('all_versions', '0') not in ('1', 'true', 'yes'),
        page=page,
        per_page=per_page,
    )
    return jsonify({
        'estimates': [_estimate_payload(e) for e in estimates],
        'total': total,
        'page': max(page, 1),
        'per_page': per_page,
    })


@estimates_bp.route('/stats', methods=['GET'])
def stats_view():
    """Dashboard counters."""
    stats = get_estimate_stats(get_session())
    stats['total_value'] = str(stats['total_value'])
    stats['approved_value'] = str(stats['approved_value'])
    stats['approval_rate'] = str(stats['approval_rate'])
    return jsonify(stats)


@estimates_bp.route('/<int:estimate_id>', methods=['GET'])
def detail_view(estimate_id):
    estimate = get_estimate(get_session(), estimate_id)
    return jsonify(_estimate_payload(estimate, detail=True))


@estimates_bp.route('/<int:estimate_id>/activities', methods=['GET'])
def activities_view(estimate_id):
    db_session = get_session()
    get_estimate(db_session, estimate_id)
    limit = min(parse_int(request.args.get('limit'), 'limit', default=100), 500)
    offset = max(parse_int(request.args.get('offset'), 'offset', default=0), 0)
    activities = get_activities(db_session, estimate_id, limit=limit, offset=offset)
    return jsonify({'activities': [a.to_dict() for a in activities]})


@estimates_bp.route('/<int:estimate_id>/revisions', methods=['GET'])
def revisions_view(estimate_id):
    chain = get_revision_history(get_session(), estimate_id)
    return jsonify({'revisions': [_estimate_payload(e) for e in chain]})


@estimates_bp.route('/', methods=['POST'])
@require_actor
def create_view():
    """Create a DRAFT estimate."""
    data = _json_body()
    details = {key: data[key] for key in DETAIL_FIELDS + DATE_FIELDS if key in data}

    estimate = create_estimate(
        get_session(),
        service_request_id=data.get('service_request_id'),
        title=data.get('title'),
        items=data.get('items') or [],
        labor_items=data.get('labor_items') or [],
        params=_default_params(data),
        actor_id=g.actor_id,
        number_prefix=current_app.config.get('ESTIMATE_NUMBER_PREFIX', 'EST'),
        **details
    )
    return jsonify(_estimate_payload(estimate, detail=True)), 201


@estimates_bp.route('/<int:estimate_id>', methods=['PUT'])
@require_actor
def update_view(estimate_id):
    """Edit lines, parameters or descriptive fields of an editable estimate."""
    data = _json_body()
    params = data.pop('params', None)
    if params is not None and not isinstance(params, dict):
        raise ValidationError('params must be an object', field='params')
    data.update(params or {})
    estimate = update_estimate(get_session(), estimate_id, g.actor_id, data)
    return jsonify(_estimate_payload(estimate, detail=True))


@estimates_bp.route('/calculate', methods=['POST'])
def calculate_view():
    """Price unsaved lines without storing anything."""
    data = _json_body()
    totals = preview_totals(data.get('items'), data.get('labor_items'), _default_params(data))
    return jsonify(_totals_payload(totals))


@estimates_bp.route('/solve-discount', methods=['POST'])
def solve_discount_view():
    """Suggest the discount that makes the grand total equal target_total."""
    data = _json_body()
    solution = preview_discount(
        data.get('items'), data.get('labor_items'), _default_params(data), data.get('target_total')
    )
    return jsonify({
        'discount_type': solution.discount_type.value,
        'discount_value': str(solution.discount_value),
        'discount_needed': solution.discount_needed,
        'amount_before_discount': str(solution.amount_before_discount),
        'target_total_before_vat': str(solution.target_total_before_vat),
    })


@estimates_bp.route('/<int:estimate_id>/<action_name>', methods=['POST'])
@require_actor
def action_view(estimate_id, action_name):
    """Run a workflow action: submit, approve, reject, convert-to-quote, ..."""
    action = ACTION_ROUTES.get(action_name)
    if action is None:
        return jsonify({'status': 'error', 'message': f'Unknown action: {action_name}'}), 404

    payload = _json_body()
    options = {}
    if action == WorkflowAction.CONVERT_TO_QUOTE:
        options = {
            'number_prefix': current_app.config.get('QUOTE_NUMBER_PREFIX', 'QT'),
            'valid_days': current_app.config.get('QUOTE_VALID_DAYS', 30),
        }

    result = perform_action(get_session(), estimate_id, action, g.actor_id, payload, **options)

    body = result.to_dict()
    body['estimate'] = _estimate_payload(result.estimate, detail=True)
    status_code = 201 if action in (WorkflowAction.CREATE_REVISION, WorkflowAction.CONVERT_TO_QUOTE) else 200
    return jsonify(body), status_code
