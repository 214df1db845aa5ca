"""
REST API routes for contracts, billing, driver accounts, expenses and analytics.

Every route resolves the caller's Scope from the bearer token and hands it to
the core services; errors raised there are turned into JSON by the app's
FleetError handler.
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from ...common.data_utils import convert_to_date
from ...common.exceptions import ValidationError
from ...contracts import (
    ContractFilters, CreateContractRequest, StatusChangeRequest, UpdateContractRequest,
)
from ...expenses import CreateExpenseRequest, ExpenseFilters
from ..auth import require_scope

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')


def _services():
    return current_app.extensions['fleetrent']


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _user_id():
    return g.current_user.get('sub') or g.current_user.get('user_id')


# =============================================================================
# Contracts
# =============================================================================

@api_bp.route('/contracts', methods=['POST'])
@require_scope()
def api_create_contract():
    """Create an ACTIVE contract and hold its deposit."""
    req = CreateContractRequest.from_dict(_json_body())
    contract = _services().contracts.create(req, g.scope, created_by=_user_id())
    return jsonify(contract.to_dict()), 201


@api_bp.route('/contracts')
@require_scope()
def api_list_contracts():
    filters = ContractFilters.from_dict(request.args.to_dict())
    contracts = _services().contracts.list(g.scope, filters)
    return jsonify({
        'contracts': [c.to_dict() for c in contracts],
        'count': len(contracts),
    })


@api_bp.route('/contracts/<contract_id>')
@require_scope()
def api_get_contract(contract_id):
    return jsonify(_services().contracts.get(contract_id, g.scope).to_dict())


@api_bp.route('/contracts/<contract_id>', methods=['PATCH'])
@require_scope()
def api_update_contract(contract_id):
    """Edit end date or description."""
    req = UpdateContractRequest.from_dict(_json_body())
    return jsonify(_services().contracts.update(contract_id, req, g.scope).to_dict())


@api_bp.route('/contracts/<contract_id>/status', methods=['PATCH', 'POST'])
@require_scope()
def api_change_contract_status(contract_id):
    req = StatusChangeRequest.from_dict(_json_body())
    contract = _services().contracts.transition_status(contract_id, req, g.scope, created_by=_user_id())
    return jsonify(contract.to_dict())


@api_bp.route('/contracts/<contract_id>', methods=['DELETE'])
@require_scope()
def api_delete_contract(contract_id):
    _services().contracts.remove(contract_id, g.scope)
    return jsonify({'success': True, 'message': 'Contract deleted'})


@api_bp.route('/contracts/<contract_id>/stats')
@require_scope()
def api_contract_stats(contract_id):
    return jsonify(_services().contracts.get_contract_stats(contract_id, g.scope))


# =============================================================================
# Billing
# =============================================================================

@api_bp.route('/billing/run', methods=['POST'])
@require_scope(unrestricted_only=True)
def api_run_billing():
    """Run the daily billing cycle now (same path as the scheduled run)."""
    logger.info(f"Manual billing run requested by {_user_id()}")
    stats = _services().billing.run_billing_cycle(triggered_by='api')
    return jsonify(stats.to_dict())


@api_bp.route('/billing/today')
@require_scope()
def api_today_billing():
    stats = _services().billing_queries.get_today_billing_stats(
        g.scope, company_id=request.args.get('company_id')
    )
    return jsonify(stats.to_dict())


@api_bp.route('/billing/debtors')
@require_scope()
def api_debtors():
    debtors = _services().billing_queries.get_drivers_in_debt(
        g.scope, company_id=request.args.get('company_id')
    )
    return jsonify({
        'debtors': [d.to_dict() for d in debtors],
        'count': len(debtors),
    })


# =============================================================================
# Driver accounts
# =============================================================================

@api_bp.route('/drivers/<driver_id>/balance', methods=['POST'])
@require_scope()
def api_adjust_balance(driver_id):
    data = _json_body()
    driver = _services().drivers.adjust_balance(
        driver_id,
        data.get('amount'),
        data.get('type'),
        g.scope,
        description=data.get('description'),
        created_by=_user_id(),
    )
    return jsonify(driver.to_dict())


@api_bp.route('/drivers/<driver_id>/deposit', methods=['POST'])
@require_scope()
def api_adjust_deposit(driver_id):
    data = _json_body()
    driver = _services().drivers.adjust_deposit(
        driver_id,
        data.get('amount'),
        data.get('operation'),
        g.scope,
        reason=data.get('reason'),
        created_by=_user_id(),
    )
    return jsonify(driver.to_dict())


# =============================================================================
# Expenses
# =============================================================================

@api_bp.route('/expenses', methods=['POST'])
@require_scope()
def api_create_expense():
    req = CreateExpenseRequest.from_dict(_json_body())
    return jsonify(_services().expenses.create(req, g.scope).to_dict()), 201


@api_bp.route('/expenses')
@require_scope()
def api_list_expenses():
    filters = ExpenseFilters.from_dict(request.args.to_dict())
    return jsonify(_services().expenses.list(g.scope, filters).to_dict())


@api_bp.route('/expenses/summary')
@require_scope()
def api_expense_summary():
    """Company-paid expenses between start and end (default: the last 30 days)."""
    return jsonify(_services().expenses.get_summary(
        g.scope,
        start=convert_to_date(request.args.get('start'), 'start'),
        end=convert_to_date(request.args.get('end'), 'end'),
        company_id=request.args.get('company_id'),
    ))


@api_bp.route('/expenses/<expense_id>', methods=['DELETE'])
@require_scope()
def api_delete_expense(expense_id):
    _services().expenses.remove(expense_id, g.scope)
    return jsonify({'success': True, 'message': 'Expense deleted'})


# =============================================================================
# Analytics
# =============================================================================

@api_bp.route('/analytics/metrics')
@require_scope()
def api_metrics():
    """
    Cached metric rows.

    Query params:
        type: Metric type (required)
        start, end: ISO dates, inclusive (required)
        entity_id: Driver/vehicle id; empty string selects company-wide rows
        company_id: Narrow an unrestricted scope to one company
    """
    metric_type = request.args.get('type')
    if not metric_type:
        raise ValidationError('type is required')
    start = convert_to_date(request.args.get('start'), 'start')
    end = convert_to_date(request.args.get('end'), 'end')
    if start is None or end is None:
        raise ValidationError('start and end are required')

    metrics = _services().metrics.get_cached_metrics(
        g.scope,
        metric_type.upper(),
        start,
        end,
        entity_id=request.args.get('entity_id'),
        company_id=request.args.get('company_id'),
    )
    return jsonify({'metrics': metrics, 'count': len(metrics)})


@api_bp.route('/analytics/metrics/latest')
@require_scope()
def api_latest_metric():
    """Most recent cached row of one metric (type required; entity_id, company_id optional)."""
    metric_type = request.args.get('type')
    if not metric_type:
        raise ValidationError('type is required')
    metric = _services().metrics.get_latest_metric(
        g.scope,
        metric_type.upper(),
        entity_id=request.args.get('entity_id'),
        company_id=request.args.get('company_id'),
    )
    return jsonify({'metric': metric})


@api_bp.route('/analytics/recalculate', methods=['POST'])
@require_scope()
def api_recalculate_metrics():
    """Recompute daily metrics for the caller's company over {start, end}."""
    data = _json_body()
    company_id = g.scope.resolve_company(data.get('company_id') or data.get('companyId'))
    start = convert_to_date(data.get('start') or data.get('startDate'), 'start')
    end = convert_to_date(data.get('end') or data.get('endDate'), 'end')
    if start is None or end is None:
        raise ValidationError('start and end are required')

    logger.info(f"Metric recalculation for {company_id} requested by {_user_id()}")
    result = _services().analytics.recalculate(company_id, start, end)
    return jsonify(result.to_dict())
