"""
Platform administration API: clients, subscriptions and manual payments.
"""
import logging

from flask import Blueprint, g, jsonify, request

import subscriptions
from app import super_admin_required, validated
from app_models import db, SocietyAccount, Member, Subscription, SubscriptionOrder
from forms import ActivatePlanForm, ClientStatusForm, PaymentDecisionForm, SocietyForm
from society_services import NotFoundError

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def _get_society(society_id):
    society = db.session.get(SocietyAccount, society_id)
    if society is None:
        raise NotFoundError('Client not found')
    return society


def _client_row(society):
    data = society.to_dict()
    data['member_count'] = Member.query.filter_by(society_id=society.id).count()
    data['days_remaining'] = society.days_remaining()
    data['is_expired'] = society.is_subscription_expired()
    return data


@admin_bp.route('/dashboard')
@super_admin_required
def dashboard():
    return jsonify(subscriptions.platform_overview())


@admin_bp.route('/clients')
@super_admin_required
def list_clients():
    query = SocietyAccount.query
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status.upper())
    plan = request.args.get('plan')
    if plan:
        query = query.filter_by(subscription_plan=plan.upper())
    societies = query.order_by(SocietyAccount.created_at.desc()).all()
    return jsonify({'clients': [_client_row(s) for s in societies]})


@admin_bp.route('/clients', methods=['POST'])
@super_admin_required
def create_client():
    form = validated(SocietyForm)
    society = subscriptions.create_society(
        form.name.data, form.email.data, form.admin_email.data, form.admin_password.data,
        admin_name=form.admin_name.data, phone=form.phone.data, address=form.address.data,
        created_by=g.user.email,
    )
    return jsonify({'success': True, 'client': _client_row(society)}), 201


@admin_bp.route('/clients/<int:society_id>')
@super_admin_required
def get_client(society_id):
    society = _get_society(society_id)
    history = Subscription.query.filter_by(society_id=society.id).order_by(Subscription.start_date.desc()).all()
    orders = SubscriptionOrder.query.filter_by(society_id=society.id) \
        .order_by(SubscriptionOrder.created_at.desc()).all()
    return jsonify({
        'client': _client_row(society),
        'subscription': subscriptions.subscription_status(society),
        'history': [s.to_dict() for s in history],
        'orders': [o.to_dict() for o in orders],
    })


@admin_bp.route('/clients/<int:society_id>/status', methods=['POST'])
@super_admin_required
def change_client_status(society_id):
    form = validated(ClientStatusForm)
    society = subscriptions.set_society_status(_get_society(society_id), form.action.data, g.user.email)
    return jsonify({'success': True, 'client': _client_row(society)})


@admin_bp.route('/clients/<int:society_id>/activate', methods=['POST'])
@super_admin_required
def activate_client_plan(society_id):
    form = validated(ActivatePlanForm)
    society = _get_society(society_id)
    record = subscriptions.activate_plan(
        society, form.plan_code.data, amount_paid=form.amount_paid.data,
        payment_reference=form.payment_reference.data, created_by=g.user.email, notes=form.notes.data,
    )
    db.session.commit()
    return jsonify({'success': True, 'subscription': record.to_dict(), 'client': _client_row(society)})


@admin_bp.route('/payments')
@super_admin_required
def list_payments():
    query = SubscriptionOrder.query
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status.lower())
    orders = query.order_by(SubscriptionOrder.created_at.desc()).all()
    payments = []
    for order in orders:
        data = order.to_dict()
        data['society_name'] = order.society.name if order.society else None
        payments.append(data)
    return jsonify({'payments': payments})


@admin_bp.route('/payments/<int:order_id>/approve', methods=['POST'])
@super_admin_required
def approve_payment(order_id):
    order = subscriptions.approve_payment_order(order_id, g.user.email)
    return jsonify({'success': True, 'payment': order.to_dict()})


@admin_bp.route('/payments/<int:order_id>/reject', methods=['POST'])
@super_admin_required
def reject_payment(order_id):
    form = validated(PaymentDecisionForm)
    order = subscriptions.reject_payment_order(order_id, g.user.email, reason=form.reason.data)
    return jsonify({'success': True, 'payment': order.to_dict()})


@admin_bp.route('/plans')
@super_admin_required
def list_plans():
    return jsonify({'plans': [plan.to_dict() for plan in subscriptions.list_plans()]})


@admin_bp.route('/subscriptions/expire', methods=['POST'])
@super_admin_required
def expire_subscriptions():
    expired = subscriptions.expire_overdue_societies()
    return jsonify({'success': True, 'expired': expired})
