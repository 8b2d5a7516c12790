"""
Subscription billing for societies: plan catalogue, trial and paid periods,
manual payment orders and the platform-side status actions.
"""
import logging
from datetime import datetime, timedelta

from flask import current_app

from app_models import db, SocietyAccount, User, Member, Subscription, SubscriptionOrder, SubscriptionPlan
from security import hash_password
from society_services import (
    NotFoundError, SubscriptionError, ValidationError, ensure_role_permissions, log_activity,
)

logger = logging.getLogger(__name__)

PLAN_CATALOGUE = (
    {'code': 'TRIAL', 'name': 'Trial', 'price': 0.0, 'duration_days': 15, 'max_members': 100,
     'features': ['Passbook', 'Loans', 'Basic reports']},
    {'code': 'BASIC', 'name': 'Basic', 'price': 4000.0, 'duration_days': 30, 'max_members': 200,
     'features': ['Passbook', 'Loans', 'Basic reports', 'CSV export']},
    {'code': 'PRO', 'name': 'Pro', 'price': 7000.0, 'duration_days': 30, 'max_members': 2000,
     'features': ['Passbook', 'Loans', 'Audit reports', 'CSV export', 'Maturity tracking', 'User roles']},
    {'code': 'ENTERPRISE', 'name': 'Enterprise', 'price': 10000.0, 'duration_days': 30, 'max_members': None,
     'features': ['Everything in Pro', 'Unlimited members', 'Data export and import']},
)
STATUS_ACTIONS = ('LOCK', 'EXPIRE', 'UNLOCK')


def seed_plans():
    """Insert catalogue plans that are not in the database yet"""
    existing = {plan.code for plan in SubscriptionPlan.query.all()}
    added = 0
    for entry in PLAN_CATALOGUE:
        if entry['code'] not in existing:
            db.session.add(SubscriptionPlan(**entry))
            added += 1
    if added:
        db.session.commit()
        logger.info("Seeded %d subscription plans", added)
    return added


def get_plan(code):
    plan = SubscriptionPlan.query.filter_by(code=(code or '').upper()).first()
    if plan is None:
        raise NotFoundError(f'Unknown plan: {code}')
    return plan


def list_plans():
    return SubscriptionPlan.query.filter_by(is_active=True).order_by(SubscriptionPlan.price).all()


def start_trial(society, now=None):
    now = now or datetime.utcnow()
    plan = get_plan('TRIAL')
    society.subscription_plan = 'TRIAL'
    society.subscription_status = 'TRIAL'
    society.trial_ends_at = now + timedelta(days=plan.duration_days)
    society.subscription_ends_at = None


def days_remaining(society, now=None):
    return society.days_remaining(now)


def is_expired(society, now=None):
    return society.is_subscription_expired(now)


def subscription_status(society, now=None):
    plan = SubscriptionPlan.query.filter_by(code=society.subscription_plan).first()
    return {
        'plan': plan.to_dict() if plan else None,
        'status': 'EXPIRED' if is_expired(society, now) else society.subscription_status,
        'society_status': society.status,
        'days_remaining': days_remaining(society, now),
        'trial_ends_at': society.trial_ends_at.isoformat() if society.trial_ends_at else None,
        'subscription_ends_at': society.subscription_ends_at.isoformat() if society.subscription_ends_at else None,
        'member_count': Member.query.filter_by(society_id=society.id).count(),
        'member_limit': plan.max_members if plan else None,
    }


def activate_plan(society, plan_code, amount_paid=None, payment_reference=None, created_by='system',
                  notes=None, now=None):
    """Move a society onto a paid plan for the plan's duration"""
    now = now or datetime.utcnow()
    plan = get_plan(plan_code)
    if plan.code == 'TRIAL':
        raise ValidationError('The trial plan cannot be purchased')

    # An early renewal extends the running paid period
    start = now
    if society.subscription_status == 'ACTIVE' and society.subscription_ends_at \
            and society.subscription_ends_at > now:
        start = society.subscription_ends_at

    Subscription.query.filter_by(society_id=society.id, is_active=True).update({'is_active': False})
    record = Subscription(
        society_id=society.id,
        plan_code=plan.code,
        start_date=start,
        end_date=start + timedelta(days=plan.duration_days),
        amount_paid=plan.price if amount_paid is None else amount_paid,
        payment_reference=payment_reference,
        is_active=True,
        created_by=created_by,
        notes=notes,
    )
    db.session.add(record)

    society.subscription_plan = plan.code
    society.subscription_status = 'ACTIVE'
    society.subscription_ends_at = record.end_date
    # Paying lifts an expiry, never a platform lock
    if society.status == 'EXPIRED':
        society.status = 'ACTIVE'
    log_activity(society.id, None, 'SUBSCRIPTION_ACTIVATED', {
        'after': plan.code, 'until': record.end_date.isoformat(), 'by': created_by,
    })
    logger.info("Society %s activated on %s until %s", society.id, plan.code, record.end_date.date())
    return record


def expire_overdue_societies(now=None):
    """Mark societies whose trial or paid period ran out as EXPIRED"""
    now = now or datetime.utcnow()
    expired = 0
    for society in SocietyAccount.query.filter(SocietyAccount.subscription_status.in_(['TRIAL', 'ACTIVE'])).all():
        if society.is_subscription_expired(now):
            society.subscription_status = 'EXPIRED'
            Subscription.query.filter_by(society_id=society.id, is_active=True).update({'is_active': False})
            expired += 1
    if expired:
        db.session.commit()
        logger.info("Expired %d overdue subscriptions", expired)
    return expired


# Manual payments
def create_payment_order(society, plan_code, payment_reference=None, user=None):
    plan = get_plan(plan_code)
    if plan.code == 'TRIAL' or not plan.is_active:
        raise ValidationError('Choose a paid plan')
    members = Member.query.filter_by(society_id=society.id).count()
    if plan.max_members is not None and members > plan.max_members:
        raise SubscriptionError(
            f'The {plan.name} plan allows {plan.max_members} members, this society has {members}'
        )
    if SubscriptionOrder.query.filter_by(society_id=society.id, status='pending').first():
        raise ValidationError('A payment is already awaiting approval')

    order = SubscriptionOrder(
        society_id=society.id,
        plan_code=plan.code,
        amount=plan.price,
        payment_reference=payment_reference,
        status='pending',
    )
    db.session.add(order)
    log_activity(society.id, user, 'PAYMENT_SUBMITTED', {'after': plan.code, 'reference': payment_reference})
    db.session.commit()
    logger.info("Society %s submitted payment for %s", society.id, plan.code)
    return order


def _get_order(order_id):
    order = db.session.get(SubscriptionOrder, order_id)
    if order is None:
        raise NotFoundError('Payment order not found')
    return order


def approve_payment_order(order_id, approved_by, now=None):
    """Approve a manual payment; approving twice changes nothing"""
    order = _get_order(order_id)
    if order.status == 'approved':
        return order
    if order.status != 'pending':
        raise ValidationError(f'Payment order is already {order.status}')

    now = now or datetime.utcnow()
    society = db.session.get(SocietyAccount, order.society_id)
    activate_plan(society, order.plan_code, amount_paid=order.amount, payment_reference=order.payment_reference,
                  created_by=approved_by, now=now)
    order.status = 'approved'
    order.decided_at = now
    db.session.commit()
    return order


def reject_payment_order(order_id, rejected_by, reason=None):
    order = _get_order(order_id)
    if order.status != 'pending':
        raise ValidationError(f'Payment order is already {order.status}')
    order.status = 'rejected'
    order.decided_at = datetime.utcnow()
    log_activity(order.society_id, None, 'PAYMENT_REJECTED', {'by': rejected_by, 'reason': reason})
    db.session.commit()
    logger.info("Payment order %s rejected by %s", order.id, rejected_by)
    return order


# Platform actions
def set_society_status(society, action, actor, now=None):
    action = (action or '').upper()
    if action not in STATUS_ACTIONS:
        raise ValidationError(f'Action must be one of {", ".join(STATUS_ACTIONS)}')
    now = now or datetime.utcnow()
    if action == 'LOCK':
        society.status = 'LOCKED'
    elif action == 'EXPIRE':
        society.status = 'EXPIRED'
        society.subscription_status = 'EXPIRED'
        if society.trial_ends_at and society.trial_ends_at > now:
            society.trial_ends_at = now
        if society.subscription_ends_at and society.subscription_ends_at > now:
            society.subscription_ends_at = now
        Subscription.query.filter_by(society_id=society.id, is_active=True).update({'is_active': False})
    else:
        society.status = 'ACTIVE'
        society.is_active = True
    log_activity(society.id, None, f'CLIENT_{action}', {'by': actor})
    db.session.commit()
    logger.info("Society %s status action %s by %s", society.id, action, actor)
    return society


def create_society(name, email, admin_email, admin_password, admin_name=None, phone=None, address=None,
                   created_by='system', now=None):
    """Onboard a society on the trial plan together with its CLIENT_ADMIN user"""
    email = (email or '').strip().lower()
    admin_email = (admin_email or '').strip().lower()
    if not name or not email or not admin_email or not admin_password:
        raise ValidationError('Society name, email, admin email and password are required')
    if SocietyAccount.query.filter_by(email=email).first():
        raise ValidationError('A society with this email already exists')
    if User.query.filter_by(email=admin_email).first():
        raise ValidationError('A user with this email already exists')

    config = current_app.config
    society = SocietyAccount(
        name=name,
        admin_name=admin_name,
        email=email,
        phone=phone,
        address=address,
        currency=config.get('CURRENCY', 'INR'),
        interest_rate=config.get('DEFAULT_INTEREST_RATE', 12.0),
        loan_limit_percent=config.get('LOAN_LIMIT_PERCENT', 80.0),
        fine_amount=config.get('FINE_AMOUNT', 10.0),
        grace_period_day=config.get('GRACE_PERIOD_DAY', 15),
        maintenance_fee=config.get('MAINTENANCE_FEE', 200.0),
        low_cash_threshold=config.get('LOW_CASH_THRESHOLD', 5000.0),
        status='ACTIVE',
        is_active=True,
    )
    start_trial(society, now)
    db.session.add(society)
    db.session.flush()

    db.session.add(User(
        email=admin_email,
        name=admin_name or name,
        password_hash=hash_password(admin_password),
        role='CLIENT_ADMIN',
        status='ACTIVE',
        society_id=society.id,
        phone=phone,
    ))
    ensure_role_permissions(society.id)
    log_activity(society.id, None, 'CLIENT_CREATED', {'by': created_by, 'after': name})
    db.session.commit()
    logger.info("Society %s (%s) created on trial", society.id, name)
    return society


def platform_overview(now=None):
    """KPIs and alerts for the platform admin dashboard"""
    now = now or datetime.utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    societies = SocietyAccount.query.all()

    revenue = db.session.query(db.func.sum(Subscription.amount_paid)).scalar() or 0
    pending_payments = SubscriptionOrder.query.filter_by(status='pending').count()
    active_trials = [s for s in societies if s.subscription_status == 'TRIAL' and not s.is_subscription_expired(now)]
    trials_ending = [s for s in active_trials if s.days_remaining(now) <= 3]
    expired = [s for s in societies if s.is_subscription_expired(now)]

    alerts = []
    if pending_payments:
        alerts.append({'type': 'PENDING_PAYMENTS', 'message': f'{pending_payments} payment(s) awaiting approval'})
    if trials_ending:
        alerts.append({'type': 'TRIALS_ENDING', 'message': f'{len(trials_ending)} trial(s) end within 3 days'})
    if expired:
        alerts.append({'type': 'EXPIRED_CLIENTS', 'message': f'{len(expired)} client(s) have expired'})

    return {
        'total_clients': len(societies),
        'new_this_month': sum(1 for s in societies if s.created_at and s.created_at >= month_start),
        'revenue': round(revenue, 2),
        'active_trials': len(active_trials),
        'active_subscriptions': sum(1 for s in societies
                                    if s.subscription_status == 'ACTIVE' and not s.is_subscription_expired(now)),
        'locked_clients': sum(1 for s in societies if s.status == 'LOCKED'),
        'pending_payments': pending_payments,
        'alerts': alerts,
    }
