"""
Society ledger operations: every write to a society's books goes through here.

Functions take the owning ``SocietyAccount`` explicitly, validate input, update
the rows and commit. Domain problems raise ``LedgerError`` subclasses which
the API layer turns into JSON error responses.
"""
import calendar
import logging
from collections import namedtuple
from datetime import date, datetime, timedelta

from flask import current_app, has_request_context, request

import ledger
from app_models import (
    db, SocietyAccount, User, Member, PassbookEntry, Loan, LoanRequest, ExpenseLedgerEntry,
    AdminFundTransaction, MaturityOverride, RolePermission, ActivityLog, SubscriptionPlan,
)
from security import hash_password

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self):
        data = {'success': False, 'error': self.message}
        data.update(self.payload)
        return data


class ValidationError(LedgerError):
    status_code = 400


class NotFoundError(LedgerError):
    status_code = 404


class PermissionDenied(LedgerError):
    status_code = 403


class SubscriptionError(LedgerError):
    status_code = 402


PAYMENT_MODES = ('CASH', 'BANK', 'UPI')
CLIENT_ROLES = ('CLIENT_ADMIN', 'TREASURER', 'MEMBER')
EXPENSE_CATEGORIES = ('STATIONERY', 'PRINTING', 'LOAN_FORMS', 'REFRESHMENTS', 'OTHER')
LOAN_STATUSES = ('active', 'completed', 'defaulted')

ALL_PERMISSIONS = (
    'VIEW_DASHBOARD', 'VIEW_PASSBOOK', 'VIEW_LOANS', 'VIEW_MEMBERS', 'VIEW_REPORTS',
    'VIEW_SETTINGS', 'VIEW_USERS', 'MANAGE_FINANCE', 'MANAGE_USERS', 'MANAGE_SYSTEM',
    'VIEW_ACTIVITY_LOGS', 'MANAGE_ROLES',
)
DEFAULT_ROLE_PERMISSIONS = {
    'CLIENT_ADMIN': list(ALL_PERMISSIONS),
    'TREASURER': ['VIEW_DASHBOARD', 'VIEW_PASSBOOK', 'VIEW_LOANS', 'VIEW_MEMBERS', 'VIEW_REPORTS',
                  'MANAGE_FINANCE'],
    'MEMBER': ['VIEW_DASHBOARD'],
}

LedgerRows = namedtuple('LedgerRows', 'members passbook loans loan_requests expenses admin_fund overrides')
LoanCheck = namedtuple('LoanCheck', 'is_valid max_eligible errors')


# Helpers
def add_months(day, months):
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _today(on=None):
    if on is None:
        return date.today()
    if isinstance(on, datetime):
        return on.date()
    if isinstance(on, date):
        return on
    try:
        return date.fromisoformat(str(on))
    except ValueError:
        raise ValidationError(f'Invalid date: {on}')


def _amount(value, field='amount', allow_zero=False):
    try:
        amount = round(float(value or 0), 2)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f'{field} must be greater than zero')
    return amount


def _payment_mode(mode):
    mode = (mode or 'CASH').upper()
    if mode not in PAYMENT_MODES:
        raise ValidationError(f'Unsupported payment mode: {mode}')
    return mode


def _config(key, default):
    return current_app.config.get(key, default)


# Society column -> (config key, fallback) for the financial settings
SETTING_DEFAULTS = {
    'currency': ('CURRENCY', 'INR'),
    'interest_rate': ('DEFAULT_INTEREST_RATE', 12.0),
    'loan_limit_percent': ('LOAN_LIMIT_PERCENT', 80.0),
    'fine_amount': ('FINE_AMOUNT', 10.0),
    'grace_period_day': ('GRACE_PERIOD_DAY', 15),
    'maintenance_fee': ('MAINTENANCE_FEE', 200.0),
    'low_cash_threshold': ('LOW_CASH_THRESHOLD', 5000.0),
}


def society_setting(society, attr):
    """A society's own setting, or the platform default when it is unset."""
    value = getattr(society, attr)
    if value is None:
        return _config(*SETTING_DEFAULTS[attr])
    return value


def _get_owned(model, society, object_id, label):
    obj = db.session.get(model, object_id)
    if obj is None or obj.society_id != society.id:
        raise NotFoundError(f'{label} not found')
    return obj


def load_ledger(society_id):
    """Fetch every ledger row of a society for in-memory reconciliation."""
    return LedgerRows(
        members=Member.query.filter_by(society_id=society_id).order_by(Member.id).all(),
        passbook=PassbookEntry.query.filter_by(society_id=society_id).order_by(PassbookEntry.date, PassbookEntry.id).all(),
        loans=Loan.query.filter_by(society_id=society_id).order_by(Loan.start_date, Loan.id).all(),
        loan_requests=LoanRequest.query.filter_by(society_id=society_id).order_by(LoanRequest.requested_date.desc()).all(),
        expenses=ExpenseLedgerEntry.query.filter_by(society_id=society_id).order_by(ExpenseLedgerEntry.date, ExpenseLedgerEntry.id).all(),
        admin_fund=AdminFundTransaction.query.filter_by(society_id=society_id).order_by(AdminFundTransaction.date, AdminFundTransaction.id).all(),
        overrides=MaturityOverride.query.filter_by(society_id=society_id).all(),
    )


# Activity log
def log_activity(society_id, user, action, details=None):
    """Queue an audit row; the caller's commit persists it."""
    entry = ActivityLog(
        society_id=society_id,
        user_id=user.id if user else None,
        user_name=(user.name or user.email) if user else 'System',
        action=action,
        details=details or {},
    )
    if has_request_context():
        entry.ip = request.headers.get('X-Forwarded-For', request.remote_addr)
        entry.user_agent = (request.user_agent.string or '')[:300]
    db.session.add(entry)
    return entry


# Members
def member_limit(society):
    plan = SubscriptionPlan.query.filter_by(code=society.subscription_plan).first()
    return plan.max_members if plan else None


def _monthly_share(value):
    if value is None:
        return None
    return _amount(value, 'monthly_deposit_amount', allow_zero=True)


def add_member(society, name, phone, father_name=None, email=None, address=None, join_date=None,
               monthly_deposit_amount=None, user=None):
    """Register a member and the MEMBER login linked to them."""
    name = (name or '').strip()
    phone = (phone or '').strip()
    if not name or not phone:
        raise ValidationError('Name and phone are required')
    if Member.query.filter_by(society_id=society.id, phone=phone).first():
        raise ValidationError('Phone already exists')

    limit = member_limit(society)
    if limit is not None and Member.query.filter_by(society_id=society.id).count() >= limit:
        raise SubscriptionError(
            f'Member limit of {limit} reached for the {society.subscription_plan} plan. Please upgrade.'
        )

    member = Member(
        society_id=society.id,
        name=name,
        father_name=father_name,
        phone=phone,
        email=email,
        address=address,
        join_date=_today(join_date),
        status='active',
        total_deposits=0.0,
        has_paid_maintenance=False,
        monthly_deposit_amount=_monthly_share(monthly_deposit_amount),
    )
    db.session.add(member)
    db.session.flush()

    login_email = (email or '').strip().lower()
    if not login_email or User.query.filter_by(email=login_email).first():
        login_email = f'{phone}@society{society.id}.members'
    db.session.add(User(
        email=login_email,
        name=name,
        password_hash=hash_password(phone),
        role='MEMBER',
        status='ACTIVE',
        society_id=society.id,
        linked_member_id=member.id,
        phone=phone,
    ))
    log_activity(society.id, user, 'MEMBER_ADDED', {'target': name, 'after': phone})
    db.session.commit()
    logger.info("Society %s: member %s added (%s)", society.id, member.id, name)
    return member


def update_member(society, member_id, updates, user=None):
    member = _get_owned(Member, society, member_id, 'Member')
    if 'phone' in updates and updates['phone'] and updates['phone'] != member.phone:
        if Member.query.filter_by(society_id=society.id, phone=updates['phone']).first():
            raise ValidationError('Phone already exists')
        member.phone = updates['phone']
    for field in ('name', 'father_name', 'email', 'address'):
        if updates.get(field) is not None:
            setattr(member, field, updates[field])
    if updates.get('status') is not None:
        if updates['status'] not in ('active', 'inactive'):
            raise ValidationError('Status must be active or inactive')
        member.status = updates['status']
    if updates.get('join_date') is not None:
        member.join_date = _today(updates['join_date'])
    if updates.get('monthly_deposit_amount') is not None:
        member.monthly_deposit_amount = _monthly_share(updates['monthly_deposit_amount'])
    log_activity(society.id, user, 'MEMBER_UPDATED', {'target': member.name})
    db.session.commit()
    return member


# Passbook
def _passbook_type(deposit, installment, interest, fine, withdrawal):
    if withdrawal:
        return 'WITHDRAWAL'
    kinds = [k for k, v in (('DEPOSIT', deposit), ('INSTALLMENT', installment),
                            ('INTEREST', interest), ('FINE', fine)) if v]
    return kinds[0] if len(kinds) == 1 else 'MIXED'


def active_loan_for(society_id, member_id):
    return Loan.query.filter_by(society_id=society_id, member_id=member_id, status='active') \
        .order_by(Loan.start_date).first()


def post_passbook_entry(society, member_id, deposit=0, installment=0, interest=0, fine=0, withdrawal=0,
                        payment_mode='CASH', on=None, description=None, user=None):
    """Record a member payment (or withdrawal) and apply it to deposits and loan."""
    member = _get_owned(Member, society, member_id, 'Member')
    deposit = _amount(deposit, 'deposit', allow_zero=True)
    installment = _amount(installment, 'installment', allow_zero=True)
    interest = _amount(interest, 'interest', allow_zero=True)
    fine = _amount(fine, 'fine', allow_zero=True)
    withdrawal = _amount(withdrawal, 'withdrawal', allow_zero=True)
    credits = deposit + installment + interest + fine

    if credits == 0 and withdrawal == 0:
        raise ValidationError('Enter at least one amount')
    if withdrawal and credits:
        raise ValidationError('A withdrawal cannot be combined with payments')
    if withdrawal > (member.total_deposits or 0):
        raise ValidationError('Withdrawal exceeds the member deposit balance')

    loan = None
    if installment:
        loan = active_loan_for(society.id, member.id)
        if loan is None:
            raise ValidationError('Member has no active loan for this installment')

    entry_type = _passbook_type(deposit, installment, interest, fine, withdrawal)
    member.total_deposits = round((member.total_deposits or 0) + deposit - withdrawal, 2)
    entry = PassbookEntry(
        society_id=society.id,
        member_id=member.id,
        loan_id=loan.id if loan else None,
        date=_today(on),
        type=entry_type,
        amount=withdrawal or credits,
        deposit_amount=deposit,
        installment_amount=installment,
        interest_amount=interest,
        fine_amount=fine,
        withdrawal_amount=withdrawal,
        payment_mode=_payment_mode(payment_mode),
        description=description,
        balance=member.total_deposits,
    )
    db.session.add(entry)

    if loan is not None:
        new_balance = round(loan.remaining_balance - installment, 2)
        loan.remaining_balance = max(0.0, new_balance)
        if new_balance <= 0:
            loan.status = 'completed'
            loan.next_due_date = None
        else:
            loan.next_due_date = add_months(loan.next_due_date or entry.date, 1)

    log_activity(society.id, user, 'PASSBOOK_ENTRY', {
        'target': member.name, 'after': f'{entry_type} {entry.amount:.2f} {entry.payment_mode}',
    })
    db.session.commit()
    logger.info("Society %s: passbook %s %.2f posted for member %s", society.id, entry_type, entry.amount, member.id)
    return entry


def recompute_member_balances(society_id, member_id):
    entries = PassbookEntry.query.filter_by(society_id=society_id, member_id=member_id).all()
    for entry, balance in ledger.passbook_running_balances(entries):
        entry.balance = balance


def delete_passbook_entry(society, entry_id, user=None):
    entry = _get_owned(PassbookEntry, society, entry_id, 'Passbook entry')
    member = db.session.get(Member, entry.member_id)
    member.total_deposits = round((member.total_deposits or 0) - (entry.deposit_amount or 0)
                                  + (entry.withdrawal_amount or 0), 2)

    if entry.installment_amount and entry.loan_id:
        loan = db.session.get(Loan, entry.loan_id)
        if loan is not None:
            loan.remaining_balance = min(loan.amount, round(loan.remaining_balance + entry.installment_amount, 2))
            if loan.status == 'completed' and loan.remaining_balance > 0:
                loan.status = 'active'
                loan.next_due_date = entry.date

    db.session.delete(entry)
    db.session.flush()
    recompute_member_balances(society.id, member.id)
    log_activity(society.id, user, 'PASSBOOK_ENTRY_DELETED', {'target': member.name, 'before': entry.amount})
    db.session.commit()
    logger.info("Society %s: passbook entry %s deleted", society.id, entry_id)


# Loans
def validate_loan_request(society, member, amount, override=False):
    """Check a loan amount against the society lending rules.

    Limits: ``loan_limit_percent`` of the member's deposits, a single active
    loan per member and the configured minimum. ``override`` waives them all.
    """
    limit_percent = society_setting(society, 'loan_limit_percent')
    max_eligible = round((member.total_deposits or 0) * limit_percent / 100, 2)
    if override:
        return LoanCheck(True, max_eligible, [])

    errors = []
    min_amount = _config('MIN_LOAN_AMOUNT', 1000.0)
    if amount < min_amount:
        errors.append(f'Minimum loan amount is {min_amount:.2f}')
    if amount > max_eligible:
        errors.append(f'Amount exceeds {limit_percent:g}% of deposits (max {max_eligible:.2f})')
    if active_loan_for(society.id, member.id) is not None:
        errors.append('Member already has an active loan')
    return LoanCheck(not errors, max_eligible, errors)


def request_loan(society, member_id, amount, purpose=None, override=False, user=None):
    member = _get_owned(Member, society, member_id, 'Member')
    amount = _amount(amount)
    check = validate_loan_request(society, member, amount, override)
    if not check.is_valid:
        raise ValidationError('; '.join(check.errors), payload={'max_eligible': check.max_eligible})

    loan_request = LoanRequest(
        society_id=society.id,
        member_id=member.id,
        member_name=member.name,
        amount=amount,
        purpose=purpose or 'Loan Request',
        status='pending',
        total_deposits=member.total_deposits or 0,
    )
    db.session.add(loan_request)
    log_activity(society.id, user, 'LOAN_REQUESTED', {'target': member.name, 'after': amount})
    db.session.commit()
    logger.info("Society %s: loan request %.2f for member %s", society.id, amount, member.id)
    return loan_request


def approve_loan(society, request_id, approved_amount=None, override=False, payment_mode='CASH', on=None, user=None):
    loan_request = _get_owned(LoanRequest, society, request_id, 'Loan request')
    if loan_request.status != 'pending':
        raise ValidationError(f'Loan request is already {loan_request.status}')
    member = _get_owned(Member, society, loan_request.member_id, 'Member')
    amount = _amount(approved_amount if approved_amount is not None else loan_request.amount)
    check = validate_loan_request(society, member, amount, override)
    if not check.is_valid:
        raise ValidationError('; '.join(check.errors), payload={'max_eligible': check.max_eligible})

    start = _today(on)
    tenure = _config('DEFAULT_LOAN_TENURE', 12)
    loan = Loan(
        society_id=society.id,
        member_id=member.id,
        loan_request_id=loan_request.id,
        amount=amount,
        interest_rate=society_setting(society, 'interest_rate'),
        tenure=tenure,
        start_date=start,
        maturity_date=start + timedelta(days=365),
        next_due_date=add_months(start, 1),
        status='active',
        emi_amount=round(amount / tenure, 2),
        remaining_balance=amount,
        payment_mode=_payment_mode(payment_mode),
        purpose=loan_request.purpose,
        override_enabled=bool(override),
    )
    db.session.add(loan)
    loan_request.status = 'approved'
    loan_request.approved_amount = amount
    loan_request.approved_date = start
    log_activity(society.id, user, 'LOAN_APPROVED', {
        'target': member.name, 'after': amount, 'override': bool(override),
    })
    db.session.commit()
    logger.info("Society %s: loan %s of %.2f approved for member %s", society.id, loan.id, amount, member.id)
    return loan


def reject_loan(society, request_id, reason=None, user=None):
    loan_request = _get_owned(LoanRequest, society, request_id, 'Loan request')
    if loan_request.status != 'pending':
        raise ValidationError(f'Loan request is already {loan_request.status}')
    loan_request.status = 'rejected'
    loan_request.rejection_reason = reason
    log_activity(society.id, user, 'LOAN_REJECTED', {'target': loan_request.member_name, 'after': reason})
    db.session.commit()
    return loan_request


def update_loan(society, loan_id, updates, user=None):
    loan = _get_owned(Loan, society, loan_id, 'Loan')
    before = loan.to_dict()
    if updates.get('status') is not None:
        if updates['status'] not in LOAN_STATUSES:
            raise ValidationError('Invalid loan status')
        loan.status = updates['status']
    if updates.get('interest_rate') is not None:
        loan.interest_rate = _amount(updates['interest_rate'], 'interest_rate', allow_zero=True)
    if updates.get('tenure') is not None:
        tenure = int(updates['tenure'])
        if tenure <= 0:
            raise ValidationError('tenure must be greater than zero')
        loan.tenure = tenure
        if updates.get('emi_amount') is None:
            loan.emi_amount = round(loan.amount / tenure, 2)
    if updates.get('emi_amount') is not None:
        loan.emi_amount = _amount(updates['emi_amount'], 'emi_amount')
    if updates.get('remaining_balance') is not None:
        loan.remaining_balance = _amount(updates['remaining_balance'], 'remaining_balance', allow_zero=True)
        if loan.remaining_balance == 0 and loan.status == 'active':
            loan.status = 'completed'
    if updates.get('next_due_date') is not None:
        loan.next_due_date = _today(updates['next_due_date'])
    for field in ('purpose',):
        if updates.get(field) is not None:
            setattr(loan, field, updates[field])
    if updates.get('payment_mode') is not None:
        loan.payment_mode = _payment_mode(updates['payment_mode'])
    log_activity(society.id, user, 'LOAN_UPDATED', {'target': loan.id, 'before': before['remaining_balance'],
                                                    'after': loan.remaining_balance})
    db.session.commit()
    return loan


def delete_loan(society, loan_id, user=None):
    loan = _get_owned(Loan, society, loan_id, 'Loan')
    PassbookEntry.query.filter_by(society_id=society.id, loan_id=loan.id).update({'loan_id': None})
    db.session.delete(loan)
    log_activity(society.id, user, 'LOAN_DELETED', {'target': loan_id, 'before': loan.amount})
    db.session.commit()
    logger.info("Society %s: loan %s deleted", society.id, loan_id)


def monthly_interest_due(loan, monthly_rate=0.01):
    """Interest a member owes this month on the remaining principal."""
    if loan.status != 'active':
        return 0.0
    return round((loan.remaining_balance or 0) * monthly_rate, 2)


# Admin fund
def add_admin_transaction(society, amount, txn_type, description, payment_mode='CASH', on=None, force=False,
                          user=None):
    amount = _amount(amount)
    txn_type = (txn_type or '').upper()
    if txn_type not in ('INJECT', 'WITHDRAW'):
        raise ValidationError('Type must be INJECT or WITHDRAW')
    if not (description or '').strip():
        raise ValidationError('Description is required')

    rows = load_ledger(society.id)
    if txn_type == 'WITHDRAW' and not force:
        available = ledger.society_cash_in_hand(rows.passbook, rows.expenses, rows.admin_fund, rows.loans)
        if amount > available:
            raise ValidationError(
                f'Withdrawal of {amount:.2f} exceeds available society funds of {available:.2f}',
                payload={'requires_force': True, 'available': available},
            )

    txn = AdminFundTransaction(
        society_id=society.id,
        date=_today(on),
        type=txn_type,
        amount=amount,
        description=description.strip(),
        payment_mode=_payment_mode(payment_mode),
    )
    db.session.add(txn)
    db.session.flush()
    recompute_admin_fund_balances(society.id)
    log_activity(society.id, user, f'ADMIN_FUND_{txn_type}', {'after': amount, 'forced': bool(force)})
    db.session.commit()
    logger.info("Society %s: admin fund %s %.2f", society.id, txn_type, amount)
    return txn


def recompute_admin_fund_balances(society_id):
    entries = AdminFundTransaction.query.filter_by(society_id=society_id).all()
    for entry, balance in ledger.admin_fund_running_balances(entries):
        entry.running_balance = balance


def delete_admin_transaction(society, txn_id, user=None):
    txn = _get_owned(AdminFundTransaction, society, txn_id, 'Admin fund transaction')
    db.session.delete(txn)
    db.session.flush()
    recompute_admin_fund_balances(society.id)
    log_activity(society.id, user, 'ADMIN_FUND_DELETED', {'before': txn.amount})
    db.session.commit()
    logger.info("Society %s: admin fund transaction %s deleted", society.id, txn_id)


# Expense ledger
def collect_maintenance_fee(society, member_id, amount=None, payment_mode='CASH', on=None, user=None):
    member = _get_owned(Member, society, member_id, 'Member')
    if member.has_paid_maintenance:
        raise ValidationError('Maintenance fee already collected from this member')
    fee = _amount(amount if amount is not None else society_setting(society, 'maintenance_fee'))
    entry = ExpenseLedgerEntry(
        society_id=society.id,
        date=_today(on),
        description=f'Maintenance fee from {member.name}',
        member_id=member.id,
        member_name=member.name,
        category='MAINTENANCE_FEE',
        type='INCOME',
        amount=fee,
        payment_mode=_payment_mode(payment_mode),
    )
    db.session.add(entry)
    member.has_paid_maintenance = True
    log_activity(society.id, user, 'MAINTENANCE_FEE', {'target': member.name, 'after': fee})
    db.session.commit()
    return entry


def add_expense(society, amount, category, description, payment_mode='CASH', on=None, user=None):
    category = (category or 'OTHER').upper()
    if category not in EXPENSE_CATEGORIES:
        raise ValidationError(f'Unknown expense category: {category}')
    if not (description or '').strip():
        raise ValidationError('Description is required')
    entry = ExpenseLedgerEntry(
        society_id=society.id,
        date=_today(on),
        description=description.strip(),
        category=category,
        type='EXPENSE',
        amount=_amount(amount),
        payment_mode=_payment_mode(payment_mode),
    )
    db.session.add(entry)
    log_activity(society.id, user, 'EXPENSE_ADDED', {'target': category, 'after': entry.amount})
    db.session.commit()
    return entry


def delete_expense_entry(society, entry_id, user=None):
    entry = _get_owned(ExpenseLedgerEntry, society, entry_id, 'Expense entry')
    if entry.category == 'MAINTENANCE_FEE' and entry.member_id:
        others = ExpenseLedgerEntry.query.filter(
            ExpenseLedgerEntry.society_id == society.id,
            ExpenseLedgerEntry.member_id == entry.member_id,
            ExpenseLedgerEntry.category == 'MAINTENANCE_FEE',
            ExpenseLedgerEntry.id != entry.id,
        ).count()
        if not others:
            member = db.session.get(Member, entry.member_id)
            if member is not None:
                member.has_paid_maintenance = False
    db.session.delete(entry)
    log_activity(society.id, user, 'EXPENSE_DELETED', {'target': entry.category, 'before': entry.amount})
    db.session.commit()


# Maturity
def set_maturity_override(society, member_id, manual_interest, user=None):
    member = _get_owned(Member, society, member_id, 'Member')
    manual_interest = _amount(manual_interest, 'manual_interest', allow_zero=True)
    override = MaturityOverride.query.filter_by(society_id=society.id, member_id=member.id).first()
    if override is None:
        override = MaturityOverride(society_id=society.id, member_id=member.id)
        db.session.add(override)
    override.manual_interest = manual_interest
    override.is_override = True
    log_activity(society.id, user, 'MATURITY_OVERRIDE', {'target': member.name, 'after': manual_interest})
    db.session.commit()
    return override


def clear_maturity_override(society, member_id, user=None):
    member = _get_owned(Member, society, member_id, 'Member')
    MaturityOverride.query.filter_by(society_id=society.id, member_id=member.id).delete()
    log_activity(society.id, user, 'MATURITY_OVERRIDE_CLEARED', {'target': member.name})
    db.session.commit()


# Users and roles
def ensure_role_permissions(society_id):
    """Seed the default permission sets for a society if missing."""
    existing = {rp.role for rp in RolePermission.query.filter_by(society_id=society_id).all()}
    for role, permissions in DEFAULT_ROLE_PERMISSIONS.items():
        if role not in existing:
            db.session.add(RolePermission(society_id=society_id, role=role, permissions=list(permissions)))


def role_permissions(society_id):
    rows = {rp.role: list(rp.permissions or []) for rp in RolePermission.query.filter_by(society_id=society_id).all()}
    return {role: rows.get(role, list(perms)) for role, perms in DEFAULT_ROLE_PERMISSIONS.items()}


def has_permission(user, permission):
    if user is None or user.status != 'ACTIVE':
        return False
    if user.role == 'SUPER_ADMIN':
        return True
    return permission in role_permissions(user.society_id).get(user.role, [])


def toggle_permission(society, role, permission, user=None):
    if role not in DEFAULT_ROLE_PERMISSIONS:
        raise ValidationError(f'Unknown role: {role}')
    if permission not in ALL_PERMISSIONS:
        raise ValidationError(f'Unknown permission: {permission}')
    if role == 'CLIENT_ADMIN' and permission == 'MANAGE_ROLES':
        raise ValidationError('Client admins always keep role management')

    row = RolePermission.query.filter_by(society_id=society.id, role=role).first()
    if row is None:
        row = RolePermission(society_id=society.id, role=role, permissions=list(DEFAULT_ROLE_PERMISSIONS[role]))
        db.session.add(row)
    permissions = list(row.permissions or [])
    if permission in permissions:
        permissions.remove(permission)
    else:
        permissions.append(permission)
    # Reassign so the JSON column is flagged dirty
    row.permissions = permissions
    log_activity(society.id, user, 'PERMISSION_TOGGLED', {'target': role, 'after': permission})
    db.session.commit()
    return permissions


def _check_role(role):
    if role not in CLIENT_ROLES:
        raise ValidationError(f'Role must be one of {", ".join(CLIENT_ROLES)}')


def add_user(society, name, email, password, role, phone=None, linked_member_id=None, user=None):
    email = (email or '').strip().lower()
    if not email or not password:
        raise ValidationError('Email and password are required')
    _check_role(role)
    if User.query.filter_by(email=email).first():
        raise ValidationError('A user with this email already exists')
    if linked_member_id is not None:
        _get_owned(Member, society, linked_member_id, 'Member')
    new_user = User(
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=role,
        status='ACTIVE',
        society_id=society.id,
        linked_member_id=linked_member_id,
        phone=phone,
    )
    db.session.add(new_user)
    log_activity(society.id, user, 'USER_ADDED', {'target': email, 'after': role})
    db.session.commit()
    return new_user


def update_user(society, user_id, updates, user=None):
    target = _get_owned(User, society, user_id, 'User')
    if updates.get('email'):
        email = updates['email'].strip().lower()
        if email != target.email and User.query.filter_by(email=email).first():
            raise ValidationError('A user with this email already exists')
        target.email = email
    if updates.get('role'):
        _check_role(updates['role'])
        target.role = updates['role']
    for field in ('name', 'phone'):
        if updates.get(field) is not None:
            setattr(target, field, updates[field])
    if updates.get('password'):
        target.password_hash = hash_password(updates['password'])
    log_activity(society.id, user, 'USER_UPDATED', {'target': target.email})
    db.session.commit()
    return target


def set_user_status(society, user_id, status, user=None):
    if status not in ('ACTIVE', 'BLOCKED'):
        raise ValidationError('Status must be ACTIVE or BLOCKED')
    target = _get_owned(User, society, user_id, 'User')
    if user is not None and target.id == user.id and status == 'BLOCKED':
        raise ValidationError('You cannot block your own account')
    target.status = status
    log_activity(society.id, user, f'USER_{status}', {'target': target.email})
    db.session.commit()
    return target


def link_member(society, user_id, member_id, user=None):
    target = _get_owned(User, society, user_id, 'User')
    member = _get_owned(Member, society, member_id, 'Member')
    target.linked_member_id = member.id
    log_activity(society.id, user, 'USER_LINKED', {'target': target.email, 'after': member.name})
    db.session.commit()
    return target


def unlink_member(society, user_id, user=None):
    target = _get_owned(User, society, user_id, 'User')
    target.linked_member_id = None
    log_activity(society.id, user, 'USER_UNLINKED', {'target': target.email})
    db.session.commit()
    return target


def delete_user(society, user_id, user=None):
    target = _get_owned(User, society, user_id, 'User')
    if user is not None and target.id == user.id:
        raise ValidationError('You cannot delete your own account')
    db.session.delete(target)
    log_activity(society.id, user, 'USER_DELETED', {'target': target.email})
    db.session.commit()


# Settings
SETTINGS_FIELDS = {
    'society_name': 'name',
    'registration_number': 'registration_number',
    'society_address': 'address',
    'contact_email': 'email',
    'currency': 'currency',
    'interest_rate': 'interest_rate',
    'loan_limit_percent': 'loan_limit_percent',
    'fine_amount': 'fine_amount',
    'grace_period_day': 'grace_period_day',
    'maintenance_fee': 'maintenance_fee',
    'low_cash_threshold': 'low_cash_threshold',
}
# setting -> (type, minimum, maximum)
NUMERIC_SETTINGS = {
    'interest_rate': (float, 0, 100),
    'loan_limit_percent': (float, 0, 100),
    'fine_amount': (float, 0, None),
    'maintenance_fee': (float, 0, None),
    'low_cash_threshold': (float, 0, None),
    'grace_period_day': (int, 1, 31),
}
REQUIRED_SETTINGS = ('society_name', 'contact_email', 'currency')


def _setting_number(key, value):
    cast, low, high = NUMERIC_SETTINGS[key]
    if isinstance(value, bool):
        raise ValidationError(f'{key} must be a number')
    try:
        number = cast(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{key} must be a number')
    if high is not None and not low <= number <= high:
        raise ValidationError(f'{key} must be between {low} and {high}')
    if number < low:
        raise ValidationError(f'{key} cannot be negative')
    return number


def clean_settings(values):
    """Check settings values and convert them to the column types."""
    unknown = set(values) - set(SETTINGS_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown settings: {", ".join(sorted(unknown))}')

    cleaned = {}
    for key, value in values.items():
        if key in NUMERIC_SETTINGS:
            cleaned[key] = _setting_number(key, value)
        elif value is None:
            if key in REQUIRED_SETTINGS:
                raise ValidationError(f'{key} cannot be empty')
            cleaned[key] = None
        elif not isinstance(value, str):
            raise ValidationError(f'{key} must be text')
        elif key in REQUIRED_SETTINGS and not value.strip():
            raise ValidationError(f'{key} cannot be empty')
        else:
            cleaned[key] = value.strip()
    return cleaned


def update_settings(society, values, user=None):
    values = clean_settings(values)
    if 'contact_email' in values:
        clash = SocietyAccount.query.filter(SocietyAccount.email == values['contact_email'],
                                            SocietyAccount.id != society.id).first()
        if clash:
            raise ValidationError('Another society already uses this email')

    before = society.settings_dict()
    for key, value in values.items():
        setattr(society, SETTINGS_FIELDS[key], value)
    log_activity(society.id, user, 'SETTINGS_UPDATED', {
        'before': {k: before[k] for k in values}, 'after': values,
    })
    db.session.commit()
    return society.settings_dict()


def reset_settings(society, user=None):
    """Restore the financial settings to the platform defaults."""
    for attr, (key, default) in SETTING_DEFAULTS.items():
        setattr(society, attr, _config(key, default))
    log_activity(society.id, user, 'SETTINGS_RESET')
    db.session.commit()
    return society.settings_dict()
