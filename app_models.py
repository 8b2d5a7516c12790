from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value is not None else None


# Database Models
class SocietyAccount(db.Model):
    """A tenant: one cooperative society and its subscription and settings."""
    __tablename__ = 'society_accounts'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    admin_name = db.Column(db.String(200), nullable=True)
    email = db.Column(db.String(120), nullable=False, unique=True)
    phone = db.Column(db.String(30), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    registration_number = db.Column(db.String(100), nullable=True)
    currency = db.Column(db.String(10), default='INR')
    is_active = db.Column(db.Boolean, default=True)
    status = db.Column(db.String(20), default='ACTIVE')  # ACTIVE, LOCKED, EXPIRED
    subscription_plan = db.Column(db.String(20), default='TRIAL')  # TRIAL, BASIC, PRO, ENTERPRISE
    subscription_status = db.Column(db.String(20), default='TRIAL')  # TRIAL, ACTIVE, EXPIRED
    trial_ends_at = db.Column(db.DateTime, nullable=True)
    subscription_ends_at = db.Column(db.DateTime, nullable=True)

    # Financial configuration
    interest_rate = db.Column(db.Float, default=12.0)
    loan_limit_percent = db.Column(db.Float, default=80.0)
    fine_amount = db.Column(db.Float, default=10.0)
    grace_period_day = db.Column(db.Integer, default=15)
    maintenance_fee = db.Column(db.Float, default=200.0)
    low_cash_threshold = db.Column(db.Float, default=5000.0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def current_period_end(self):
        if self.subscription_status == 'TRIAL':
            return self.trial_ends_at
        return self.subscription_ends_at

    def days_remaining(self, now=None):
        """Calculate days remaining in the current trial or paid period"""
        now = now or datetime.utcnow()
        period_end = self.current_period_end()
        if period_end is None:
            return 0
        return max(0, (period_end - now).days)

    def is_subscription_expired(self, now=None):
        """Check if the trial or paid period has run out"""
        if self.subscription_status == 'EXPIRED':
            return True
        now = now or datetime.utcnow()
        period_end = self.current_period_end()
        return period_end is not None and period_end <= now

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'admin_name': self.admin_name,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'status': self.status,
            'is_active': self.is_active,
            'subscription_plan': self.subscription_plan,
            'subscription_status': self.subscription_status,
            'trial_ends_at': _iso(self.trial_ends_at),
            'subscription_ends_at': _iso(self.subscription_ends_at),
            'created_at': _iso(self.created_at),
        }

    def settings_dict(self):
        return {
            'society_name': self.name,
            'registration_number': self.registration_number,
            'society_address': self.address,
            'contact_email': self.email,
            'currency': self.currency,
            'interest_rate': self.interest_rate,
            'loan_limit_percent': self.loan_limit_percent,
            'fine_amount': self.fine_amount,
            'grace_period_day': self.grace_period_day,
            'maintenance_fee': self.maintenance_fee,
            'low_cash_threshold': self.low_cash_threshold,
        }


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=True)
    password_hash = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='MEMBER')  # SUPER_ADMIN, CLIENT_ADMIN, TREASURER, MEMBER
    status = db.Column(db.String(20), nullable=False, default='ACTIVE')  # ACTIVE, BLOCKED
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=True)
    linked_member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
    phone = db.Column(db.String(30), nullable=True)
    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    society = db.relationship('SocietyAccount', backref='users')

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'status': self.status,
            'society_id': self.society_id,
            'linked_member_id': self.linked_member_id,
            'phone': self.phone,
            'last_login_at': _iso(self.last_login_at),
            'created_at': _iso(self.created_at),
        }


class Member(db.Model):
    __tablename__ = 'members'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    father_name = db.Column(db.String(200), nullable=True)
    phone = db.Column(db.String(30), nullable=False)
    email = db.Column(db.String(120), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    join_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), default='active')  # active, inactive
    total_deposits = db.Column(db.Float, default=0.0)
    has_paid_maintenance = db.Column(db.Boolean, default=False)
    monthly_deposit_amount = db.Column(db.Float, nullable=True)  # recurring share used for maturity
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    society = db.relationship('SocietyAccount', backref='members')

    # Phone numbers identify members within one society
    __table_args__ = (db.UniqueConstraint('society_id', 'phone', name='unique_society_member_phone'),)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'father_name': self.father_name,
            'phone': self.phone,
            'email': self.email,
            'address': self.address,
            'join_date': _iso(self.join_date),
            'status': self.status,
            'total_deposits': self.total_deposits or 0.0,
            'has_paid_maintenance': bool(self.has_paid_maintenance),
            'monthly_deposit_amount': self.monthly_deposit_amount,
        }


class PassbookEntry(db.Model):
    __tablename__ = 'passbook_entries'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False)
    loan_id = db.Column(db.Integer, db.ForeignKey('loans.id'), nullable=True)
    date = db.Column(db.Date, nullable=False)
    type = db.Column(db.String(20), nullable=False)  # DEPOSIT, INSTALLMENT, INTEREST, FINE, MIXED, WITHDRAWAL
    amount = db.Column(db.Float, nullable=False)
    deposit_amount = db.Column(db.Float, default=0.0)
    installment_amount = db.Column(db.Float, default=0.0)
    interest_amount = db.Column(db.Float, default=0.0)
    fine_amount = db.Column(db.Float, default=0.0)
    withdrawal_amount = db.Column(db.Float, default=0.0)
    payment_mode = db.Column(db.String(20), default='CASH')  # CASH, BANK, UPI
    description = db.Column(db.String(400), nullable=True)
    balance = db.Column(db.Float, default=0.0)  # member deposit balance after this entry
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    member = db.relationship('Member', backref='passbook_entries')

    def to_dict(self):
        return {
            'id': self.id,
            'member_id': self.member_id,
            'loan_id': self.loan_id,
            'date': _iso(self.date),
            'type': self.type,
            'amount': self.amount,
            'deposit_amount': self.deposit_amount or 0.0,
            'installment_amount': self.installment_amount or 0.0,
            'interest_amount': self.interest_amount or 0.0,
            'fine_amount': self.fine_amount or 0.0,
            'withdrawal_amount': self.withdrawal_amount or 0.0,
            'payment_mode': self.payment_mode,
            'description': self.description,
            'balance': self.balance,
        }


class Loan(db.Model):
    __tablename__ = 'loans'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False)
    loan_request_id = db.Column(db.Integer, db.ForeignKey('loan_requests.id'), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    interest_rate = db.Column(db.Float, nullable=False)
    tenure = db.Column(db.Integer, nullable=False)  # months
    start_date = db.Column(db.Date, nullable=False)
    maturity_date = db.Column(db.Date, nullable=False)
    next_due_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), default='active')  # active, completed, defaulted
    emi_amount = db.Column(db.Float, nullable=False)
    remaining_balance = db.Column(db.Float, nullable=False)
    payment_mode = db.Column(db.String(20), default='CASH')
    purpose = db.Column(db.String(400), nullable=True)
    override_enabled = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    member = db.relationship('Member', backref='loans')

    def to_dict(self):
        return {
            'id': self.id,
            'member_id': self.member_id,
            'loan_request_id': self.loan_request_id,
            'amount': self.amount,
            'interest_rate': self.interest_rate,
            'tenure': self.tenure,
            'start_date': _iso(self.start_date),
            'maturity_date': _iso(self.maturity_date),
            'next_due_date': _iso(self.next_due_date),
            'status': self.status,
            'emi_amount': self.emi_amount,
            'remaining_balance': self.remaining_balance,
            'payment_mode': self.payment_mode,
            'purpose': self.purpose,
        }


class LoanRequest(db.Model):
    __tablename__ = 'loan_requests'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False)
    member_name = db.Column(db.String(200), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    purpose = db.Column(db.String(400), nullable=True)
    requested_date = db.Column(db.DateTime, default=datetime.utcnow)
    status = db.Column(db.String(20), default='pending')  # pending, approved, rejected
    total_deposits = db.Column(db.Float, default=0.0)  # member deposits when requested
    approved_amount = db.Column(db.Float, nullable=True)
    approved_date = db.Column(db.Date, nullable=True)
    rejection_reason = db.Column(db.String(400), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'member_id': self.member_id,
            'member_name': self.member_name,
            'amount': self.amount,
            'purpose': self.purpose,
            'requested_date': _iso(self.requested_date),
            'status': self.status,
            'total_deposits': self.total_deposits,
            'approved_amount': self.approved_amount,
            'approved_date': _iso(self.approved_date),
            'rejection_reason': self.rejection_reason,
        }


class ExpenseLedgerEntry(db.Model):
    __tablename__ = 'expense_ledger'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    description = db.Column(db.String(400), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
    member_name = db.Column(db.String(200), nullable=True)
    category = db.Column(db.String(30), nullable=False)  # MAINTENANCE_FEE, STATIONERY, PRINTING, LOAN_FORMS, REFRESHMENTS, OTHER
    type = db.Column(db.String(10), nullable=False)  # INCOME, EXPENSE
    amount = db.Column(db.Float, nullable=False)
    payment_mode = db.Column(db.String(20), default='CASH')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'date': _iso(self.date),
            'description': self.description,
            'member_id': self.member_id,
            'member_name': self.member_name,
            'category': self.category,
            'type': self.type,
            'amount': self.amount,
            'payment_mode': self.payment_mode,
        }


class AdminFundTransaction(db.Model):
    __tablename__ = 'admin_fund_ledger'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    type = db.Column(db.String(10), nullable=False)  # INJECT, WITHDRAW
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.String(400), nullable=False)
    payment_mode = db.Column(db.String(20), default='CASH')
    running_balance = db.Column(db.Float, default=0.0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'date': _iso(self.date),
            'type': self.type,
            'amount': self.amount,
            'description': self.description,
            'payment_mode': self.payment_mode,
            'running_balance': self.running_balance,
        }


class MaturityOverride(db.Model):
    __tablename__ = 'maturity_overrides'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False)
    manual_interest = db.Column(db.Float, default=0.0)
    is_override = db.Column(db.Boolean, default=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('society_id', 'member_id', name='unique_society_member_override'),)


class RolePermission(db.Model):
    """Per-society permission set of a role; seeded from the defaults."""
    __tablename__ = 'role_permissions'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    permissions = db.Column(db.JSON, nullable=False, default=list)

    __table_args__ = (db.UniqueConstraint('society_id', 'role', name='unique_society_role'),)


class ActivityLog(db.Model):
    __tablename__ = 'activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    user_name = db.Column(db.String(200), nullable=True)
    action = db.Column(db.String(60), nullable=False)
    details = db.Column(db.JSON, nullable=True)
    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(300), nullable=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_name': self.user_name,
            'action': self.action,
            'details': self.details or {},
            'ip': self.ip,
            'user_agent': self.user_agent,
            'timestamp': _iso(self.timestamp),
        }


class SubscriptionPlan(db.Model):
    __tablename__ = 'subscription_plans'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True)  # TRIAL, BASIC, PRO, ENTERPRISE
    name = db.Column(db.String(100), nullable=False)
    price = db.Column(db.Float, default=0.0)
    duration_days = db.Column(db.Integer, nullable=False)
    max_members = db.Column(db.Integer, nullable=True)  # None means unlimited
    features = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'name': self.name,
            'price': self.price,
            'duration_days': self.duration_days,
            'max_members': self.max_members,
            'features': self.features or [],
            'is_active': self.is_active,
        }


class Subscription(db.Model):
    """History of plan activations for a society."""
    __tablename__ = 'subscriptions'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    plan_code = db.Column(db.String(20), nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=True)
    amount_paid = db.Column(db.Float, default=0.0)
    payment_reference = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    created_by = db.Column(db.String(120), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'plan_code': self.plan_code,
            'start_date': _iso(self.start_date),
            'end_date': _iso(self.end_date),
            'amount_paid': self.amount_paid,
            'payment_reference': self.payment_reference,
            'is_active': self.is_active,
            'created_by': self.created_by,
            'notes': self.notes,
        }


class SubscriptionOrder(db.Model):
    """A manual (offline) plan payment waiting for platform approval."""
    __tablename__ = 'subscription_orders'

    id = db.Column(db.Integer, primary_key=True)
    society_id = db.Column(db.Integer, db.ForeignKey('society_accounts.id'), nullable=False)
    plan_code = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    payment_reference = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), default='pending')  # pending, approved, rejected
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    decided_at = db.Column(db.DateTime, nullable=True)

    society = db.relationship('SocietyAccount', backref='subscription_orders')

    def to_dict(self):
        return {
            'id': self.id,
            'society_id': self.society_id,
            'plan_code': self.plan_code,
            'amount': self.amount,
            'payment_reference': self.payment_reference,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'decided_at': _iso(self.decided_at),
        }


TENANT_LEDGER_MODELS = (
    PassbookEntry,
    Loan,
    LoanRequest,
    ExpenseLedgerEntry,
    AdminFundTransaction,
    MaturityOverride,
)
