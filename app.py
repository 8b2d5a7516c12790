import logging
import os
from datetime import date, datetime
from functools import wraps
from logging.handlers import RotatingFileHandler

from dotenv import load_dotenv
from flask import Flask, Blueprint, Response, current_app, g, jsonify, request, session
from flask_wtf.csrf import CSRFError, CSRFProtect, generate_csrf
from werkzeug.exceptions import HTTPException

import exports
import ledger
import society_services as services
import subscriptions
from app_models import db, User, Member, PassbookEntry, Loan, LoanRequest, ExpenseLedgerEntry, \
    AdminFundTransaction, ActivityLog
from config import get_config
from data_isolation_helpers import get_current_society, get_current_user, get_society_filtered_query, \
    ensure_society_access, validate_tenant_access
from forms import (
    LoginForm, MemberForm, MemberUpdateForm, PassbookEntryForm, LoanRequestForm, LoanApprovalForm,
    LoanRejectForm, LoanUpdateForm, AdminFundForm, MaintenanceFeeForm, ExpenseForm, MaturityOverrideForm,
    UserForm, UserUpdateForm, UserStatusForm, LinkMemberForm, PermissionToggleForm, PaymentOrderForm,
)
from security import check_password, init_security
from society_services import LedgerError, PermissionDenied, SubscriptionError, ValidationError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

csrf = CSRFProtect()

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s] %(message)s'


def configure_logging(app):
    """Send application logs to stderr and, when LOG_FILE is set, to a rotating file"""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(getattr(h, '_saanify', False) for h in root.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler._saanify = True
        root.addHandler(stream_handler)

        log_file = app.config.get('LOG_FILE')
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(formatter)
            file_handler._saanify = True
            root.addHandler(file_handler)


def register_error_handlers(app):
    @app.errorhandler(LedgerError)
    def handle_ledger_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            logger.error("Ledger error: %s", e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return jsonify({'success': False, 'error': e.description}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'success': False, 'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_exception(e):
        db.session.rollback()
        logger.exception("Unhandled exception on %s %s", request.method, request.path)
        return jsonify({'success': False, 'error': 'Internal server error'}), 500


def create_app(config=None):
    app = Flask(__name__, instance_relative_config=True)
    config_class = config if isinstance(config, type) else get_config(config)
    app.config.from_object(config_class)
    if hasattr(config_class, 'init_app'):
        config_class.init_app(app)

    configure_logging(app)

    uri = app.config.get('SQLALCHEMY_DATABASE_URI', '')
    if uri.startswith('sqlite:///'):
        os.makedirs(os.path.dirname(uri[len('sqlite:///'):]) or '.', exist_ok=True)

    db.init_app(app)
    csrf.init_app(app)
    init_security(app)
    register_error_handlers(app)

    from admin_routes import admin_bp
    from health import health_bp
    app.register_blueprint(auth_bp)
    app.register_blueprint(client_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(health_bp)

    with app.app_context():
        db.create_all()
        subscriptions.seed_plans()

    logger.info("Application started with %s", config_class.__name__)
    return app


# Authentication decorators with multi-tenancy
def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'logged_in' not in session:
            return jsonify({'success': False, 'error': 'Authentication required'}), 401

        user = get_current_user()
        if not validate_tenant_access(user):
            session.clear()
            return jsonify({'success': False,
                            'error': 'Access denied or account locked. Please contact support.'}), 403

        g.user = user
        return f(*args, **kwargs)
    return decorated_function


def permission_required(permission):
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if not services.has_permission(g.user, permission):
                raise PermissionDenied(f'Missing permission: {permission}')
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def super_admin_required(f):
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if g.user.role != 'SUPER_ADMIN':
            raise PermissionDenied('Platform administrator access required')
        return f(*args, **kwargs)
    return decorated_function


# Request helpers
def validated(form_class):
    form = form_class()
    if not form.validate_on_submit():
        raise ValidationError('Invalid input', payload={'errors': form.errors})
    return form


def date_arg(name):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f'{name} must be a YYYY-MM-DD date')


def int_arg(name):
    value = request.args.get(name)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f'{name} must be an integer')


def csv_response(content, filename):
    return Response(content, mimetype='text/csv',
                    headers={'Content-Disposition': f'attachment; filename={filename}'})


# Authentication
auth_bp = Blueprint('auth', __name__, url_prefix='/api')


@auth_bp.route('/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


@auth_bp.route('/login', methods=['POST'])
def login():
    form = validated(LoginForm)
    user = User.query.filter_by(email=form.email.data.strip().lower()).first()
    if user is None or not check_password(form.password.data, user.password_hash):
        logger.warning("Failed login for %s", form.email.data)
        return jsonify({'success': False, 'error': 'Invalid email or password'}), 401
    if not validate_tenant_access(user):
        return jsonify({'success': False, 'error': 'Access denied or account locked. Please contact support.'}), 403

    session.clear()
    session.permanent = True
    session['logged_in'] = True
    session['user_id'] = user.id
    session['user_role'] = user.role
    session['society_id'] = user.society_id
    user.last_login_at = datetime.utcnow()
    services.log_activity(user.society_id, user, 'LOGIN')
    db.session.commit()
    logger.info("User %s logged in", user.id)
    return jsonify({'success': True, 'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'success': True})


@auth_bp.route('/me')
@login_required
def me():
    data = {'user': g.user.to_dict()}
    if g.user.society_id:
        data['permissions'] = services.role_permissions(g.user.society_id).get(g.user.role, [])
    return jsonify(data)


# Society (client) API
client_bp = Blueprint('client', __name__, url_prefix='/api/client')

# Reachable after the subscription ran out so the society can renew
SUBSCRIPTION_EXEMPT_ENDPOINTS = {
    'client.subscription_status', 'client.list_plans', 'client.create_payment_order', 'client.data_export',
}


@client_bp.before_request
def enforce_subscription():
    """Block a society's books once its trial or paid period is over"""
    society_id = session.get('society_id')
    if not society_id or request.endpoint in SUBSCRIPTION_EXEMPT_ENDPOINTS:
        return None
    society = get_current_society()
    if society.status == 'EXPIRED' or society.is_subscription_expired():
        raise SubscriptionError('Subscription expired. Please renew to continue.',
                                payload={'subscription': subscriptions.subscription_status(society)})
    return None


def _society_and_rows():
    society = get_current_society()
    return society, services.load_ledger(society.id)


@client_bp.route('/dashboard')
@permission_required('VIEW_DASHBOARD')
def dashboard():
    society, rows = _society_and_rows()
    overview = ledger.dashboard_overview(
        rows.members, rows.passbook, rows.loans, rows.loan_requests, rows.expenses, rows.admin_fund,
        low_cash_threshold=services.society_setting(society, 'low_cash_threshold'),
    )
    overview['society'] = society.to_dict()
    overview['subscription'] = subscriptions.subscription_status(society)
    return jsonify(overview)


@client_bp.route('/liquidity')
@permission_required('VIEW_DASHBOARD')
def liquidity():
    society, rows = _society_and_rows()
    snapshot = ledger.liquidity_snapshot(rows.passbook, rows.expenses, rows.admin_fund, rows.loans)
    return jsonify({
        'liquidity': snapshot._asdict(),
        'cash_in_hand': ledger.society_cash_in_hand(rows.passbook, rows.expenses, rows.admin_fund, rows.loans),
        'admin_fund': ledger.admin_fund_summary(rows.admin_fund),
    })


# Members
@client_bp.route('/members')
@permission_required('VIEW_MEMBERS')
def list_members():
    query = get_society_filtered_query(Member)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    return jsonify({'members': [m.to_dict() for m in query.order_by(Member.name).all()]})


@client_bp.route('/members', methods=['POST'])
@permission_required('MANAGE_FINANCE')
def create_member():
    form = validated(MemberForm)
    member = services.add_member(
        get_current_society(), form.name.data, form.phone.data, father_name=form.father_name.data,
        email=form.email.data, address=form.address.data, join_date=form.join_date.data,
        monthly_deposit_amount=form.monthly_deposit_amount.data, user=g.user,
    )
    return jsonify({'success': True, 'member': member.to_dict()}), 201


@client_bp.route('/members/<int:member_id>')
@permission_required('VIEW_MEMBERS')
def get_member(member_id):
    member = ensure_society_access(db.session.get(Member, member_id))
    society, rows = _society_and_rows()
    summary = next((r for r in ledger.member_summary([member], rows.passbook, rows.loans)), None)
    return jsonify({'member': member.to_dict(), 'summary': summary})


@client_bp.route('/members/<int:member_id>', methods=['PUT'])
@permission_required('MANAGE_FINANCE')
def edit_member(member_id):
    form = validated(MemberUpdateForm)
    updates = {name: field.data for name, field in form._fields.items() if field.data not in (None, '')}
    member = services.update_member(get_current_society(), member_id, updates, user=g.user)
    return jsonify({'success': True, 'member': member.to_dict()})


# Member portal
@client_bp.route('/me/passbook')
@login_required
def my_passbook():
    if not g.user.linked_member_id:
        raise ValidationError('This login is not linked to a member')
    member = ensure_society_access(db.session.get(Member, g.user.linked_member_id))
    entries = get_society_filtered_query(PassbookEntry).filter_by(member_id=member.id) \
        .order_by(PassbookEntry.date, PassbookEntry.id).all()
    loans = get_society_filtered_query(Loan).filter_by(member_id=member.id).all()
    return jsonify({
        'member': member.to_dict(),
        'entries': [e.to_dict() for e in entries],
        'loans': [loan.to_dict() for loan in loans],
    })


# Passbook
@client_bp.route('/passbook')
@permission_required('VIEW_PASSBOOK')
def list_passbook():
    query = get_society_filtered_query(PassbookEntry)
    member_id = int_arg('member_id')
    if member_id is not None:
        query = query.filter_by(member_id=member_id)
    entries = query.order_by(PassbookEntry.date.desc(), PassbookEntry.id.desc()).all()
    return jsonify({'entries': [e.to_dict() for e in entries]})


@client_bp.route('/passbook', methods=['POST'])
@permission_required('MANAGE_FINANCE')
def create_passbook_entry():
    form = validated(PassbookEntryForm)
    entry = services.post_passbook_entry(
        get_current_society(), form.member_id.data,
        deposit=form.deposit_amount.data, installment=form.installment_amount.data,
        interest=form.interest_amount.data, fine=form.fine_amount.data,
        withdrawal=form.withdrawal_amount.data, payment_mode=form.payment_mode.data,
        on=form.date.data, description=form.description.data, user=g.user,
    )
    return jsonify({'success': True, 'entry': entry.to_dict()}), 201


@client_bp.route('/passbook/<int:entry_id>', methods=['DELETE'])
@permission_required('MANAGE_FINANCE')
def remove_passbook_entry(entry_id):
    services.delete_passbook_entry(get_current_society(), entry_id, user=g.user)
    return jsonify({'success': True})


# Loans
@client_bp.route('/loans')
@permission_required('VIEW_LOANS')
def list_loans():
    query = get_society_filtered_query(Loan)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    monthly_rate = current_app.config['MONTHLY_LOAN_INTEREST']
    loans = []
    for loan in query.order_by(Loan.start_date.desc()).all():
        data = loan.to_dict()
        data['monthly_interest_due'] = services.monthly_interest_due(loan, monthly_rate)
        loans.append(data)
    return jsonify({'loans': loans})


@client_bp.route('/loans/<int:loan_id>')
@permission_required('VIEW_LOANS')
def get_loan(loan_id):
    loan = ensure_society_access(db.session.get(Loan, loan_id))
    data = loan.to_dict()
    data['monthly_interest_due'] = services.monthly_interest_due(loan, current_app.config['MONTHLY_LOAN_INTEREST'])
    entries = get_society_filtered_query(PassbookEntry).filter_by(loan_id=loan.id) \
        .order_by(PassbookEntry.date).all()
    return jsonify({'loan': data, 'payments': [e.to_dict() for e in entries]})


@client_bp.route('/loans/<int:loan_id>', methods=['PUT'])
@permission_required('MANAGE_FINANCE')
def edit_loan(loan_id):
    form = validated(LoanUpdateForm)
    updates = {name: field.data for name, field in form._fields.items() if field.data not in (None, '')}
    loan = services.update_loan(get_current_society(), loan_id, updates, user=g.user)
    return jsonify({'success': True, 'loan': loan.to_dict()})


@client_bp.route('/loans/<int:loan_id>', methods=['DELETE'])
@permission_required('MANAGE_FINANCE')
def remove_loan(loan_id):
    services.delete_loan(get_current_society(), loan_id, user=g.user)
    return jsonify({'success': True})


@client_bp.route('/loan-requests')
@permission_required('VIEW_LOANS')
def list_loan_requests():
    query = get_society_filtered_query(LoanRequest)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    return jsonify({'requests': [r.to_dict() for r in query.order_by(LoanRequest.requested_date.desc()).all()]})


@client_bp.route('/loan-requests/validate', methods=['POST'])
@permission_required('VIEW_LOANS')
def check_loan_request():
    form = validated(LoanRequestForm)
    member = ensure_society_access(db.session.get(Member, form.member_id.data))
    check = services.validate_loan_request(get_current_society(), member, form.amount.data, form.override.data)
    return jsonify({'is_valid': check.is_valid, 'max_eligible': check.max_eligible, 'errors': check.errors})


@client_bp.route('/loan-requests', methods=['POST'])
@login_required
def create_loan_request():
    form = validated(LoanRequestForm)
    member_id = form.member_id.data
    override = form.override.data
    if not services.has_permission(g.user, 'MANAGE_FINANCE'):
        # Members may only ask for themselves, within the normal limits
        if g.user.linked_member_id is None or g.user.linked_member_id != member_id:
            raise PermissionDenied('You can only request a loan for your own membership')
        override = False
    loan_request = services.request_loan(get_current_society(), member_id, form.amount.data,
                                         purpose=form.purpose.data, override=override, user=g.user)
    return jsonify({'success': True, 'request': loan_request.to_dict()}), 201


@client_bp.route('/loan-requests/<int:request_id>/approve', methods=['POST'])
@permission_required('MANAGE_FINANCE')
def approve_loan_request(request_id):
    form = validated(LoanApprovalForm)
    loan = services.approve_loan(get_current_society(), request_id, approved_amount=form.approved_amount.data,
                                 override=form.override.data, payment_mode=form.payment_mode.data,
                                 on=form.date.data, user=g.user)
    return jsonify({'success': True, 'loan': loan.to_dict()})


@client_bp.route('/loan-requests/<int:request_id>/reject', methods=['POST'])
@permission_required('MANAGE_FINANCE')
def reject_loan_request(request_id):
    form = validated(LoanRejectForm)
    loan_request = services.reject_loan(get_current_society(), request_id, reason=form.reason.data, user=g.user)
    return jsonify({'success': True, 'request': loan_request.to_dict()})


# Admin fund
@client_bp.route('/admin-fund')
@permission_required('MANAGE_FINANCE')
def admin_fund():
    entries = get_society_filtered_query(AdminFundTransaction) \
        .order_by(AdminFundTransaction.date, AdminFundTransaction.id).all()
    return jsonify({
        'summary': ledger.admin_fund_summary(entries),
        'transactions': [t.to_dict() for t in entries],
    })


@client_bp.route('/admin-fund', methods=['POST'])
@permission_required('MANAGE_FINANCE')
def create_admin_transaction():
    form = validated(AdminFundForm)
    txn = services.add_admin_transaction(
        get_current_society(), form.amount.data, form.type.data, form.description.data,
        payment_mode=form.payment_mode.data, on=form.date.data, force=form.force.data, user=g.user,
    )
    return jsonify({'success': True, 'transaction': txn.to_dict()}), 201


@client_bp.route('/admin-fund/<int:txn_id>', methods=['DELETE'])
@permission_required('MANAGE_FINANCE')
def remove_admin_transaction(txn_id):
    services.delete_admin_transaction(get_current_society(), txn_id, user=g.user)
    return jsonify({'success': True})


# Expense ledger
@client_bp.route('/expenses')
@permission_required('VIEW_REPORTS')
def list_expenses():
    entries = get_society_filtered_query(ExpenseLedgerEntry) \
        .order_by(ExpenseLedgerEntry.date.desc(), ExpenseLedgerEntry.id.desc()).all()
    members = get_society_filtered_query(Member).all()
    return jsonify({
        'entries': [e.to_dict() for e in entries],
        'stats': ledger.maintenance_stats(entries, members),
    })


@client_bp.route('/expenses', methods=['POST'])
@permission_required('MANAGE_FINANCE')
def create_expense():
    form = validated(ExpenseForm)
    entry = services.add_expense(get_current_society(), form.amount.data, form.category.data,
                                 form.description.data, payment_mode=form.payment_mode.data,
                                 on=form.date.data, user=g.user)
    return jsonify({'success': True, 'entry': entry.to_dict()}), 201


@client_bp.route('/maintenance-fees', methods=['POST'])
@permission_required('MANAGE_FINANCE')
def create_maintenance_fee():
    form = validated(MaintenanceFeeForm)
    entry = services.collect_maintenance_fee(get_current_society(), form.member_id.data, amount=form.amount.data,
                                             payment_mode=form.payment_mode.data, on=form.date.data, user=g.user)
    return jsonify({'success': True, 'entry': entry.to_dict()}), 201


@client_bp.route('/expenses/<int:entry_id>', methods=['DELETE'])
@permission_required('MANAGE_FINANCE')
def remove_expense(entry_id):
    services.delete_expense_entry(get_current_society(), entry_id, user=g.user)
    return jsonify({'success': True})


# Maturity
@client_bp.route('/maturity')
@permission_required('VIEW_REPORTS')
def maturity():
    society, rows = _society_and_rows()
    data = ledger.maturity_rows(
        rows.members, rows.passbook, rows.loans, rows.overrides,
        tenure=current_app.config['MATURITY_TENURE_MONTHS'],
        interest_percent=current_app.config['MATURITY_INTEREST_PERCENT'],
    )
    return jsonify({'maturity': data})


@client_bp.route('/maturity/<int:member_id>', methods=['PUT'])
@permission_required('MANAGE_FINANCE')
def override_maturity(member_id):
    form = validated(MaturityOverrideForm)
    services.set_maturity_override(get_current_society(), member_id, form.manual_interest.data, user=g.user)
    return jsonify({'success': True})


@client_bp.route('/maturity/<int:member_id>', methods=['DELETE'])
@permission_required('MANAGE_FINANCE')
def clear_maturity(member_id):
    services.clear_maturity_override(get_current_society(), member_id, user=g.user)
    return jsonify({'success': True})


# Reports
@client_bp.route('/reports/summary')
@permission_required('VIEW_REPORTS')
def report_summary():
    society, rows = _society_and_rows()
    return jsonify(ledger.report_data(rows.passbook, rows.loans, rows.expenses, date_arg('start'), date_arg('end')))


@client_bp.route('/reports/cashbook')
@permission_required('VIEW_REPORTS')
def report_cashbook():
    society, rows = _society_and_rows()
    return jsonify(ledger.cashbook(rows.passbook, rows.expenses, rows.admin_fund, rows.loans,
                                   date_arg('start'), date_arg('end')))


@client_bp.route('/reports/member-summary')
@permission_required('VIEW_REPORTS')
def report_member_summary():
    society, rows = _society_and_rows()
    return jsonify({'members': ledger.member_summary(rows.members, rows.passbook, rows.loans)})


@client_bp.route('/reports/defaulters')
@permission_required('VIEW_REPORTS')
def report_defaulters():
    society, rows = _society_and_rows()
    return jsonify({'defaulters': ledger.defaulters(rows.loans, rows.members, date_arg('as_of'))})


@client_bp.route('/reports/audit')
@permission_required('VIEW_REPORTS')
def report_audit():
    society, rows = _society_and_rows()
    return jsonify(ledger.audit_data(
        rows.members, rows.passbook, rows.loans, rows.expenses, rows.admin_fund, rows.overrides,
        start=date_arg('start'), end=date_arg('end'),
        tenure=current_app.config['MATURITY_TENURE_MONTHS'],
        interest_percent=current_app.config['MATURITY_INTEREST_PERCENT'],
    ))


@client_bp.route('/exports/<kind>.csv')
@permission_required('VIEW_REPORTS')
def export_csv(kind):
    society = get_current_society()
    stamp = date.today().isoformat()
    if kind == 'cashbook':
        content = exports.cashbook_csv(society.id, date_arg('start'), date_arg('end'))
    elif kind == 'member-summary':
        content = exports.member_summary_csv(society.id)
    elif kind == 'defaulters':
        content = exports.defaulters_csv(society.id)
    elif kind == 'passbook':
        content = exports.passbook_csv(society.id, int_arg('member_id'))
    else:
        raise services.NotFoundError(f'Unknown export: {kind}')
    return csv_response(content, f'{kind}_{stamp}.csv')


# Users and roles
@client_bp.route('/users')
@permission_required('VIEW_USERS')
def list_users():
    query = get_society_filtered_query(User)
    role = request.args.get('role')
    if role:
        query = query.filter_by(role=role)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)
    return jsonify({'users': [u.to_dict() for u in query.order_by(User.created_at).all()]})


@client_bp.route('/users', methods=['POST'])
@permission_required('MANAGE_USERS')
def create_user():
    form = validated(UserForm)
    new_user = services.add_user(get_current_society(), form.name.data, form.email.data, form.password.data,
                                 form.role.data, phone=form.phone.data,
                                 linked_member_id=form.linked_member_id.data, user=g.user)
    return jsonify({'success': True, 'user': new_user.to_dict()}), 201


@client_bp.route('/users/<int:user_id>', methods=['PUT'])
@permission_required('MANAGE_USERS')
def edit_user(user_id):
    form = validated(UserUpdateForm)
    updates = {name: field.data for name, field in form._fields.items() if field.data not in (None, '')}
    target = services.update_user(get_current_society(), user_id, updates, user=g.user)
    return jsonify({'success': True, 'user': target.to_dict()})


@client_bp.route('/users/<int:user_id>/status', methods=['POST'])
@permission_required('MANAGE_USERS')
def change_user_status(user_id):
    form = validated(UserStatusForm)
    target = services.set_user_status(get_current_society(), user_id, form.status.data, user=g.user)
    return jsonify({'success': True, 'user': target.to_dict()})


@client_bp.route('/users/<int:user_id>/link', methods=['POST'])
@permission_required('MANAGE_USERS')
def link_user_member(user_id):
    form = validated(LinkMemberForm)
    target = services.link_member(get_current_society(), user_id, form.member_id.data, user=g.user)
    return jsonify({'success': True, 'user': target.to_dict()})


@client_bp.route('/users/<int:user_id>/link', methods=['DELETE'])
@permission_required('MANAGE_USERS')
def unlink_user_member(user_id):
    target = services.unlink_member(get_current_society(), user_id, user=g.user)
    return jsonify({'success': True, 'user': target.to_dict()})


@client_bp.route('/users/<int:user_id>', methods=['DELETE'])
@permission_required('MANAGE_USERS')
def remove_user(user_id):
    services.delete_user(get_current_society(), user_id, user=g.user)
    return jsonify({'success': True})


@client_bp.route('/roles')
@permission_required('VIEW_USERS')
def list_roles():
    society = get_current_society()
    return jsonify({
        'roles': services.role_permissions(society.id),
        'permissions': list(services.ALL_PERMISSIONS),
    })


@client_bp.route('/roles/toggle', methods=['POST'])
@permission_required('MANAGE_ROLES')
def toggle_role_permission():
    form = validated(PermissionToggleForm)
    permissions = services.toggle_permission(get_current_society(), form.role.data, form.permission.data,
                                             user=g.user)
    return jsonify({'success': True, 'role': form.role.data, 'permissions': permissions})


@client_bp.route('/activity-logs')
@permission_required('VIEW_ACTIVITY_LOGS')
def activity_logs():
    query = get_society_filtered_query(ActivityLog)
    user_id = int_arg('user_id')
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    action = request.args.get('action')
    if action:
        query = query.filter_by(action=action)
    limit = min(int_arg('limit') or 200, 1000)
    logs = query.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit).all()
    return jsonify({'logs': [entry.to_dict() for entry in logs]})


# Settings
@client_bp.route('/settings')
@permission_required('VIEW_SETTINGS')
def get_settings():
    return jsonify({'settings': get_current_society().settings_dict()})


@client_bp.route('/settings', methods=['PUT'])
@permission_required('MANAGE_SYSTEM')
def put_settings():
    values = request.get_json(silent=True)
    if not isinstance(values, dict) or not values:
        raise ValidationError('Send the settings to change as a JSON object')
    settings = services.update_settings(get_current_society(), values, user=g.user)
    return jsonify({'success': True, 'settings': settings})


@client_bp.route('/settings/reset', methods=['POST'])
@permission_required('MANAGE_SYSTEM')
def post_reset_settings():
    settings = services.reset_settings(get_current_society(), user=g.user)
    return jsonify({'success': True, 'settings': settings})


# Subscription
@client_bp.route('/subscription')
@login_required
def subscription_status():
    return jsonify(subscriptions.subscription_status(get_current_society()))


@client_bp.route('/plans')
@login_required
def list_plans():
    return jsonify({'plans': [plan.to_dict() for plan in subscriptions.list_plans()]})


@client_bp.route('/subscription/orders', methods=['POST'])
@permission_required('MANAGE_SYSTEM')
def create_payment_order():
    form = validated(PaymentOrderForm)
    order = subscriptions.create_payment_order(get_current_society(), form.plan_code.data,
                                               payment_reference=form.payment_reference.data, user=g.user)
    return jsonify({'success': True, 'order': order.to_dict()}), 201


# Data management
@client_bp.route('/data/export')
@permission_required('MANAGE_SYSTEM')
def data_export():
    return jsonify(exports.export_society_data(get_current_society()))


@client_bp.route('/data/import', methods=['POST'])
@permission_required('MANAGE_SYSTEM')
def data_import():
    payload = request.get_json(silent=True)
    result = exports.import_society_data(get_current_society(), payload, user=g.user)
    return jsonify({'success': True, 'message': 'Data imported successfully', **result})


@client_bp.route('/data/reset', methods=['POST'])
@permission_required('MANAGE_SYSTEM')
def data_reset():
    payload = request.get_json(silent=True) or {}
    if payload.get('confirm') != 'RESET':
        raise ValidationError('Send {"confirm": "RESET"} to erase all society data')
    exports.factory_reset(get_current_society(), user=g.user)
    return jsonify({'success': True})
