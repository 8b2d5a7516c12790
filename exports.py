"""
CSV report exports and the JSON backup format of a society's books.
"""
import csv
import io
import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError

import ledger
from app_models import (
    db, User, Member, PassbookEntry, Loan, LoanRequest, ExpenseLedgerEntry, AdminFundTransaction,
    MaturityOverride,
)
from society_services import (
    SETTINGS_FIELDS, ValidationError, clean_settings, load_ledger, log_activity, recompute_admin_fund_balances,
    reset_settings,
)

logger = logging.getLogger(__name__)

EXPORT_VERSION = '1.0'

CASHBOOK_COLUMNS = ['date', 'type', 'category', 'description', 'mode', 'amount', 'balance']
MEMBER_SUMMARY_COLUMNS = ['member_id', 'name', 'phone', 'status', 'join_date', 'total_deposits', 'total_loans',
                          'principal_paid', 'interest_paid', 'fine_paid', 'pending_loan', 'net_worth']
DEFAULTER_COLUMNS = ['loan_id', 'member_id', 'member_name', 'member_phone', 'loan_amount', 'remaining_balance',
                     'pending_emi', 'days_overdue', 'status', 'next_emi_date']
PASSBOOK_COLUMNS = ['id', 'date', 'member_id', 'type', 'deposit_amount', 'installment_amount', 'interest_amount',
                    'fine_amount', 'withdrawal_amount', 'amount', 'payment_mode', 'balance', 'description']


def to_csv(rows, columns):
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=columns, extrasaction='ignore')
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return output.getvalue()


def cashbook_csv(society_id, start=None, end=None):
    rows = load_ledger(society_id)
    book = ledger.cashbook(rows.passbook, rows.expenses, rows.admin_fund, rows.loans, start, end)
    return to_csv(book['rows'], CASHBOOK_COLUMNS)


def member_summary_csv(society_id):
    rows = load_ledger(society_id)
    return to_csv(ledger.member_summary(rows.members, rows.passbook, rows.loans), MEMBER_SUMMARY_COLUMNS)


def defaulters_csv(society_id, today=None):
    rows = load_ledger(society_id)
    return to_csv(ledger.defaulters(rows.loans, rows.members, today), DEFAULTER_COLUMNS)


def passbook_csv(society_id, member_id=None):
    query = PassbookEntry.query.filter_by(society_id=society_id)
    if member_id is not None:
        query = query.filter_by(member_id=member_id)
    entries = query.order_by(PassbookEntry.date, PassbookEntry.id).all()
    return to_csv([e.to_dict() for e in entries], PASSBOOK_COLUMNS)


# JSON backup
def export_society_data(society):
    rows = load_ledger(society.id)
    return {
        'version': EXPORT_VERSION,
        'export_date': datetime.utcnow().isoformat(),
        'society_id': society.id,
        'settings': society.settings_dict(),
        'members': [m.to_dict() for m in rows.members],
        'passbook': [e.to_dict() for e in rows.passbook],
        'loans': [loan.to_dict() for loan in rows.loans],
        'loan_requests': [r.to_dict() for r in rows.loan_requests],
        'expense_ledger': [e.to_dict() for e in rows.expenses],
        'admin_fund_ledger': [t.to_dict() for t in rows.admin_fund],
        'maturity_overrides': [
            {'member_id': o.member_id, 'manual_interest': o.manual_interest, 'is_override': o.is_override}
            for o in rows.overrides
        ],
    }


def _parse_date(value):
    if value is None:
        return None
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value):
    if value is None:
        return None
    return datetime.fromisoformat(str(value))


def _clear_ledger(society_id, keep_member_logins=False):
    PassbookEntry.query.filter_by(society_id=society_id).delete()
    Loan.query.filter_by(society_id=society_id).delete()
    LoanRequest.query.filter_by(society_id=society_id).delete()
    ExpenseLedgerEntry.query.filter_by(society_id=society_id).delete()
    AdminFundTransaction.query.filter_by(society_id=society_id).delete()
    MaturityOverride.query.filter_by(society_id=society_id).delete()
    if not keep_member_logins:
        User.query.filter_by(society_id=society_id, role='MEMBER').delete()
    User.query.filter_by(society_id=society_id).update({'linked_member_id': None})
    Member.query.filter_by(society_id=society_id).delete()


def import_society_data(society, payload, user=None):
    """Replace a society's ledger with the contents of a backup"""
    if not isinstance(payload, dict) or payload.get('version') != EXPORT_VERSION \
            or not isinstance(payload.get('settings'), dict):
        raise ValidationError('Invalid backup file format')

    try:
        _clear_ledger(society.id, keep_member_logins=True)

        # The contact email identifies the tenant and is never restored
        settings = clean_settings({
            key: value for key, value in payload['settings'].items()
            if key in SETTINGS_FIELDS and key != 'contact_email' and value is not None
        })
        for key, value in settings.items():
            setattr(society, SETTINGS_FIELDS[key], value)

        member_ids = {}
        for data in payload.get('members', []):
            member = Member(
                society_id=society.id,
                name=data['name'],
                father_name=data.get('father_name'),
                phone=data['phone'],
                email=data.get('email'),
                address=data.get('address'),
                join_date=_parse_date(data['join_date']),
                status=data.get('status', 'active'),
                total_deposits=data.get('total_deposits', 0.0),
                has_paid_maintenance=bool(data.get('has_paid_maintenance')),
                monthly_deposit_amount=data.get('monthly_deposit_amount'),
            )
            db.session.add(member)
            db.session.flush()
            member_ids[data['id']] = member.id

        request_ids = {}
        for data in payload.get('loan_requests', []):
            loan_request = LoanRequest(
                society_id=society.id,
                member_id=member_ids[data['member_id']],
                member_name=data['member_name'],
                amount=data['amount'],
                purpose=data.get('purpose'),
                requested_date=_parse_datetime(data.get('requested_date')) or datetime.utcnow(),
                status=data.get('status', 'pending'),
                total_deposits=data.get('total_deposits', 0.0),
                approved_amount=data.get('approved_amount'),
                approved_date=_parse_date(data.get('approved_date')),
                rejection_reason=data.get('rejection_reason'),
            )
            db.session.add(loan_request)
            db.session.flush()
            request_ids[data['id']] = loan_request.id

        loan_ids = {}
        for data in payload.get('loans', []):
            loan = Loan(
                society_id=society.id,
                member_id=member_ids[data['member_id']],
                loan_request_id=request_ids.get(data.get('loan_request_id')),
                amount=data['amount'],
                interest_rate=data['interest_rate'],
                tenure=data['tenure'],
                start_date=_parse_date(data['start_date']),
                maturity_date=_parse_date(data['maturity_date']),
                next_due_date=_parse_date(data.get('next_due_date')),
                status=data.get('status', 'active'),
                emi_amount=data['emi_amount'],
                remaining_balance=data['remaining_balance'],
                payment_mode=data.get('payment_mode', 'CASH'),
                purpose=data.get('purpose'),
            )
            db.session.add(loan)
            db.session.flush()
            loan_ids[data['id']] = loan.id

        for data in payload.get('passbook', []):
            db.session.add(PassbookEntry(
                society_id=society.id,
                member_id=member_ids[data['member_id']],
                loan_id=loan_ids.get(data.get('loan_id')),
                date=_parse_date(data['date']),
                type=data['type'],
                amount=data['amount'],
                deposit_amount=data.get('deposit_amount', 0.0),
                installment_amount=data.get('installment_amount', 0.0),
                interest_amount=data.get('interest_amount', 0.0),
                fine_amount=data.get('fine_amount', 0.0),
                withdrawal_amount=data.get('withdrawal_amount', 0.0),
                payment_mode=data.get('payment_mode', 'CASH'),
                description=data.get('description'),
                balance=data.get('balance', 0.0),
            ))

        for data in payload.get('expense_ledger', []):
            db.session.add(ExpenseLedgerEntry(
                society_id=society.id,
                date=_parse_date(data['date']),
                description=data['description'],
                member_id=member_ids.get(data.get('member_id')),
                member_name=data.get('member_name'),
                category=data['category'],
                type=data['type'],
                amount=data['amount'],
                payment_mode=data.get('payment_mode', 'CASH'),
            ))

        for data in payload.get('admin_fund_ledger', []):
            db.session.add(AdminFundTransaction(
                society_id=society.id,
                date=_parse_date(data['date']),
                type=data['type'],
                amount=data['amount'],
                description=data['description'],
                payment_mode=data.get('payment_mode', 'CASH'),
            ))

        for data in payload.get('maturity_overrides', []):
            db.session.add(MaturityOverride(
                society_id=society.id,
                member_id=member_ids[data['member_id']],
                manual_interest=data.get('manual_interest', 0.0),
                is_override=data.get('is_override', True),
            ))

        db.session.flush()
        recompute_admin_fund_balances(society.id)
        log_activity(society.id, user, 'DATA_IMPORTED', {'members': len(member_ids), 'loans': len(loan_ids)})
        db.session.commit()
    except ValidationError:
        db.session.rollback()
        raise
    except IntegrityError:
        db.session.rollback()
        logger.exception("Society %s: backup import failed", society.id)
        raise ValidationError('Invalid backup file: duplicate records')
    except (KeyError, TypeError, ValueError) as e:
        db.session.rollback()
        logger.exception("Society %s: backup import failed", society.id)
        raise ValidationError(f'Invalid backup file: {e}')

    logger.info("Society %s: backup imported (%d members)", society.id, len(member_ids))
    return {'members': len(member_ids), 'loans': len(loan_ids)}


def factory_reset(society, user=None):
    """Erase every ledger row and member of a society and restore default settings"""
    _clear_ledger(society.id)
    log_activity(society.id, user, 'FACTORY_RESET')
    reset_settings(society, user)
    logger.warning("Society %s: factory reset performed", society.id)
