import csv
import io
from datetime import date

import pytest

import exports
import ledger
import society_services as services
from app_models import db, ExpenseLedgerEntry, Loan, MaturityOverride, Member, PassbookEntry, User
from society_services import ValidationError


@pytest.fixture
def books(society, add_member, admin_user):
    """Two members with deposits, a loan, fees, an expense and admin money"""
    ravi = add_member(name='Ravi Kumar')
    sita = add_member(name='Sita Devi')
    services.post_passbook_entry(society, ravi.id, deposit=10000, on=date(2024, 1, 5))
    services.post_passbook_entry(society, sita.id, deposit=4000, payment_mode='UPI', on=date(2024, 1, 6))
    loan_request = services.request_loan(society, ravi.id, 5000)
    services.approve_loan(society, loan_request.id, payment_mode='BANK', on=date(2024, 1, 10))
    services.post_passbook_entry(society, ravi.id, installment=500, interest=50, on=date(2024, 2, 10))
    services.collect_maintenance_fee(society, sita.id, on=date(2024, 1, 15))
    services.add_expense(society, 120, 'STATIONERY', 'Ledger books', on=date(2024, 1, 20))
    services.add_admin_transaction(society, 3000, 'INJECT', 'Working capital', payment_mode='BANK',
                                   on=date(2024, 1, 2))
    services.set_maturity_override(society, sita.id, 900)
    return society


def _liquidity(society_id):
    rows = services.load_ledger(society_id)
    return ledger.liquidity_snapshot(rows.passbook, rows.expenses, rows.admin_fund, rows.loans)


def test_export_contains_every_ledger(books):
    payload = exports.export_society_data(books)

    assert payload['version'] == '1.0'
    assert payload['settings']['society_name'] == 'Green Valley Society'
    assert len(payload['members']) == 2
    assert len(payload['passbook']) == 3
    assert len(payload['loans']) == 1
    assert len(payload['loan_requests']) == 1
    assert len(payload['expense_ledger']) == 2
    assert len(payload['admin_fund_ledger']) == 1
    assert payload['maturity_overrides'][0]['manual_interest'] == 900.0


def test_import_restores_books(books, admin_user):
    before = _liquidity(books.id)
    payload = exports.export_society_data(books)

    result = exports.import_society_data(books, payload, user=admin_user)

    assert result == {'members': 2, 'loans': 1}
    assert _liquidity(books.id) == before
    assert Member.query.filter_by(society_id=books.id).count() == 2
    loan = Loan.query.filter_by(society_id=books.id).one()
    assert loan.remaining_balance == 4500.0
    assert PassbookEntry.query.filter(PassbookEntry.loan_id == loan.id).count() == 1
    assert MaturityOverride.query.filter_by(society_id=books.id).count() == 1
    fee = ExpenseLedgerEntry.query.filter_by(society_id=books.id, category='MAINTENANCE_FEE').one()
    assert db.session.get(Member, fee.member_id).name == 'Sita Devi'

    # Logins survive a restore but are no longer tied to the old member rows
    member_logins = User.query.filter_by(society_id=books.id, role='MEMBER').all()
    assert len(member_logins) == 2
    assert all(u.linked_member_id is None for u in member_logins)


def test_import_keeps_contact_email(books, admin_user):
    payload = exports.export_society_data(books)
    payload['settings']['contact_email'] = 'someone-else@example.test'
    payload['settings']['interest_rate'] = 9.0

    exports.import_society_data(books, payload, user=admin_user)

    assert books.email == 'office@greenvalley.test'
    assert books.interest_rate == 9.0


@pytest.mark.parametrize('payload', [
    None,
    [],
    {'version': '2.0', 'settings': {}},
    {'version': '1.0'},
])
def test_import_rejects_unknown_formats(books, payload):
    with pytest.raises(ValidationError, match='Invalid backup file format'):
        exports.import_society_data(books, payload)


def test_broken_backup_leaves_books_untouched(books):
    payload = exports.export_society_data(books)
    del payload['members'][0]['phone']

    with pytest.raises(ValidationError):
        exports.import_society_data(books, payload)

    assert Member.query.filter_by(society_id=books.id).count() == 2
    assert PassbookEntry.query.filter_by(society_id=books.id).count() == 3


def test_backup_with_duplicate_phones_is_rejected(books):
    before = _liquidity(books.id)
    payload = exports.export_society_data(books)
    payload['members'][1]['phone'] = payload['members'][0]['phone']

    with pytest.raises(ValidationError, match='duplicate records'):
        exports.import_society_data(books, payload)

    assert Member.query.filter_by(society_id=books.id).count() == 2
    assert _liquidity(books.id) == before


def test_backup_with_bad_settings_is_rejected(books):
    payload = exports.export_society_data(books)
    payload['settings']['interest_rate'] = 'twelve'

    with pytest.raises(ValidationError, match='interest_rate must be a number'):
        exports.import_society_data(books, payload)

    assert PassbookEntry.query.filter_by(society_id=books.id).count() == 3
    assert books.interest_rate == 12.0


def test_import_restores_monthly_deposit_amount(books, admin_user):
    sita = Member.query.filter_by(society_id=books.id, name='Sita Devi').one()
    services.update_member(books, sita.id, {'monthly_deposit_amount': 750})
    payload = exports.export_society_data(books)

    exports.import_society_data(books, payload, user=admin_user)

    restored = Member.query.filter_by(society_id=books.id, name='Sita Devi').one()
    assert restored.monthly_deposit_amount == 750.0


def test_factory_reset(books, admin_user):
    services.update_settings(books, {'fine_amount': 50})

    exports.factory_reset(books, user=admin_user)

    assert Member.query.filter_by(society_id=books.id).count() == 0
    assert PassbookEntry.query.filter_by(society_id=books.id).count() == 0
    assert User.query.filter_by(society_id=books.id, role='MEMBER').count() == 0
    assert User.query.filter_by(society_id=books.id, role='CLIENT_ADMIN').count() == 1
    assert books.fine_amount == 10.0
    assert _liquidity(books.id).total == 0.0


def test_member_summary_csv(books):
    rows = list(csv.DictReader(io.StringIO(exports.member_summary_csv(books.id))))

    assert [r['name'] for r in rows] == ['Ravi Kumar', 'Sita Devi']
    assert rows[0]['pending_loan'] == '4500.0'
    assert rows[0]['net_worth'] == '5500.0'


def test_passbook_csv_filters_member(books):
    ravi = Member.query.filter_by(society_id=books.id, name='Ravi Kumar').one()

    rows = list(csv.DictReader(io.StringIO(exports.passbook_csv(books.id, ravi.id))))

    assert [r['type'] for r in rows] == ['DEPOSIT', 'MIXED']
    assert rows[1]['installment_amount'] == '500.0'


def test_defaulters_csv(books):
    content = exports.defaulters_csv(books.id, today=date(2024, 4, 20))
    rows = list(csv.DictReader(io.StringIO(content)))

    assert len(rows) == 1
    assert rows[0]['member_name'] == 'Ravi Kumar'
    assert rows[0]['status'] == 'Warning'
