from datetime import date
from types import SimpleNamespace

import pytest

import ledger


def pb(member_id, day, deposit=0, installment=0, interest=0, fine=0, withdrawal=0, mode='CASH', entry_id=None):
    credits = deposit + installment + interest + fine
    return SimpleNamespace(
        id=entry_id, member_id=member_id, date=day, type='DEPOSIT', amount=withdrawal or credits,
        deposit_amount=deposit, installment_amount=installment, interest_amount=interest,
        fine_amount=fine, withdrawal_amount=withdrawal, payment_mode=mode, description=None, created_at=None,
    )


def exp(day, kind, amount, category='OTHER', mode='CASH'):
    return SimpleNamespace(id=None, date=day, type=kind, amount=amount, category=category, payment_mode=mode,
                           description=f'{category} {kind}', member_id=None, created_at=None)


def fund(day, kind, amount, mode='CASH', entry_id=None):
    return SimpleNamespace(id=entry_id, date=day, type=kind, amount=amount, payment_mode=mode,
                           description=f'Admin {kind}', created_at=None)


def loan(member_id, amount, start, status='active', remaining=None, next_due=None, emi=None, loan_id=1):
    return SimpleNamespace(
        id=loan_id, member_id=member_id, amount=amount, start_date=start, status=status,
        remaining_balance=amount if remaining is None else remaining, next_due_date=next_due,
        emi_amount=emi if emi is not None else round(amount / 12, 2), tenure=12, payment_mode='CASH',
    )


def member(member_id, name, join=date(2024, 1, 1), total_deposits=0.0, has_paid=False, monthly_deposit=None):
    return SimpleNamespace(id=member_id, name=name, phone=f'90000000{member_id:02d}', email=None, status='active',
                           join_date=join, total_deposits=total_deposits, has_paid_maintenance=has_paid,
                           monthly_deposit_amount=monthly_deposit)


@pytest.fixture
def books():
    """A small society: two deposits, an expense, an admin injection and two disbursed loans"""
    return {
        'passbook': [
            pb(1, date(2024, 1, 5), deposit=1000),
            pb(2, date(2024, 1, 6), deposit=500, mode='UPI'),
        ],
        'expenses': [exp(date(2024, 1, 7), 'EXPENSE', 200, mode='Bank Transfer')],
        'admin_fund': [fund(date(2024, 1, 2), 'INJECT', 3000, mode='BANK')],
        'loans': [
            loan(1, 2000, date(2024, 1, 10)),
            loan(2, 500, date(2024, 1, 11), status='completed', remaining=0, loan_id=2),
        ],
    }


@pytest.mark.parametrize('mode,channel', [
    ('CASH', 'cash'),
    ('Bank Transfer', 'bank'),
    ('BANK', 'bank'),
    ('upi', 'upi'),
    ('Cheque', 'cash'),
    (None, 'cash'),
    ('', 'cash'),
])
def test_payment_channel(mode, channel):
    assert ledger.payment_channel(mode) == channel


def test_inflow_and_outflow_kinds():
    for kind in ('DEPOSIT', 'installment', 'INTEREST', 'FINE', 'MIXED', 'INCOME', 'INJECT'):
        assert ledger.is_inflow(kind)
    for kind in ('WITHDRAWAL', 'EXPENSE', 'WITHDRAW', 'LOAN_GIVEN'):
        assert not ledger.is_inflow(kind)


def test_liquidity_snapshot_splits_channels(books):
    snapshot = ledger.liquidity_snapshot(**books)

    assert snapshot.cash == -1500.0   # 1000 deposit - 2000 and 500 loans
    assert snapshot.bank == 2800.0    # 3000 injected - 200 expense
    assert snapshot.upi == 500.0
    assert snapshot.total == snapshot.cash + snapshot.bank + snapshot.upi == 1800.0
    assert ledger.society_cash_in_hand(**books) == snapshot.total


def test_only_disbursed_loans_are_outflows():
    loans = [loan(1, 1000, date(2024, 1, 1), status='defaulted'), loan(2, 700, date(2024, 1, 1), status='pending')]
    txns = ledger.build_transactions(loans=loans)
    assert [t.amount for t in txns] == [1000]
    assert txns[0].kind == 'LOAN_GIVEN'


def test_mixed_passbook_entry_is_split_into_components():
    entry = pb(1, date(2024, 2, 1), deposit=500, interest=50, fine=10)
    legacy = SimpleNamespace(id=None, member_id=1, date=date(2024, 2, 2), type='interest', amount=75,
                             payment_mode=None, description=None, created_at=None)

    txns = ledger.build_transactions(passbook=[entry, legacy])

    assert [(t.kind, t.amount) for t in txns] == [('DEPOSIT', 500), ('INTEREST', 50), ('FINE', 10),
                                                 ('INTEREST', 75)]
    assert ledger.liquidity_snapshot(passbook=[entry, legacy]).cash == 635.0


def test_withdrawal_reduces_cash():
    entries = [pb(1, date(2024, 1, 1), deposit=1000), pb(1, date(2024, 1, 2), withdrawal=300)]
    assert ledger.society_cash_in_hand(passbook=entries) == 700.0


@pytest.mark.parametrize('entries,net,position', [
    ([fund(date(2024, 1, 1), 'INJECT', 5000), fund(date(2024, 1, 2), 'WITHDRAW', 2000)], 3000.0,
     'Society owes Admin'),
    ([fund(date(2024, 1, 1), 'INJECT', 1000), fund(date(2024, 1, 2), 'WITHDRAW', 1500)], -500.0,
     'Admin owes Society'),
    ([], 0.0, 'Balanced'),
])
def test_admin_fund_summary(entries, net, position):
    summary = ledger.admin_fund_summary(entries)
    assert summary['net_balance'] == net
    assert summary['position'] == position


def test_admin_fund_running_balances_follow_date_order():
    later = fund(date(2024, 3, 1), 'WITHDRAW', 500, entry_id=2)
    earlier = fund(date(2024, 1, 1), 'INJECT', 2000, entry_id=1)

    result = ledger.admin_fund_running_balances([later, earlier])

    assert [(e.id, balance) for e, balance in result] == [(1, 2000.0), (2, 1500.0)]


def test_passbook_running_balances_track_deposits_only():
    entries = [
        pb(1, date(2024, 1, 1), deposit=1000, entry_id=1),
        pb(1, date(2024, 1, 2), withdrawal=300, entry_id=2),
        pb(1, date(2024, 1, 3), deposit=200, entry_id=3),
        pb(1, date(2024, 1, 4), interest=50, entry_id=4),
    ]
    balances = [balance for _, balance in ledger.passbook_running_balances(entries)]
    assert balances == [1000.0, 700.0, 900.0, 900.0]


def test_cashbook_closing_balance_matches_liquidity(books):
    book = ledger.cashbook(**books)

    assert book['closing_balance'] == ledger.liquidity_snapshot(**books).total
    assert book['total_in'] == 4500.0
    assert book['total_out'] == 2700.0
    first = book['rows'][0]
    assert first['date'] == '2024-01-02'
    assert first['category'] == 'Admin Fund Injection'
    assert first['type'] == 'IN'
    assert first['mode'] == 'BANK'
    assert [r['balance'] for r in book['rows']] == [3000.0, 4000.0, 4500.0, 4300.0, 2300.0, 1800.0]
    assert book['rows'][-1]['category'] == 'Loan Disbursed'


def test_cashbook_date_filter_carries_opening_balance(books):
    book = ledger.cashbook(**books, start=date(2024, 1, 6), end=date(2024, 1, 7))

    assert book['opening_balance'] == 4000.0
    assert [r['amount'] for r in book['rows']] == [500.0, 200.0]
    assert book['closing_balance'] == 4300.0


@pytest.fixture
def report_books():
    return {
        'passbook': [
            pb(1, date(2024, 1, 5), deposit=1000, interest=100),
            pb(1, date(2024, 2, 5), installment=500, fine=20),
            pb(2, date(2024, 2, 10), deposit=1000),
        ],
        'loans': [loan(1, 5000, date(2024, 1, 10), remaining=4500)],
        'expense_ledger': [
            exp(date(2024, 1, 15), 'INCOME', 200, category='MAINTENANCE_FEE'),
            exp(date(2024, 2, 20), 'EXPENSE', 150, category='STATIONERY'),
        ],
    }


def test_report_data_financials(report_books):
    report = ledger.report_data(**report_books)

    financials = report['financials']
    assert financials['total_deposits'] == 2000.0
    assert financials['total_collected'] == 2620.0
    assert financials['total_interest_collected'] == 100.0
    assert financials['total_fines_collected'] == 20.0
    assert financials['other_income'] == 200.0
    assert financials['total_expenses'] == 150.0
    # Deposits are owed back to members, so they are not profit
    assert financials['net_profit'] == 170.0

    health = report['loan_health']
    assert health['total_disbursed'] == 5000.0
    assert health['total_recovered'] == 500.0
    assert health['outstanding'] == 4500.0
    assert health['recovery_rate'] == 10.0

    assert report['trends'] == [
        {'month': '2024-01', 'collection': 1300.0, 'expense': 0.0},
        {'month': '2024-02', 'collection': 1520.0, 'expense': 150.0},
    ]


def test_report_data_respects_date_range(report_books):
    report = ledger.report_data(**report_books, start=date(2024, 2, 1))

    assert report['financials']['total_deposits'] == 1000.0
    assert report['financials']['total_interest_collected'] == 0.0
    assert report['loan_health']['total_disbursed'] == 0.0
    assert report['loan_health']['recovery_rate'] == 0.0


def test_member_summary_sorted_by_net_worth(report_books):
    members = [member(1, 'Ravi'), member(2, 'Sita')]
    rows = ledger.member_summary(members, report_books['passbook'], report_books['loans'])

    assert [r['name'] for r in rows] == ['Sita', 'Ravi']
    ravi = rows[1]
    assert ravi['total_deposits'] == 1000.0
    assert ravi['total_loans'] == 5000.0
    assert ravi['principal_paid'] == 500.0
    assert ravi['interest_paid'] == 100.0
    assert ravi['fine_paid'] == 20.0
    assert ravi['pending_loan'] == 4500.0
    assert ravi['net_worth'] == -3500.0


def test_dashboard_overview_alerts(report_books):
    requests = [SimpleNamespace(status='pending'), SimpleNamespace(status='approved')]
    overview = ledger.dashboard_overview(
        [member(1, 'Ravi'), member(2, 'Sita')], report_books['passbook'], report_books['loans'], requests,
        report_books['expense_ledger'], [], low_cash_threshold=5000,
    )

    health = overview['financial_health']
    assert health['total_income'] == 320.0
    assert health['net_profit'] == 170.0
    assert health['profit_margin'] == pytest.approx(53.125, abs=0.01)
    assert overview['risk']['pending_requests'] == 1
    assert overview['risk']['active_loans'] == 1
    assert overview['risk']['outstanding_loans'] == 4500.0
    assert overview['liquidity']['total'] == -2330.0
    assert {a['type'] for a in overview['alerts']} == {'PENDING_LOAN_REQUESTS', 'LOW_CASH'}


def test_maintenance_stats():
    entries = [
        exp(date(2024, 1, 1), 'INCOME', 200, 'MAINTENANCE_FEE'),
        exp(date(2024, 1, 2), 'INCOME', 200, 'MAINTENANCE_FEE'),
        exp(date(2024, 1, 3), 'INCOME', 100, 'OTHER'),
        exp(date(2024, 1, 4), 'EXPENSE', 150, 'PRINTING'),
    ]
    members = [member(1, 'A', has_paid=True), member(2, 'B', has_paid=True), member(3, 'C')]

    stats = ledger.maintenance_stats(entries, members)

    assert stats['fees_collected'] == 400.0
    assert stats['other_income'] == 100.0
    assert stats['operating_expenses'] == 150.0
    assert stats['net_balance'] == 350.0
    assert stats['members_paid'] == 2
    assert stats['members_pending'] == 1


def test_defaulters_are_graded_by_days_overdue():
    today = date(2024, 6, 30)
    loans = [
        loan(1, 6000, date(2024, 1, 1), remaining=1000, next_due=date(2024, 4, 20), emi=500, loan_id=1),
        loan(2, 6000, date(2024, 1, 1), remaining=3000, next_due=date(2024, 5, 25), loan_id=2),
        loan(1, 6000, date(2024, 1, 1), remaining=3000, next_due=date(2024, 6, 20), loan_id=3),
        loan(2, 6000, date(2024, 1, 1), remaining=3000, next_due=date(2024, 7, 5), loan_id=4),
        loan(1, 6000, date(2024, 1, 1), status='completed', remaining=0, next_due=date(2024, 1, 1), loan_id=5),
    ]
    rows = ledger.defaulters(loans, [member(1, 'Ravi'), member(2, 'Sita')], today)

    assert [(r['loan_id'], r['days_overdue'], r['status']) for r in rows] == [
        (1, 71, 'Critical'), (2, 36, 'Warning'), (3, 10, 'Overdue'),
    ]
    assert rows[0]['member_name'] == 'Ravi'
    assert rows[0]['pending_emi'] == 500.0


def test_maturity_projection_uses_first_deposit_as_share():
    today = date(2024, 6, 30)
    members = [member(1, 'Ravi', join=date(2023, 6, 1)), member(2, 'Sita', join=date(2020, 1, 1)),
               member(3, 'Gopal', join=date(2024, 6, 1))]
    passbook = [
        pb(1, date(2023, 7, 5), deposit=1000),
        pb(1, date(2023, 6, 5), deposit=500),
        pb(2, date(2020, 1, 5), deposit=100),
    ]
    loans = [loan(1, 5000, date(2024, 1, 1), remaining=4000)]

    rows = {r['member_id']: r for r in ledger.maturity_rows(members, passbook, loans, today=today)}

    ravi = rows[1]
    assert ravi['monthly_deposit'] == 500.0
    assert ravi['current_deposit'] == 1500.0
    assert ravi['target_deposit'] == 18000.0
    assert ravi['projected_interest'] == 2160.0
    assert ravi['settled_interest'] == 2160.0
    assert ravi['monthly_interest_share'] == 60.0
    assert ravi['months_completed'] == 12
    assert ravi['current_accrued_interest'] == 720.0
    assert ravi['maturity_amount'] == 20160.0
    assert ravi['net_payable'] == 16160.0
    assert ravi['status'] == 'active'

    assert rows[2]['months_completed'] == 36
    assert rows[2]['status'] == 'matured'
    assert rows[3]['maturity_amount'] == 0.0


def test_maturity_share_prefers_monthly_deposit_amount():
    ravi = member(1, 'Ravi', join=date(2023, 6, 1), monthly_deposit=1000)
    passbook = [pb(1, date(2023, 6, 5), deposit=25000), pb(1, date(2023, 7, 5), deposit=1000)]

    row = ledger.maturity_rows([ravi], passbook, [], today=date(2024, 6, 30))[0]

    assert row['monthly_deposit'] == 1000.0
    assert row['target_deposit'] == 36000.0
    assert row['projected_interest'] == 4320.0


@pytest.mark.parametrize('joined,today,months', [
    (date(2021, 1, 1), date(2023, 12, 20), 35),
    (date(2021, 1, 1), date(2024, 1, 1), 36),
    (date(2024, 1, 15), date(2024, 2, 15), 1),
    (date(2024, 1, 15), date(2024, 3, 14), 1),
    (date(2024, 5, 1), date(2024, 4, 1), 0),
])
def test_months_between_counts_calendar_months(joined, today, months):
    assert ledger.months_between(joined, today) == months


def test_member_one_day_short_of_tenure_is_still_active():
    row = ledger.maturity_rows([member(1, 'Ravi', join=date(2021, 1, 1))],
                               [pb(1, date(2021, 1, 5), deposit=500)], [], today=date(2023, 12, 20))[0]

    assert row['months_completed'] == 35
    assert row['status'] == 'active'


def test_maturity_override_replaces_projected_interest():
    override = SimpleNamespace(member_id=1, manual_interest=1000.0, is_override=True)
    rows = ledger.maturity_rows([member(1, 'Ravi', join=date(2023, 6, 1))],
                                [pb(1, date(2023, 6, 5), deposit=500)], [], [override], today=date(2024, 6, 30))

    row = rows[0]
    assert row['is_override'] is True
    assert row['settled_interest'] == 1000.0
    assert row['maturity_amount'] == 19000.0
    assert row['current_accrued_interest'] == 333.33


def test_audit_data_reconciles_with_liquidity(books):
    members = [member(1, 'Ravi', total_deposits=1000), member(2, 'Sita', total_deposits=500)]
    audit = ledger.audit_data(members, books['passbook'], books['loans'], books['expenses'], books['admin_fund'],
                              today=date(2024, 6, 30))

    total = ledger.liquidity_snapshot(**books).total
    assert audit['period'] == {'start': '2024-01-01', 'end': '2024-12-31'}
    assert audit['opening_balance'] == 0.0
    assert audit['daily_ledger'][-1]['running_balance'] == total
    assert audit['cashbook'][-1]['closing'] == total
    stats = audit['mode_stats']
    assert stats['cash_balance'] + stats['bank_balance'] + stats['upi_balance'] == total
    assert audit['summary']['loans']['issued'] == 2500.0
    assert audit['summary']['assets']['deposits'] == 1500.0
    assert len(audit['member_reports']) == 2


def test_audit_data_opening_balance_from_prior_year(books):
    audit = ledger.audit_data([], books['passbook'], books['loans'], books['expenses'], books['admin_fund'],
                              start=date(2024, 1, 7), end=date(2024, 1, 31), today=date(2024, 6, 30))

    assert audit['opening_balance'] == 4500.0
    assert [d['date'] for d in audit['daily_ledger']] == ['2024-01-07', '2024-01-10', '2024-01-11']
    assert audit['daily_ledger'][-1]['running_balance'] == 1800.0
