"""
Ledger reconciliation and liquidity calculations.

Every function here works on rows that were already fetched (model instances
or any object exposing the same attributes) and never touches the database.
Balances are derived by replaying the four transaction sources of a society:
passbook entries, the expense ledger, the admin fund ledger and loans.
"""
from collections import OrderedDict, defaultdict, namedtuple
from datetime import date, datetime

INFLOW_KINDS = frozenset(['DEPOSIT', 'INSTALLMENT', 'INTEREST', 'FINE', 'MIXED', 'INCOME', 'INJECT'])
OUTFLOW_KINDS = frozenset(['WITHDRAWAL', 'EXPENSE', 'WITHDRAW', 'LOAN_GIVEN'])
DISBURSED_LOAN_STATUSES = ('active', 'completed', 'defaulted')

# Passbook component columns, in posting order
PASSBOOK_COMPONENTS = (
    ('DEPOSIT', 'deposit_amount'),
    ('INSTALLMENT', 'installment_amount'),
    ('INTEREST', 'interest_amount'),
    ('FINE', 'fine_amount'),
    ('WITHDRAWAL', 'withdrawal_amount'),
)

CATEGORY_LABELS = {
    'DEPOSIT': 'Deposit',
    'INSTALLMENT': 'Loan Installment',
    'INTEREST': 'Interest Income',
    'FINE': 'Fine',
    'MIXED': 'Member Payment',
    'WITHDRAWAL': 'Member Withdrawal',
    'MAINTENANCE_FEE': 'Maintenance Fee',
    'STATIONERY': 'Stationery',
    'PRINTING': 'Printing',
    'LOAN_FORMS': 'Loan Forms',
    'REFRESHMENTS': 'Refreshments',
    'INJECT': 'Admin Fund Injection',
    'WITHDRAW': 'Admin Fund Withdrawal',
    'LOAN_GIVEN': 'Loan Disbursed',
}

Txn = namedtuple('Txn', 'date kind amount mode source category description member_id')
LiquiditySnapshot = namedtuple('LiquiditySnapshot', 'cash bank upi total')


def _money(value):
    return round(value or 0.0, 2)


def _as_date(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _in_range(day, start=None, end=None):
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def _upper(value):
    return (value or '').upper()


def months_between(start, end):
    """Whole calendar months from ``start`` to ``end``, never negative."""
    start, end = _as_date(start), _as_date(end)
    months = (end.year - start.year) * 12 + end.month - start.month
    if end.day < start.day:
        months -= 1
    return max(0, months)


def payment_channel(mode):
    """Map a free-form payment mode to the cash, bank or upi channel."""
    m = (mode or '').lower()
    if 'bank' in m:
        return 'bank'
    if 'upi' in m:
        return 'upi'
    return 'cash'


def is_inflow(kind):
    """True when a transaction of this kind brings money into the society."""
    return _upper(kind) in INFLOW_KINDS


def signed_amount(txn):
    return txn.amount if is_inflow(txn.kind) else -txn.amount


def passbook_components(entry):
    """Split a passbook entry into (kind, amount) parts.

    Entries recorded with component columns yield one part per non-zero
    component; older single-type entries yield their type and amount.
    """
    parts = []
    for kind, attr in PASSBOOK_COMPONENTS:
        value = getattr(entry, attr, 0) or 0
        if value:
            parts.append((kind, abs(value)))
    if parts:
        return parts
    return [(_upper(entry.type), abs(entry.amount or 0))]


def _order_key(row):
    created = getattr(row, 'created_at', None) or datetime.min
    return (_as_date(row.date), created, getattr(row, 'id', None) or 0)


def build_transactions(passbook=(), expenses=(), admin_fund=(), loans=()):
    """Merge every money movement of a society into one chronological list."""
    txns = []
    for entry in sorted(passbook, key=_order_key):
        for kind, amount in passbook_components(entry):
            txns.append(Txn(
                date=_as_date(entry.date),
                kind=kind,
                amount=amount,
                mode=entry.payment_mode or 'CASH',
                source='PASSBOOK',
                category=kind,
                description=entry.description or f"{kind.title()} - member {entry.member_id}",
                member_id=entry.member_id,
            ))
    for entry in sorted(expenses, key=_order_key):
        txns.append(Txn(
            date=_as_date(entry.date),
            kind=_upper(entry.type),
            amount=abs(entry.amount or 0),
            mode=getattr(entry, 'payment_mode', None) or 'CASH',
            source='EXPENSE',
            category=_upper(entry.category) or 'OTHER',
            description=entry.description,
            member_id=getattr(entry, 'member_id', None),
        ))
    for entry in sorted(admin_fund, key=_order_key):
        kind = _upper(entry.type)
        txns.append(Txn(
            date=_as_date(entry.date),
            kind=kind,
            amount=abs(entry.amount or 0),
            mode=getattr(entry, 'payment_mode', None) or 'CASH',
            source='ADMIN_FUND',
            category=kind,
            description=entry.description,
            member_id=None,
        ))
    for loan in loans:
        if loan.status not in DISBURSED_LOAN_STATUSES:
            continue
        txns.append(Txn(
            date=_as_date(loan.start_date),
            kind='LOAN_GIVEN',
            amount=abs(loan.amount or 0),
            mode=getattr(loan, 'payment_mode', None) or 'CASH',
            source='LOAN',
            category='LOAN_GIVEN',
            description=f"Loan disbursed - member {loan.member_id}",
            member_id=loan.member_id,
        ))
    # sorted() is stable, so same-day rows keep their source order
    return sorted(txns, key=lambda t: t.date)


def liquidity_snapshot(passbook=(), expenses=(), admin_fund=(), loans=()):
    balances = {'cash': 0.0, 'bank': 0.0, 'upi': 0.0}
    for txn in build_transactions(passbook, expenses, admin_fund, loans):
        balances[payment_channel(txn.mode)] += signed_amount(txn)
    cash, bank, upi = (_money(balances[k]) for k in ('cash', 'bank', 'upi'))
    return LiquiditySnapshot(cash=cash, bank=bank, upi=upi, total=_money(cash + bank + upi))


def society_cash_in_hand(passbook=(), expenses=(), admin_fund=(), loans=()):
    """Total money the society holds across every channel."""
    txns = build_transactions(passbook, expenses, admin_fund, loans)
    return _money(sum(signed_amount(t) for t in txns))


def admin_fund_summary(entries):
    total_injected = sum(abs(e.amount) for e in entries if _upper(e.type) == 'INJECT')
    total_withdrawn = sum(abs(e.amount) for e in entries if _upper(e.type) == 'WITHDRAW')
    net_balance = _money(total_injected - total_withdrawn)
    if net_balance > 0:
        position = 'Society owes Admin'
    elif net_balance < 0:
        position = 'Admin owes Society'
    else:
        position = 'Balanced'
    return {
        'total_injected': _money(total_injected),
        'total_withdrawn': _money(total_withdrawn),
        'net_balance': net_balance,
        'position': position,
    }


def admin_fund_running_balances(entries):
    """Return (entry, running_balance) pairs in date and creation order."""
    balance = 0.0
    result = []
    for entry in sorted(entries, key=_order_key):
        if _upper(entry.type) == 'INJECT':
            balance += abs(entry.amount)
        else:
            balance -= abs(entry.amount)
        result.append((entry, _money(balance)))
    return result


def passbook_running_balances(entries):
    """Return (entry, deposit_balance) pairs for one member's passbook."""
    balance = 0.0
    result = []
    for entry in sorted(entries, key=_order_key):
        for kind, amount in passbook_components(entry):
            if kind == 'DEPOSIT':
                balance += amount
            elif kind == 'WITHDRAWAL':
                balance -= amount
        result.append((entry, _money(balance)))
    return result


def maintenance_stats(expense_ledger, members):
    fees_collected = 0.0
    other_income = 0.0
    operating_expenses = 0.0
    for entry in expense_ledger:
        if _upper(entry.type) == 'INCOME':
            if _upper(entry.category) == 'MAINTENANCE_FEE':
                fees_collected += abs(entry.amount)
            else:
                other_income += abs(entry.amount)
        else:
            operating_expenses += abs(entry.amount)
    members = list(members)
    members_paid = sum(1 for m in members if m.has_paid_maintenance)
    return {
        'fees_collected': _money(fees_collected),
        'other_income': _money(other_income),
        'operating_expenses': _money(operating_expenses),
        'net_balance': _money(fees_collected + other_income - operating_expenses),
        'members_paid': members_paid,
        'members_pending': len(members) - members_paid,
        'total_members': len(members),
    }


def _passbook_totals(passbook, start=None, end=None, member_id=None):
    totals = defaultdict(float)
    for entry in passbook:
        if member_id is not None and entry.member_id != member_id:
            continue
        if not _in_range(_as_date(entry.date), start, end):
            continue
        for kind, amount in passbook_components(entry):
            totals[kind] += amount
    return totals


def report_data(passbook, loans, expense_ledger, start=None, end=None):
    """Financial totals, loan health and monthly trends for a date range."""
    start, end = _as_date(start), _as_date(end)
    totals = _passbook_totals(passbook, start, end)

    other_income = 0.0
    total_expenses = 0.0
    monthly = OrderedDict()
    for entry in expense_ledger:
        day = _as_date(entry.date)
        if not _in_range(day, start, end):
            continue
        bucket = monthly.setdefault(day.strftime('%Y-%m'), {'collection': 0.0, 'expense': 0.0})
        if _upper(entry.type) == 'INCOME':
            other_income += abs(entry.amount)
            bucket['collection'] += abs(entry.amount)
        else:
            total_expenses += abs(entry.amount)
            bucket['expense'] += abs(entry.amount)

    for entry in passbook:
        day = _as_date(entry.date)
        if not _in_range(day, start, end):
            continue
        bucket = monthly.setdefault(day.strftime('%Y-%m'), {'collection': 0.0, 'expense': 0.0})
        for kind, amount in passbook_components(entry):
            if is_inflow(kind):
                bucket['collection'] += amount

    interest = totals['INTEREST']
    fines = totals['FINE']
    net_profit = interest + fines + other_income - total_expenses

    disbursed = sum(
        loan.amount for loan in loans
        if loan.status in DISBURSED_LOAN_STATUSES and _in_range(_as_date(loan.start_date), start, end)
    )
    recovered = totals['INSTALLMENT']
    outstanding = sum(loan.remaining_balance for loan in loans if loan.status == 'active')
    recovery_rate = (recovered / disbursed * 100) if disbursed > 0 else 0.0

    trends = [
        {'month': month, 'collection': _money(v['collection']), 'expense': _money(v['expense'])}
        for month, v in sorted(monthly.items())
    ]

    return {
        'financials': {
            'total_deposits': _money(totals['DEPOSIT']),
            'total_collected': _money(
                totals['DEPOSIT'] + totals['INSTALLMENT'] + interest + fines + totals['MIXED']
            ),
            'total_interest_collected': _money(interest),
            'total_fines_collected': _money(fines),
            'other_income': _money(other_income),
            'total_expenses': _money(total_expenses),
            'net_profit': _money(net_profit),
        },
        'loan_health': {
            'total_disbursed': _money(disbursed),
            'total_recovered': _money(recovered),
            'outstanding': _money(outstanding),
            'recovery_rate': _money(recovery_rate),
        },
        'trends': trends,
    }


def dashboard_overview(members, passbook, loans, loan_requests, expenses, admin_fund,
                       low_cash_threshold=5000.0):
    snapshot = liquidity_snapshot(passbook, expenses, admin_fund, loans)
    totals = _passbook_totals(passbook)

    other_income = sum(abs(e.amount) for e in expenses if _upper(e.type) == 'INCOME')
    operating_expenses = sum(abs(e.amount) for e in expenses if _upper(e.type) == 'EXPENSE')
    total_income = totals['INTEREST'] + totals['FINE'] + other_income
    net_profit = total_income - operating_expenses
    profit_margin = (net_profit / total_income * 100) if total_income > 0 else 0.0

    active_members = sum(1 for m in members if m.status == 'active')
    pending_requests = sum(1 for r in loan_requests if r.status == 'pending')
    active_loans = [loan for loan in loans if loan.status == 'active']
    outstanding = sum(loan.remaining_balance for loan in active_loans)

    alerts = []
    if pending_requests:
        alerts.append({
            'type': 'PENDING_LOAN_REQUESTS',
            'message': f"{pending_requests} loan request(s) awaiting approval",
        })
    if snapshot.cash < low_cash_threshold:
        alerts.append({
            'type': 'LOW_CASH',
            'message': f"Cash in hand {snapshot.cash:.2f} is below {low_cash_threshold:.2f}",
        })

    return {
        'financial_health': {
            'total_income': _money(total_income),
            'total_expenses': _money(operating_expenses),
            'net_profit': _money(net_profit),
            'profit_margin': _money(profit_margin),
        },
        'liquidity': snapshot._asdict(),
        'admin_fund': admin_fund_summary(admin_fund),
        'risk': {
            'active_members': active_members,
            'pending_requests': pending_requests,
            'active_loans': len(active_loans),
            'total_deposits': _money(totals['DEPOSIT'] - totals['WITHDRAWAL']),
            'outstanding_loans': _money(outstanding),
        },
        'alerts': alerts,
    }


def cashbook(passbook=(), expenses=(), admin_fund=(), loans=(), start=None, end=None):
    """Chronological IN/OUT rows with a running balance.

    Transactions before ``start`` are folded into the opening balance so the
    closing balance always reflects money actually held at ``end``.
    """
    start, end = _as_date(start), _as_date(end)
    opening = 0.0
    balance = 0.0
    total_in = 0.0
    total_out = 0.0
    rows = []
    for txn in build_transactions(passbook, expenses, admin_fund, loans):
        if start is not None and txn.date < start:
            opening += signed_amount(txn)
            balance = opening
            continue
        if end is not None and txn.date > end:
            break
        inflow = is_inflow(txn.kind)
        if inflow:
            total_in += txn.amount
        else:
            total_out += txn.amount
        balance += signed_amount(txn)
        rows.append({
            'date': txn.date.isoformat(),
            'type': 'IN' if inflow else 'OUT',
            'description': txn.description,
            'category': CATEGORY_LABELS.get(txn.category, 'Other'),
            'amount': _money(txn.amount),
            'mode': payment_channel(txn.mode).upper(),
            'balance': _money(balance),
        })
    return {
        'opening_balance': _money(opening),
        'rows': rows,
        'total_in': _money(total_in),
        'total_out': _money(total_out),
        'closing_balance': _money(balance),
    }


def member_summary(members, passbook, loans):
    rows = []
    for member in members:
        totals = _passbook_totals(passbook, member_id=member.id)
        member_loans = [loan for loan in loans if loan.member_id == member.id]
        pending_loan = sum(loan.remaining_balance for loan in member_loans if loan.status == 'active')
        deposits = totals['DEPOSIT'] - totals['WITHDRAWAL']
        rows.append({
            'member_id': member.id,
            'name': member.name,
            'phone': member.phone,
            'email': member.email,
            'status': member.status,
            'join_date': _as_date(member.join_date).isoformat(),
            'total_deposits': _money(deposits),
            'total_loans': _money(sum(
                loan.amount for loan in member_loans if loan.status in DISBURSED_LOAN_STATUSES
            )),
            'principal_paid': _money(totals['INSTALLMENT']),
            'interest_paid': _money(totals['INTEREST']),
            'fine_paid': _money(totals['FINE']),
            'pending_loan': _money(pending_loan),
            'net_worth': _money(deposits - pending_loan),
        })
    rows.sort(key=lambda r: r['net_worth'], reverse=True)
    return rows


def defaulter_severity(days_overdue):
    if days_overdue > 60:
        return 'Critical'
    if days_overdue > 30:
        return 'Warning'
    return 'Overdue'


def defaulters(loans, members, today=None):
    """Active loans with a balance whose next EMI date has passed."""
    today = _as_date(today) or date.today()
    members_by_id = {m.id: m for m in members}
    rows = []
    for loan in loans:
        if loan.status != 'active' or (loan.remaining_balance or 0) <= 0:
            continue
        due = _as_date(loan.next_due_date)
        if due is None or due >= today:
            continue
        days_overdue = (today - due).days
        member = members_by_id.get(loan.member_id)
        pending_emi = loan.emi_amount or (loan.amount / loan.tenure if loan.tenure else loan.amount)
        rows.append({
            'loan_id': loan.id,
            'member_id': loan.member_id,
            'member_name': member.name if member else 'Unknown Member',
            'member_phone': member.phone if member else '',
            'loan_amount': _money(loan.amount),
            'remaining_balance': _money(loan.remaining_balance),
            'pending_emi': _money(min(pending_emi, loan.remaining_balance)),
            'days_overdue': days_overdue,
            'status': defaulter_severity(days_overdue),
            'next_emi_date': due.isoformat(),
        })
    rows.sort(key=lambda r: r['days_overdue'], reverse=True)
    return rows


def maturity_rows(members, passbook, loans, overrides=(), today=None, tenure=36, interest_percent=12.0):
    """Recurring-deposit maturity projection for every member.

    The share value is the member's ``monthly_deposit_amount``, or their first
    deposit when none is set; the target is that share paid every month of
    the tenure, earning flat ``interest_percent`` on the target unless an
    override fixes the interest.
    """
    today = _as_date(today) or date.today()
    overrides_by_member = {o.member_id: o for o in overrides}
    rows = []
    for member in members:
        own_entries = sorted((e for e in passbook if e.member_id == member.id), key=_order_key)
        totals = _passbook_totals(own_entries)
        current_deposit = totals['DEPOSIT'] - totals['WITHDRAWAL']
        outstanding = sum(
            loan.remaining_balance for loan in loans
            if loan.member_id == member.id and loan.status == 'active'
        )

        monthly_deposit = member.monthly_deposit_amount or 0.0
        if not monthly_deposit:
            for entry in own_entries:
                deposit = dict(passbook_components(entry)).get('DEPOSIT')
                if deposit:
                    monthly_deposit = deposit
                    break

        target_deposit = monthly_deposit * tenure
        projected_interest = target_deposit * interest_percent / 100
        override = overrides_by_member.get(member.id)
        is_override = bool(override and override.is_override)
        manual_interest = (override.manual_interest or 0.0) if override else 0.0
        settled_interest = manual_interest if is_override else projected_interest
        monthly_interest_share = settled_interest / tenure if tenure else 0.0

        months_completed = min(months_between(member.join_date, today), tenure)
        maturity_amount = target_deposit + settled_interest

        rows.append({
            'member_id': member.id,
            'member_name': member.name,
            'join_date': _as_date(member.join_date).isoformat(),
            'current_deposit': _money(current_deposit),
            'outstanding_loan': _money(outstanding),
            'tenure': tenure,
            'months_completed': months_completed,
            'monthly_deposit': _money(monthly_deposit),
            'target_deposit': _money(target_deposit),
            'projected_interest': _money(projected_interest),
            'manual_interest': _money(manual_interest),
            'settled_interest': _money(settled_interest),
            'monthly_interest_share': _money(monthly_interest_share),
            'current_accrued_interest': _money(monthly_interest_share * months_completed),
            'maturity_amount': _money(maturity_amount),
            'net_payable': _money(maturity_amount - outstanding),
            'status': 'matured' if months_completed >= tenure else 'active',
            'is_override': is_override,
        })
    return rows


def audit_data(members, passbook, loans, expenses, admin_fund, overrides=(), start=None, end=None,
               today=None, tenure=36, interest_percent=12.0):
    """Year-end audit pack; the range defaults to the calendar year of ``today``."""
    today = _as_date(today) or date.today()
    start = _as_date(start) or date(today.year, 1, 1)
    end = _as_date(end) or date(today.year, 12, 31)

    txns = build_transactions(passbook, expenses, admin_fund, loans)
    opening = sum(signed_amount(t) for t in txns if t.date < start)
    in_range = [t for t in txns if _in_range(t.date, start, end)]

    # Daily ledger, one row per day with movement
    days = OrderedDict()
    for txn in in_range:
        day = days.setdefault(txn.date, defaultdict(float))
        if txn.kind in ('DEPOSIT', 'INSTALLMENT', 'INTEREST', 'FINE', 'LOAN_GIVEN'):
            day[txn.kind] += txn.amount
        if is_inflow(txn.kind):
            day['IN'] += txn.amount
        else:
            day['OUT'] += txn.amount
    running = opening
    daily_ledger = []
    for day, v in days.items():
        running += v['IN'] - v['OUT']
        daily_ledger.append({
            'date': day.isoformat(),
            'deposit': _money(v['DEPOSIT']),
            'emi': _money(v['INSTALLMENT']),
            'interest': _money(v['INTEREST']),
            'fine': _money(v['FINE']),
            'loan_out': _money(v['LOAN_GIVEN']),
            'cash_in': _money(v['IN']),
            'cash_out': _money(v['OUT']),
            'net_flow': _money(v['IN'] - v['OUT']),
            'running_balance': _money(running),
        })

    # Mode-wise cashbook
    channel_balances = {'cash': 0.0, 'bank': 0.0, 'upi': 0.0}
    for txn in txns:
        if txn.date < start:
            channel_balances[payment_channel(txn.mode)] += signed_amount(txn)
    mode_cashbook = []
    for txn in in_range:
        channel = payment_channel(txn.mode)
        row = {'date': txn.date.isoformat(), 'description': txn.description}
        for name in ('cash', 'bank', 'upi'):
            row[f'{name}_in'] = 0.0
            row[f'{name}_out'] = 0.0
        if is_inflow(txn.kind):
            row[f'{channel}_in'] = _money(txn.amount)
        else:
            row[f'{channel}_out'] = _money(txn.amount)
        channel_balances[channel] += signed_amount(txn)
        row['closing'] = _money(sum(channel_balances.values()))
        mode_cashbook.append(row)

    totals = _passbook_totals(passbook, start, end)
    maturity = maturity_rows(members, passbook, loans, overrides, today, tenure, interest_percent)
    summary = {
        'income': {
            'interest': _money(totals['INTEREST']),
            'fine': _money(totals['FINE']),
            'other': _money(sum(t.amount for t in in_range if t.kind == 'INCOME')),
        },
        'expenses': {
            'ops': _money(sum(t.amount for t in in_range if t.kind == 'EXPENSE')),
            'maturity_interest': _money(sum(r['current_accrued_interest'] for r in maturity)),
        },
        'loans': {
            'issued': _money(sum(t.amount for t in in_range if t.kind == 'LOAN_GIVEN')),
            'recovered': _money(totals['INSTALLMENT']),
            'pending': _money(sum(loan.remaining_balance for loan in loans if loan.status == 'active')),
        },
        'assets': {
            'deposits': _money(sum(m.total_deposits or 0 for m in members)),
        },
    }

    return {
        'period': {'start': start.isoformat(), 'end': end.isoformat()},
        'opening_balance': _money(opening),
        'daily_ledger': daily_ledger,
        'cashbook': mode_cashbook,
        'summary': summary,
        'member_reports': member_summary(members, passbook, loans),
        'defaulters': defaulters(loans, members, today),
        'maturity': maturity,
        'mode_stats': {
            'cash_balance': _money(channel_balances['cash']),
            'bank_balance': _money(channel_balances['bank']),
            'upi_balance': _money(channel_balances['upi']),
        },
    }
