from datetime import datetime, timedelta

import pytest

import society_services as services
import subscriptions
from app_models import db, Subscription, User
from security import hash_password
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, login

ROOT_EMAIL = 'root@saanify.test'
ROOT_PASSWORD = 'rootpass1'


@pytest.fixture
def super_admin(app):
    user = User(email=ROOT_EMAIL, name='Platform Admin', password_hash=hash_password(ROOT_PASSWORD),
                role='SUPER_ADMIN', status='ACTIVE')
    db.session.add(user)
    db.session.commit()
    return user


# Authentication
def test_login_rejects_bad_password(client, admin_user):
    response = login(client, ADMIN_EMAIL, 'wrong-password')
    assert response.status_code == 401
    assert response.get_json()['success'] is False


def test_login_and_me(admin_client):
    me = admin_client.get('/api/me').get_json()
    assert me['user']['role'] == 'CLIENT_ADMIN'
    assert 'MANAGE_ROLES' in me['permissions']


def test_requests_without_session_are_rejected(client):
    assert client.get('/api/client/dashboard').status_code == 401
    assert client.get('/api/me').status_code == 401


def test_logout_clears_session(admin_client):
    admin_client.post('/api/logout')
    assert admin_client.get('/api/client/dashboard').status_code == 401


def test_invalid_form_returns_field_errors(admin_client):
    response = admin_client.post('/api/client/members', json={'phone': '9876543210'})
    assert response.status_code == 400
    body = response.get_json()
    assert body['success'] is False
    assert 'name' in body['errors']


def test_security_headers(admin_client):
    response = admin_client.get('/api/client/dashboard')
    assert response.headers['X-Frame-Options'] == 'DENY'
    assert 'no-store' in response.headers['Cache-Control']


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['database'] == 'ok'


# Society books
def test_member_deposit_loan_flow(admin_client):
    response = admin_client.post('/api/client/members', json={'name': 'Ravi Kumar', 'phone': '9876500001'})
    assert response.status_code == 201
    member_id = response.get_json()['member']['id']

    response = admin_client.post('/api/client/passbook', json={
        'member_id': member_id, 'deposit_amount': 10000, 'payment_mode': 'CASH', 'date': '2024-01-05',
    })
    assert response.status_code == 201
    assert response.get_json()['entry']['balance'] == 10000.0

    response = admin_client.post('/api/client/loan-requests', json={'member_id': member_id, 'amount': 9000})
    assert response.status_code == 400
    assert response.get_json()['max_eligible'] == 8000.0

    response = admin_client.post('/api/client/loan-requests', json={'member_id': member_id, 'amount': 5000,
                                                                     'purpose': 'Dairy cattle'})
    assert response.status_code == 201
    request_id = response.get_json()['request']['id']

    response = admin_client.post(f'/api/client/loan-requests/{request_id}/approve',
                                 json={'payment_mode': 'BANK', 'date': '2024-01-10'})
    assert response.status_code == 200
    loan = response.get_json()['loan']
    assert loan['emi_amount'] == 416.67
    assert loan['next_due_date'] == '2024-02-10'

    liquidity = admin_client.get('/api/client/liquidity').get_json()
    assert liquidity['liquidity'] == {'cash': 10000.0, 'bank': -5000.0, 'upi': 0.0, 'total': 5000.0}
    assert liquidity['cash_in_hand'] == 5000.0

    loans = admin_client.get('/api/client/loans').get_json()['loans']
    assert loans[0]['monthly_interest_due'] == 50.0

    dashboard = admin_client.get('/api/client/dashboard').get_json()
    assert dashboard['risk']['active_loans'] == 1
    assert dashboard['risk']['total_deposits'] == 10000.0

    cashbook = admin_client.get('/api/client/reports/cashbook').get_json()
    assert cashbook['closing_balance'] == 5000.0


def test_reports_endpoints(admin_client, society, add_member):
    member = add_member()
    services.post_passbook_entry(society, member.id, deposit=2000, interest=100)
    services.add_expense(society, 50, 'STATIONERY', 'Registers')

    summary = admin_client.get('/api/client/reports/summary').get_json()
    assert summary['financials']['net_profit'] == 50.0

    assert admin_client.get('/api/client/reports/member-summary').get_json()['members'][0]['total_deposits'] == 2000.0
    assert admin_client.get('/api/client/reports/defaulters?as_of=2030-01-01').get_json()['defaulters'] == []
    audit = admin_client.get('/api/client/reports/audit?start=2000-01-01&end=2100-12-31').get_json()
    assert audit['mode_stats']['cash_balance'] == 2050.0
    assert admin_client.get('/api/client/maturity').get_json()['maturity'][0]['monthly_deposit'] == 2000.0
    assert admin_client.get('/api/client/reports/summary?start=not-a-date').status_code == 400


def test_cashbook_csv_export(admin_client, society, add_member):
    member = add_member()
    services.post_passbook_entry(society, member.id, deposit=500)

    response = admin_client.get('/api/client/exports/cashbook.csv')

    assert response.status_code == 200
    assert response.mimetype == 'text/csv'
    assert 'attachment' in response.headers['Content-Disposition']
    lines = response.get_data(as_text=True).splitlines()
    assert lines[0] == 'date,type,category,description,mode,amount,balance'
    assert len(lines) == 2
    assert admin_client.get('/api/client/exports/unknown.csv').status_code == 404


def test_admin_fund_withdrawal_requires_force(admin_client):
    response = admin_client.post('/api/client/admin-fund', json={
        'amount': 1000, 'type': 'WITHDRAW', 'description': 'Repay admin',
    })
    assert response.status_code == 400
    assert response.get_json()['requires_force'] is True

    response = admin_client.post('/api/client/admin-fund', json={
        'amount': 1000, 'type': 'WITHDRAW', 'description': 'Repay admin', 'force': True,
    })
    assert response.status_code == 201
    summary = admin_client.get('/api/client/admin-fund').get_json()['summary']
    assert summary['position'] == 'Admin owes Society'


def test_settings_api(admin_client):
    assert admin_client.put('/api/client/settings', json={'interest_rate': 150}).status_code == 400

    response = admin_client.put('/api/client/settings', json={'fine_amount': 25})
    assert response.status_code == 200
    assert response.get_json()['settings']['fine_amount'] == 25

    response = admin_client.post('/api/client/settings/reset')
    assert response.get_json()['settings']['fine_amount'] == 10.0


def test_settings_api_rejects_non_numeric_values(admin_client):
    response = admin_client.put('/api/client/settings', json={'interest_rate': 'abc'})
    assert response.status_code == 400
    assert response.get_json() == {'success': False, 'error': 'interest_rate must be a number'}

    response = admin_client.put('/api/client/settings', json={'society_name': None})
    assert response.status_code == 400
    assert admin_client.get('/api/client/settings').get_json()['settings']['society_name'] == 'Green Valley Society'


def test_member_monthly_deposit_drives_maturity(admin_client):
    response = admin_client.post('/api/client/members', json={
        'name': 'Ravi Kumar', 'phone': '9876500001', 'monthly_deposit_amount': 500,
    })
    assert response.status_code == 201
    member = response.get_json()['member']
    assert member['monthly_deposit_amount'] == 500.0

    admin_client.post('/api/client/passbook', json={'member_id': member['id'], 'deposit_amount': 20000})
    row = admin_client.get('/api/client/maturity').get_json()['maturity'][0]
    assert row['monthly_deposit'] == 500.0
    assert row['target_deposit'] == 18000.0

    response = admin_client.put(f"/api/client/members/{member['id']}", json={'monthly_deposit_amount': 800})
    assert response.status_code == 200
    assert admin_client.get('/api/client/maturity').get_json()['maturity'][0]['monthly_deposit'] == 800.0


def test_activity_log_records_login(admin_client):
    logs = admin_client.get('/api/client/activity-logs').get_json()['logs']
    assert logs[0]['action'] == 'LOGIN'


# Roles
def test_treasurer_cannot_manage_users(client, society):
    services.add_user(society, 'Tara', 'tara@greenvalley.test', 'secret123', 'TREASURER')
    assert login(client, 'tara@greenvalley.test', 'secret123').status_code == 200

    assert client.get('/api/client/dashboard').status_code == 200
    response = client.post('/api/client/users', json={
        'name': 'Intruder', 'email': 'x@greenvalley.test', 'password': 'secret123', 'role': 'CLIENT_ADMIN',
    })
    assert response.status_code == 403


def test_permission_toggle_takes_effect(admin_client, society):
    services.add_user(society, 'Tara', 'tara@greenvalley.test', 'secret123', 'TREASURER')
    response = admin_client.post('/api/client/roles/toggle', json={'role': 'TREASURER', 'permission': 'VIEW_USERS'})
    assert response.status_code == 200
    assert 'VIEW_USERS' in response.get_json()['permissions']

    admin_client.post('/api/logout')
    login(admin_client, 'tara@greenvalley.test', 'secret123')
    assert admin_client.get('/api/client/users').status_code == 200


def test_member_portal(client, society, add_member):
    member = add_member(phone='9876512345')
    other = add_member()
    services.post_passbook_entry(society, member.id, deposit=3000)
    assert login(client, f'9876512345@society{society.id}.members', '9876512345').status_code == 200

    passbook = client.get('/api/client/me/passbook').get_json()
    assert passbook['member']['id'] == member.id
    assert len(passbook['entries']) == 1

    assert client.get('/api/client/members').status_code == 403
    response = client.post('/api/client/loan-requests', json={'member_id': other.id, 'amount': 1000})
    assert response.status_code == 403
    response = client.post('/api/client/loan-requests', json={'member_id': member.id, 'amount': 2000})
    assert response.status_code == 201


# Tenancy
def test_other_society_rows_are_invisible(admin_client):
    other = subscriptions.create_society('Hill Top Society', 'office@hilltop.test', 'admin@hilltop.test',
                                         'secret123')
    stranger = services.add_member(other, 'Stranger', '9000011111')

    assert admin_client.get(f'/api/client/members/{stranger.id}').status_code == 404
    response = admin_client.post('/api/client/passbook', json={'member_id': stranger.id, 'deposit_amount': 100})
    assert response.status_code == 404
    assert admin_client.get('/api/client/members').get_json()['members'] == []


# Subscription enforcement
def test_expired_society_can_only_renew(admin_client, society):
    society.trial_ends_at = datetime.utcnow() - timedelta(days=1)
    db.session.commit()

    response = admin_client.get('/api/client/dashboard')
    assert response.status_code == 402
    assert response.get_json()['subscription']['status'] == 'EXPIRED'

    assert admin_client.get('/api/client/subscription').status_code == 200
    assert admin_client.get('/api/client/plans').status_code == 200
    assert admin_client.get('/api/client/data/export').status_code == 200
    response = admin_client.post('/api/client/subscription/orders', json={'plan_code': 'BASIC'})
    assert response.status_code == 201


def test_locked_society_cannot_log_in(client, society, admin_user):
    subscriptions.set_society_status(society, 'LOCK', ROOT_EMAIL)
    assert login(client, ADMIN_EMAIL, ADMIN_PASSWORD).status_code == 403


def test_lock_ends_running_session(admin_client, society):
    subscriptions.set_society_status(society, 'LOCK', ROOT_EMAIL)
    assert admin_client.get('/api/client/dashboard').status_code == 403


# Platform administration
def test_admin_api_requires_super_admin(admin_client):
    assert admin_client.get('/api/admin/dashboard').status_code == 403


def test_super_admin_onboards_client(client, super_admin):
    assert login(client, ROOT_EMAIL, ROOT_PASSWORD).status_code == 200

    response = client.post('/api/admin/clients', json={
        'name': 'River Side Society', 'email': 'office@riverside.test',
        'admin_email': 'admin@riverside.test', 'admin_password': 'secret123',
    })
    assert response.status_code == 201
    client_id = response.get_json()['client']['id']

    detail = client.get(f'/api/admin/clients/{client_id}').get_json()
    assert detail['client']['subscription_plan'] == 'TRIAL'
    assert detail['subscription']['days_remaining'] in (14, 15)

    response = client.post(f'/api/admin/clients/{client_id}/status', json={'action': 'LOCK'})
    assert response.get_json()['client']['status'] == 'LOCKED'

    response = client.post(f'/api/admin/clients/{client_id}/activate', json={'plan_code': 'PRO'})
    assert response.status_code == 200
    assert response.get_json()['subscription']['amount_paid'] == 7000.0

    assert client.get('/api/admin/clients?status=locked').get_json()['clients'][0]['id'] == client_id
    assert client.get('/api/admin/dashboard').get_json()['revenue'] == 7000.0


def test_manual_payment_approval(admin_client, society, super_admin):
    response = admin_client.post('/api/client/subscription/orders',
                                 json={'plan_code': 'BASIC', 'payment_reference': 'UTR-4411'})
    assert response.status_code == 201
    order_id = response.get_json()['order']['id']
    admin_client.post('/api/logout')

    login(admin_client, ROOT_EMAIL, ROOT_PASSWORD)
    payments = admin_client.get('/api/admin/payments?status=pending').get_json()['payments']
    assert payments[0]['society_name'] == 'Green Valley Society'

    for _ in range(2):
        response = admin_client.post(f'/api/admin/payments/{order_id}/approve')
        assert response.status_code == 200
        assert response.get_json()['payment']['status'] == 'approved'

    assert Subscription.query.filter_by(society_id=society.id).count() == 1
    assert society.subscription_plan == 'BASIC'
    assert admin_client.post(f'/api/admin/payments/{order_id}/reject', json={}).status_code == 400
