"""
API tests for the package desk HTTP surface
"""
import pytest

from pkgdesk.app.api import app, get_desk


@pytest.fixture
def checked_in(client):
    response = client.post('/api/packages', json={
        'householdId': '11a1',
        'barcode': 'SF123456789',
        'recipientName': '王小明',
    })
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.text == 'OK'


def test_service_not_ready_without_desk():
    from fastapi.testclient import TestClient
    app.dependency_overrides.pop(get_desk, None)
    response = TestClient(app).get('/api/packages')
    assert response.status_code == 503
    assert response.json() == {'error': 'service not ready'}


@pytest.mark.usefixtures('residents')
class TestLogin:

    def test_login_success(self, client):
        response = client.post('/api/login', json={'username': 'admin', 'password': 's3cret'})
        assert response.status_code == 200
        assert response.json() == {'success': True, 'username': 'admin'}

    def test_login_failure(self, client):
        response = client.post('/api/login', json={'username': 'admin', 'password': 'nope'})
        assert response.status_code == 401
        assert 'invalid' in response.json()['error']

    def test_login_missing_fields(self, client):
        response = client.post('/api/login', json={'username': 'admin'})
        assert response.status_code == 422
        assert response.json() == {'error': 'password: Field required'}


@pytest.mark.usefixtures('residents')
class TestPackages:

    def test_check_in_returns_package(self, checked_in):
        assert checked_in['householdId'] == '11A1'
        assert checked_in['barcode'] == 'SF123456789'
        assert checked_in['recipientName'] == '王小明'
        assert checked_in['status'] == 'Pending'
        assert checked_in['receivedTime'] == '2025-03-01T02:00:00Z'
        assert checked_in['pickupTime'] is None
        assert checked_in['isOverdueNotified'] is False
        assert 'pickupOTP' not in checked_in

    def test_invalid_household(self, client):
        response = client.post('/api/packages', json={'householdId': '20A1', 'barcode': 'X1'})
        assert response.status_code == 400
        assert 'household id' in response.json()['error']

    def test_duplicate_barcode(self, client, checked_in):
        response = client.post('/api/packages', json={'householdId': '12B2', 'barcode': 'SF123456789'})
        assert response.status_code == 409

    def test_list_and_delete(self, client, checked_in):
        listed = client.get('/api/packages').json()
        assert [p['packageId'] for p in listed] == [checked_in['packageId']]

        response = client.delete(f"/api/packages/{checked_in['packageId']}")
        assert response.status_code == 200
        assert client.get('/api/packages').json() == []

        response = client.delete(f"/api/packages/{checked_in['packageId']}")
        assert response.status_code == 404

    def test_residents(self, client):
        response = client.get('/api/households/11A1/residents')
        assert response.json() == ['王小明', '陳大文']


@pytest.mark.usefixtures('residents')
class TestPickup:

    def test_single_package_flow(self, client, desk, messenger, checked_in, signature):
        pid = checked_in['packageId']
        response = client.post(f'/api/packages/{pid}/otp')
        assert response.status_code == 200
        body = response.json()
        assert body['notified'] == 2
        assert body['expiresAt'] == '2025-03-01T02:05:00Z'
        assert 'code' not in body

        code = desk.store.get_package(pid).pickup_otp.split('|')[0]
        assert code in messenger.texts_to('U-wang')[-1]

        response = client.post(f'/api/packages/{pid}/pickup', json={'otp': code, 'signatureDataURL': signature})
        assert response.status_code == 200
        assert response.json()['status'] == 'Picked Up'
        assert response.json()['signatureDataURL'] == signature

    def test_wrong_code(self, client, checked_in, signature):
        pid = checked_in['packageId']
        client.post(f'/api/packages/{pid}/otp')
        response = client.post(f'/api/packages/{pid}/pickup', json={'otp': 'abcdef', 'signatureDataURL': signature})
        assert response.status_code == 400
        assert response.json() == {'error': 'invalid verification code'}

    def test_otp_for_household_without_accounts(self, client):
        pid = client.post('/api/packages', json={'householdId': '19C3', 'barcode': 'Z-1'}).json()['packageId']
        response = client.post(f'/api/packages/{pid}/otp')
        assert response.status_code == 422

    def test_batch_flow(self, client, desk, signature):
        ids = [
            client.post('/api/packages', json={'householdId': '11A1', 'barcode': f'A-{i}'}).json()['packageId']
            for i in range(3)
        ]
        response = client.post('/api/households/11a1/otp')
        assert response.status_code == 200
        assert response.json()['packageCount'] == 3

        code = desk.store.get_package(ids[0]).pickup_otp.split('|')[0]
        session = client.post('/api/pickup/verify', json={'otp': code})
        assert session.status_code == 200
        data = session.json()
        assert data['user'] == {'name': '王小明', 'householdId': '11A1'}
        assert sorted(p['packageId'] for p in data['packages']) == sorted(ids)

        response = client.post('/api/pickup/confirm', json={'packageIds': ids[:2], 'signatureDataURL': signature})
        assert response.status_code == 200
        assert response.json()['count'] == 2

        statuses = {p['packageId']: p['status'] for p in client.get('/api/packages').json()}
        assert statuses[ids[0]] == 'Picked Up'
        assert statuses[ids[2]] == 'Pending'

    def test_verify_unknown_code(self, client):
        response = client.post('/api/pickup/verify', json={'otp': '999999'})
        assert response.status_code == 400

    def test_confirm_requires_signature(self, client, checked_in):
        response = client.post('/api/pickup/confirm', json={'packageIds': [checked_in['packageId']]})
        assert response.status_code == 400
        assert response.json()['error'] == 'signature required'

    def test_manual_pickup_without_body(self, client, checked_in):
        response = client.post(f"/api/packages/{checked_in['packageId']}/manual-pickup")
        assert response.status_code == 200
        assert response.json()['status'] == 'Picked Up'

        response = client.post(f"/api/packages/{checked_in['packageId']}/manual-pickup")
        assert response.status_code == 409


@pytest.mark.usefixtures('residents')
class TestUsersAndReports:

    def test_list_and_delete_users(self, client):
        users = client.get('/api/users').json()
        assert [u['lineId'] for u in users] == ['U-wang', 'U-chen', 'U-lin']
        assert users[0]['householdId'] == '11A1'
        assert users[0]['name'] == '王小明'

        assert client.delete('/api/users/U-chen').status_code == 200
        assert client.delete('/api/users/U-chen').status_code == 404

    def test_overdue_endpoint(self, client, clock, checked_in):
        clock.advance(hours=49)
        response = client.post('/api/maintenance/overdue')
        assert response.json() == {'notified': 1}

    def test_stats(self, client, checked_in):
        stats = client.get('/api/reports/stats').json()
        assert stats['pending'] == 1
        assert stats['today'] == 1
        assert stats['overdue'] == 0
        assert stats['residents'] == 3
        assert stats['daily'][-1] == {'date': '03/01', 'count': 1}

    def test_timeseries_rejects_unknown_period(self, client):
        assert client.get('/api/reports/timeseries?period=weekly').status_code == 422

    def test_export_csv(self, client, checked_in):
        response = client.get('/api/reports/export?fmt=csv')
        assert response.status_code == 200
        assert response.headers['content-type'].startswith('text/csv')
        assert 'packages.csv' in response.headers['content-disposition']
        assert 'SF123456789' in response.content.decode('utf-8-sig')
