"""Tests for the gateway webhook endpoints."""

from datetime import date

import pytest

from rentledger.billing.errors import StoreUnavailable
from rentledger.payments.gateways import InitiationResult, MtnMomoGateway
from rentledger.payments.reconciler import PaymentReconciler
from rentledger.web import create_app


class StubMtnGateway(MtnMomoGateway):
    """Real MTN callback parsing; initiation always accepted."""

    def __init__(self):
        super().__init__(api_url='https://mtn.test', user_id='u', api_key='k', subscription_key='s')

    def initiate(self, amount, payer_handle, correlation_id, message='Rent Payment'):
        return InitiationResult(accepted=True, gateway_reference='web-ref')


@pytest.fixture
def reconciler(store, policy):
    return PaymentReconciler(store, {'mtn': StubMtnGateway()}, policy)


@pytest.fixture
def client(reconciler):
    app = create_app(reconciler=reconciler)
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def attempt(reconciler, make_lease):
    lease = make_lease(due_day=15, signed_on=date(2026, 5, 15))
    return reconciler.initiate(lease.id, 'mtn', 250000, '0771234567')


def payment_rows(store, lease_id):
    return [t for t in store.list_transactions(lease_id) if t.type == 'payment']


class TestGatewayCallback:

    def test_successful_callback_credits_once(self, client, store, attempt):
        body = {'referenceId': 'web-ref', 'status': 'SUCCESSFUL', 'amount': '250000'}

        first = client.post('/api/webhooks/mtn', json=body)
        second = client.post('/api/webhooks/mtn', json=body)

        assert first.status_code == 200
        assert first.get_json()['outcome'] == 'completed'
        assert second.get_json()['outcome'] == 'already_completed'
        assert len(payment_rows(store, attempt.lease_id)) == 1
        assert store.get_attempt(attempt.id).status == 'completed'

    def test_malformed_callback_is_acknowledged(self, client, store, attempt):
        response = client.post('/api/webhooks/mtn', json={'status': 'SUCCESSFUL'})

        assert response.status_code == 200
        assert response.get_json() == {'status': 'ignored'}
        assert store.get_attempt(attempt.id).status == 'pending'

    def test_non_json_body_is_acknowledged(self, client):
        response = client.post('/api/webhooks/mtn', data='not json', content_type='text/plain')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'ignored'}

    def test_unknown_reference_is_404(self, client):
        response = client.post('/api/webhooks/mtn', json={'referenceId': 'nobody', 'status': 'SUCCESSFUL'})

        assert response.status_code == 404
        assert 'not found' in response.get_json()['error']

    def test_unknown_gateway_is_404(self, client):
        response = client.post('/api/webhooks/mpesa', json={'referenceId': 'x', 'status': 'SUCCESSFUL'})
        assert response.status_code == 404

    def test_store_outage_asks_gateway_to_retry(self, client, reconciler, monkeypatch):
        def unavailable(gateway_name, payload):
            raise StoreUnavailable('database is locked')

        monkeypatch.setattr(reconciler, 'handle_callback', unavailable)

        response = client.post('/api/webhooks/mtn', json={'referenceId': 'web-ref', 'status': 'SUCCESSFUL'})
        assert response.status_code == 503


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'
