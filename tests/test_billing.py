"""
Test suite for billing reconciliation and user profile sync.
"""

import asyncio
import hashlib
import hmac
import json
import time
from unittest.mock import patch

import httpx
import pytest

from roastmywallet import crud, models
from roastmywallet.config import settings
from roastmywallet.errors import ValidationFailed
from roastmywallet.main import app
from roastmywallet.services import billing
from tests.conftest import TestingSessionLocal, make_user

SECRET = 'whsec_test'


def sign(payload: bytes, secret=SECRET, timestamp=None):
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f'{timestamp}.'.encode() + payload, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={digest}'


class TestSignature:
    """Webhook signature verification against the Stripe-Signature header."""

    lease = billing.CredentialLease(webhook_secret=SECRET)

    def test_valid_signature(self):
        payload = b'{"type": "ping"}'
        assert billing.construct_event(payload, sign(payload), self.lease) == {'type': 'ping'}

    def test_tampered_payload_rejected(self):
        header = sign(b'{"type": "ping"}')
        with pytest.raises(ValidationFailed) as exc:
            billing.construct_event(b'{"type": "pong"}', header, self.lease)
        assert exc.value.field == 'signature'

    def test_old_timestamp_rejected(self):
        payload = b'{}'
        with pytest.raises(ValidationFailed):
            billing.construct_event(payload, sign(payload, timestamp=int(time.time()) - 3600), self.lease)

    def test_missing_header_rejected(self):
        with pytest.raises(ValidationFailed):
            billing.construct_event(b'{}', None, self.lease)

    def test_unsigned_body_accepted_without_secret(self):
        event = billing.construct_event(b'{"type": "ping"}', None, billing.CredentialLease())
        assert event['type'] == 'ping'

    def test_non_object_body_rejected(self):
        with pytest.raises(ValidationFailed) as exc:
            billing.construct_event(b'[1, 2]', None, billing.CredentialLease())
        assert exc.value.field == 'body'


class TestCredentialLease:
    """Leases are not reused unless they carry a TTL."""

    def test_zero_ttl_never_valid(self):
        lease = billing.CredentialLease(webhook_secret=SECRET, issued_at=1000.0)
        assert not lease.is_valid(now=1000.0)

    def test_ttl_window(self):
        lease = billing.CredentialLease(webhook_secret=SECRET, issued_at=1000.0, ttl_seconds=60)
        assert lease.is_valid(now=1059.0)
        assert not lease.is_valid(now=1060.0)

    def test_env_lease_when_no_connector(self):
        with patch.object(settings, 'billing_connector_url', ''), \
                patch.object(settings, 'billing_webhook_secret', SECRET):
            assert billing.fetch_credentials().webhook_secret == SECRET

    def test_zero_ttl_refetches_every_time(self):
        with patch.object(billing, '_lease', None), \
                patch.object(billing, 'fetch_credentials', side_effect=lambda: billing.CredentialLease()) as fetch:
            billing.get_credentials()
            billing.get_credentials()
        assert fetch.call_count == 2

    def test_valid_lease_is_reused(self):
        with patch.object(billing, '_lease', None), \
                patch.object(billing, 'fetch_credentials',
                             side_effect=lambda: billing.CredentialLease(ttl_seconds=60)) as fetch:
            first = billing.get_credentials()
            assert billing.get_credentials() is first
        assert fetch.call_count == 1


class TestApplyEvent:
    """Processor events reconciled onto the user row."""

    def test_subscription_checkout_upgrades(self, db):
        make_user(db, 'u1')
        event = {'type': 'checkout.session.completed', 'data': {'object': {
            'client_reference_id': 'u1', 'mode': 'subscription', 'customer': 'cus_1', 'subscription': 'sub_1'}}}
        assert billing.apply_event(db, event) is True
        user = crud.get_user(db, 'u1')
        assert user.tier == models.TIER_PREMIUM
        assert user.billing_customer_id == 'cus_1'
        assert user.billing_subscription_id == 'sub_1'

    def test_annual_report_purchase(self, db):
        make_user(db, 'u2')
        event = {'type': 'checkout.session.completed', 'data': {'object': {
            'metadata': {'user_id': 'u2', 'product': 'annual_report'}, 'mode': 'payment'}}}
        billing.apply_event(db, event)
        user = crud.get_user(db, 'u2')
        assert user.has_annual_report is True
        assert user.tier == models.TIER_FREE

    def test_subscription_deleted_downgrades_by_customer(self, db):
        user = make_user(db, 'u3', tier=models.TIER_PREMIUM)
        crud.update_billing(db, user, billing_customer_id='cus_3', billing_subscription_id='sub_3')
        event = {'type': 'customer.subscription.deleted', 'data': {'object': {'id': 'sub_3', 'customer': 'cus_3'}}}
        billing.apply_event(db, event)
        user = crud.get_user(db, 'u3')
        assert user.tier == models.TIER_FREE
        assert user.billing_subscription_id is None

    def test_past_due_subscription_downgrades(self, db):
        user = make_user(db, 'u4', tier=models.TIER_PREMIUM)
        crud.update_billing(db, user, billing_customer_id='cus_4')
        event = {'type': 'customer.subscription.updated', 'data': {'object': {
            'id': 'sub_4', 'customer': 'cus_4', 'status': 'past_due'}}}
        billing.apply_event(db, event)
        assert crud.get_user(db, 'u4').tier == models.TIER_FREE

    def test_unknown_user_ignored(self, db):
        event = {'type': 'checkout.session.completed', 'data': {'object': {'client_reference_id': 'ghost'}}}
        assert billing.apply_event(db, event) is False

    def test_unknown_event_ignored(self, db):
        make_user(db, 'u5')
        event = {'type': 'invoice.paid', 'data': {'object': {'client_reference_id': 'u5'}}}
        assert billing.apply_event(db, event) is False


class TestUserUpsert:
    """Profile sync never clobbers tier, quota or billing fields."""

    def test_insert_new_user(self, db):
        user = crud.upsert_user(db, 'new', email='a@example.com')
        assert user.tier == models.TIER_FREE
        assert user.monthly_upload_count == 0
        assert user.email == 'a@example.com'

    def test_profile_update_keeps_entitlements(self, db):
        user = make_user(db, 'old', tier=models.TIER_PREMIUM, count=7, has_annual_report=True)
        crud.update_billing(db, user, billing_customer_id='cus_old')
        user = crud.upsert_user(db, 'old', email='new@example.com', first_name='Sam')
        assert user.email == 'new@example.com'
        assert user.first_name == 'Sam'
        assert user.tier == models.TIER_PREMIUM
        assert user.monthly_upload_count == 7
        assert user.has_annual_report is True
        assert user.billing_customer_id == 'cus_old'

    def test_concurrent_first_requests_share_one_row(self, db):
        """Another request inserts the user between our lookup and our insert."""
        other = TestingSessionLocal()
        real_get_user = crud.get_user
        lookups = []

        def lookup_then_lose_race(session, user_id):
            lookups.append(user_id)
            if len(lookups) == 1:
                other.add(models.User(id=user_id, tier=models.TIER_FREE, monthly_upload_count=0,
                                      has_annual_report=False, email='first@example.com'))
                other.commit()
                return None
            return real_get_user(session, user_id)

        try:
            with patch.object(crud, 'get_user', side_effect=lookup_then_lose_race):
                user = crud.upsert_user(db, 'racer', email='second@example.com')
        finally:
            other.close()

        assert user.id == 'racer'
        assert user.email == 'second@example.com'
        assert user.tier == models.TIER_FREE
        assert db.query(models.User).filter(models.User.id == 'racer').count() == 1


class TestWebhookEndpoint:
    """POST /api/billing/webhook"""

    def test_signed_event_applied(self, client, db):
        make_user(db, 'hook-user')
        payload = json.dumps({'type': 'checkout.session.completed', 'data': {'object': {
            'client_reference_id': 'hook-user', 'mode': 'subscription', 'customer': 'cus_h'}}}).encode()
        with patch.object(settings, 'billing_webhook_secret', SECRET):
            response = client.post('/api/billing/webhook', content=payload,
                                   headers={'Stripe-Signature': sign(payload), 'Content-Type': 'application/json'})
        assert response.status_code == 200
        assert response.json() == {'received': True, 'updated': True}
        db.expire_all()
        assert crud.get_user(db, 'hook-user').tier == models.TIER_PREMIUM

    def test_bad_signature_rejected(self, client, db):
        with patch.object(settings, 'billing_webhook_secret', SECRET):
            response = client.post('/api/billing/webhook', content=b'{}', headers={'Stripe-Signature': 't=1,v1=00'})
        assert response.status_code == 400
        assert response.json()['field'] == 'signature'

    def test_slow_credentials_do_not_block_other_requests(self, client):
        """The connector call and the database work run off the event loop."""
        def slow_credentials():
            time.sleep(0.5)
            return billing.CredentialLease()

        async def webhook_alongside_health():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url='http://testserver') as async_client:
                webhook = asyncio.create_task(async_client.post('/api/billing/webhook', content=b'{"type": "ping"}'))
                await asyncio.sleep(0.05)
                started = time.perf_counter()
                health = await async_client.get('/api/health')
                elapsed = time.perf_counter() - started
                return health, elapsed, await webhook

        with patch.object(billing, 'fetch_credentials', side_effect=slow_credentials):
            health, elapsed, webhook = asyncio.run(webhook_alongside_health())

        assert health.status_code == 200
        assert elapsed < 0.3
        assert webhook.json() == {'received': True, 'updated': False}
