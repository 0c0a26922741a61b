"""
Webhook processing: signature checks, plan transitions and the delivery log.
"""
import json

import pytest
from sqlalchemy import select

from careermentor.core.database import get_db_session, audit_logs, user_profiles
from careermentor.core.errors import (
    InvalidRequestError,
    InvalidSignatureError,
    MissingLinkageError,
    UnknownPlanError,
)
from careermentor.features.billing.provider import BillingProviderError
from careermentor.features.billing.service import get_billing_event, process_webhook_event
from careermentor.features.entitlements.service import apply_plan, get_or_create_profile, get_profile
from careermentor.models.entitlement import Role
from careermentor.tests.helpers import (
    PREMIUM_PRICE,
    PRO_PRICE,
    invoice_failed_event,
    sign,
    signed_delivery,
    subscription_event,
)


def _deliver(event, catalog, webhook_secret, provider=None):
    headers, body = signed_delivery(event, webhook_secret)
    return process_webhook_event(headers, body, catalog=catalog, webhook_secret=webhook_secret, provider=provider)


def _audit_actions():
    with get_db_session() as session:
        return [row.action_type for row in session.execute(select(audit_logs).order_by(audit_logs.c.id))]


def test_subscription_created_upgrades_free_user_to_pro(catalog, webhook_secret):
    get_or_create_profile("user_alice", free_credits=1)

    outcome = _deliver(subscription_event("customer.subscription.created"), catalog, webhook_secret)

    record = get_profile("user_alice")
    assert outcome.handled is True
    assert outcome.user_id == "user_alice"
    assert record.role == Role.PRO
    assert record.analysis_credits == 10
    assert record.subscription_status == "active"
    assert record.subscription_period_end.year == 2026


def test_premium_then_cancel_returns_to_free(catalog, webhook_secret):
    get_or_create_profile("user_alice", free_credits=1)

    _deliver(subscription_event(price_id=PREMIUM_PRICE, event_id="evt_1"), catalog, webhook_secret)
    assert get_profile("user_alice").analysis_credits == -1

    _deliver(
        subscription_event("customer.subscription.deleted", price_id=PREMIUM_PRICE, status="canceled", event_id="evt_2"),
        catalog,
        webhook_secret,
    )
    record = get_profile("user_alice")
    assert record.role == Role.FREE
    assert record.analysis_credits == 1
    assert record.subscription_status == "canceled"
    assert record.subscription_period_end is None


def test_redelivered_update_is_idempotent(catalog, webhook_secret):
    event = subscription_event()
    _deliver(event, catalog, webhook_secret)
    first = get_profile("user_alice")

    _deliver(event, catalog, webhook_secret)
    second = get_profile("user_alice")

    assert first.model_dump(exclude={"updated_at"}) == second.model_dump(exclude={"updated_at"})
    logged = get_billing_event("evt_test_1")
    assert logged["attempts"] == 2
    assert logged["processed"] is True


def test_redelivery_reapplies_after_local_change(catalog, webhook_secret):
    # Overwrite semantics: no dedup cache, so a replay restores the event's values
    event = subscription_event()
    _deliver(event, catalog, webhook_secret)
    apply_plan("user_alice", role=Role.PRO, analysis_credits=3, subscription_status="active", subscription_period_end=None)

    _deliver(event, catalog, webhook_secret)
    assert get_profile("user_alice").analysis_credits == 10


@pytest.mark.parametrize("prior_role,prior_credits", [(Role.FREE, 0), (Role.PRO, 4), (Role.PREMIUM, -1)])
def test_deleted_resets_from_any_role(catalog, webhook_secret, prior_role, prior_credits):
    apply_plan("user_alice", role=prior_role, analysis_credits=prior_credits, subscription_status="active", subscription_period_end=None)

    _deliver(subscription_event("customer.subscription.deleted", status="canceled"), catalog, webhook_secret)

    record = get_profile("user_alice")
    assert (record.role, record.analysis_credits, record.subscription_status) == (Role.FREE, 1, "canceled")


def test_webhook_for_unknown_user_creates_record(catalog, webhook_secret):
    _deliver(subscription_event(user_id="user_ghost"), catalog, webhook_secret)
    record = get_profile("user_ghost")
    assert record.role == Role.PRO
    assert record.analysis_credits == 10


def test_tampered_body_is_rejected_without_mutation(catalog, webhook_secret):
    get_or_create_profile("user_alice", free_credits=1)
    body = json.dumps(subscription_event()).encode("utf-8")
    headers = {"stripe-signature": sign(body, webhook_secret)}
    tampered = body.replace(PRO_PRICE.encode(), PREMIUM_PRICE.encode())

    with pytest.raises(InvalidSignatureError):
        process_webhook_event(headers, tampered, catalog=catalog, webhook_secret=webhook_secret)

    record = get_profile("user_alice")
    assert record.role == Role.FREE
    assert record.analysis_credits == 1
    assert get_billing_event("evt_test_1") is None


def test_wrong_secret_is_rejected(catalog, webhook_secret):
    headers, body = signed_delivery(subscription_event(), "whsec_other")
    with pytest.raises(InvalidSignatureError):
        process_webhook_event(headers, body, catalog=catalog, webhook_secret=webhook_secret)


def test_missing_signature_header(catalog, webhook_secret):
    body = json.dumps(subscription_event()).encode("utf-8")
    with pytest.raises(InvalidSignatureError):
        process_webhook_event({}, body, catalog=catalog, webhook_secret=webhook_secret)


def test_stale_signature_is_rejected(catalog, webhook_secret):
    body = json.dumps(subscription_event()).encode("utf-8")
    headers = {"stripe-signature": sign(body, webhook_secret, timestamp=1_000_000)}
    with pytest.raises(InvalidSignatureError):
        process_webhook_event(headers, body, catalog=catalog, webhook_secret=webhook_secret)


def test_signed_non_json_body(catalog, webhook_secret):
    body = b"not json"
    headers = {"stripe-signature": sign(body, webhook_secret)}
    with pytest.raises(InvalidRequestError):
        process_webhook_event(headers, body, catalog=catalog, webhook_secret=webhook_secret)


def test_missing_signing_secret(catalog):
    headers, body = signed_delivery(subscription_event(), "whsec_test_secret")
    with pytest.raises(BillingProviderError):
        process_webhook_event(headers, body, catalog=catalog, webhook_secret=None)


def test_unknown_price_rejects_event_and_logs_error(catalog, webhook_secret):
    get_or_create_profile("user_alice", free_credits=1)

    with pytest.raises(UnknownPlanError):
        _deliver(subscription_event(price_id="price_not_in_catalog"), catalog, webhook_secret)

    assert get_profile("user_alice").role == Role.FREE
    logged = get_billing_event("evt_test_1")
    assert logged["processed"] is False
    assert logged["error"].startswith("unknown_plan")


def test_missing_linkage_is_an_error(catalog, webhook_secret):
    with pytest.raises(MissingLinkageError):
        _deliver(subscription_event(user_id=None), catalog, webhook_secret)
    with get_db_session() as session:
        assert session.execute(select(user_profiles)).first() is None


def test_deleted_without_linkage_is_an_error(catalog, webhook_secret):
    with pytest.raises(MissingLinkageError):
        _deliver(subscription_event("customer.subscription.deleted", user_id=None), catalog, webhook_secret)


def test_ignored_event_changes_nothing(catalog, webhook_secret):
    get_or_create_profile("user_alice", free_credits=1)
    event = {"id": "evt_charge", "type": "charge.succeeded", "data": {"object": {"id": "ch_1"}}}

    outcome = _deliver(event, catalog, webhook_secret)

    assert outcome.handled is False
    assert outcome.record is None
    assert get_profile("user_alice").role == Role.FREE
    assert get_billing_event("evt_charge")["processed"] is True


def test_payment_failed_marks_past_due_only(catalog, webhook_secret, provider):
    apply_plan("user_alice", role=Role.PRO, analysis_credits=6, subscription_status="active", subscription_period_end=None)
    provider.subscriptions["sub_test_1"] = {"id": "sub_test_1", "metadata": {"supabase_user_id": "user_alice"}}

    outcome = _deliver(invoice_failed_event(), catalog, webhook_secret, provider=provider)

    record = get_profile("user_alice")
    assert outcome.handled is True
    assert record.subscription_status == "past_due"
    assert record.role == Role.PRO
    assert record.analysis_credits == 6


def test_payment_failed_uses_embedded_metadata_without_lookup(catalog, webhook_secret, provider):
    get_or_create_profile("user_alice", free_credits=1)
    _deliver(invoice_failed_event(user_id="user_alice"), catalog, webhook_secret, provider=provider)
    assert get_profile("user_alice").subscription_status == "past_due"


def test_payment_failed_without_subscription_is_ignored(catalog, webhook_secret):
    outcome = _deliver(invoice_failed_event(subscription_id=None), catalog, webhook_secret)
    assert outcome.handled is False


def test_payment_failed_without_provider_fails(catalog, webhook_secret):
    with pytest.raises(BillingProviderError):
        _deliver(invoice_failed_event(), catalog, webhook_secret, provider=None)


def test_transitions_are_audited(catalog, webhook_secret, provider):
    provider.subscriptions["sub_test_1"] = {"id": "sub_test_1", "metadata": {"supabase_user_id": "user_alice"}}
    _deliver(subscription_event(event_id="evt_1"), catalog, webhook_secret)
    _deliver(invoice_failed_event(event_id="evt_2"), catalog, webhook_secret, provider=provider)
    _deliver(subscription_event("customer.subscription.deleted", event_id="evt_3"), catalog, webhook_secret)

    assert _audit_actions() == ["subscription_updated", "payment_failed", "subscription_canceled"]
