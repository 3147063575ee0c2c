import json

from sqlalchemy.exc import OperationalError

from servixing.models.audit_log import AuditLog
from servixing.models.enums import PaymentStatus, Provider
from servixing.models.payment import Payment
from servixing.models.work_order import WorkOrder
from servixing.services import reconciliation_service
from servixing.services.payment_events import normalize
from servixing.services.reconciliation_service import apply_event, handle_webhook
from servixing.services.webhook_signatures import compute_signature

from conftest import PAYSTACK_SECRET, TestingSessionLocal, audit_actions, signed

CHARGE_SUCCESS = {"event": "charge.success", "data": {"reference": "ref1", "amount": 1000, "currency": "NGN", "status": "success", "id": 9001}}


def _deliver(db, payload, provider=Provider.PAYSTACK):
    body, signature = signed(provider, payload)
    return handle_webhook(db, provider.value, body, signature)


def test_charge_success_marks_payment_and_work_order_paid(db, make_user, make_work_order, make_payment):
    user = make_user()
    wo = make_work_order(user.id)
    p = make_payment(reference="ref1", work_order_id=wo.id, user_id=user.id)

    result = _deliver(db, CHARGE_SUCCESS)

    assert result.outcome == "applied"
    assert result.status == "PAID"
    db.expire_all()
    p = db.get(Payment, p.id)
    assert p.status == PaymentStatus.PAID
    assert p.verified_at is not None
    assert p.meta["transactionId"] == 9001
    wo = db.get(WorkOrder, wo.id)
    assert wo.payment_status == "PAID"
    assert wo.payment_reference == "ref1"
    assert "payment.status_changed" in audit_actions(db)


def test_duplicate_delivery_is_a_no_op(db, make_user, make_work_order, make_payment, mocker):
    user = make_user()
    wo = make_work_order(user.id)
    p = make_payment(reference="ref1", work_order_id=wo.id, user_id=user.id)
    sync = mocker.spy(reconciliation_service, "set_payment_status")

    first = _deliver(db, CHARGE_SUCCESS)
    db.expire_all()
    after_first = db.get(Payment, p.id)
    snapshot = (after_first.status, after_first.updated_at, after_first.verified_at)

    second = _deliver(db, CHARGE_SUCCESS)

    assert first.outcome == "applied"
    assert second.outcome == "duplicate"
    db.expire_all()
    after_second = db.get(Payment, p.id)
    assert (after_second.status, after_second.updated_at, after_second.verified_at) == snapshot
    assert db.get(WorkOrder, wo.id).payment_status == "PAID"
    assert sync.call_count == 1
    actions = audit_actions(db)
    assert actions.count("payment.status_changed") == 1
    assert actions.count("payment.duplicate_event") == 1


def test_invalid_signature_leaves_payment_untouched(db, make_payment, caplog):
    p = make_payment(reference="ref1")
    body = json.dumps(CHARGE_SUCCESS).encode()

    result = handle_webhook(db, "paystack", body, "0" * 128)

    assert result.outcome == "signature_invalid"
    db.expire_all()
    assert db.get(Payment, p.id).status == PaymentStatus.PENDING
    assert "webhook.signature_invalid" in audit_actions(db)
    assert "signature_invalid" in caplog.text


def test_unknown_reference_is_logged_not_raised(db, make_payment):
    make_payment(reference="someone-else")

    result = _deliver(db, {"event": "charge.success", "data": {"reference": "nope", "amount": 1000}})

    assert result.outcome == "unknown_reference"
    assert "webhook.unknown_reference" in audit_actions(db)


def test_reference_is_scoped_to_provider(db, make_payment):
    p = make_payment(reference="ref1", provider=Provider.FLUTTERWAVE)

    result = _deliver(db, CHARGE_SUCCESS, provider=Provider.PAYSTACK)

    assert result.outcome == "unknown_reference"
    db.expire_all()
    assert db.get(Payment, p.id).status == PaymentStatus.PENDING


def test_charge_failed_moves_pending_to_failed_without_work_order_change(db, make_user, make_work_order, make_payment):
    user = make_user()
    wo = make_work_order(user.id)
    p = make_payment(reference="ref1", work_order_id=wo.id)

    result = _deliver(db, {"event": "charge.failed", "data": {"reference": "ref1"}})

    assert result.outcome == "applied"
    db.expire_all()
    assert db.get(Payment, p.id).status == PaymentStatus.FAILED
    assert db.get(WorkOrder, wo.id).payment_status == "PENDING"


def test_refund_webhook_completes_refund(db, make_user, make_work_order, make_payment):
    user = make_user()
    wo = make_work_order(user.id, payment_status="PAID")
    p = make_payment(reference="ref1", status=PaymentStatus.PAID, work_order_id=wo.id, amount="10.00")

    result = _deliver(db, {"event": "refund.processed", "data": {"transaction_reference": "ref1", "amount": 1000}})

    assert result.outcome == "applied"
    db.expire_all()
    p = db.get(Payment, p.id)
    assert p.status == PaymentStatus.REFUNDED
    assert p.amount == 10
    assert p.meta["refundedAmount"] == "10.00"
    assert db.get(WorkOrder, wo.id).payment_status == "REFUNDED"


def test_terminal_payments_ignore_every_event(db, make_payment):
    failed = make_payment(reference="ref-failed", status=PaymentStatus.FAILED)
    refunded = make_payment(reference="ref-refunded", status=PaymentStatus.REFUNDED)

    for ref in ("ref-failed", "ref-refunded"):
        for event in ("charge.success", "charge.failed", "refund.processed", "something.else"):
            data = {"reference": ref, "transaction_reference": ref}
            result = _deliver(db, {"event": event, "data": data})
            assert result.outcome == "invalid_transition"

    db.expire_all()
    assert db.get(Payment, failed.id).status == PaymentStatus.FAILED
    assert db.get(Payment, refunded.id).status == PaymentStatus.REFUNDED
    assert "payment.status_changed" not in audit_actions(db)


def test_invalid_transition_is_absorbed(db, make_payment):
    p = make_payment(reference="ref1", status=PaymentStatus.PENDING)

    result = _deliver(db, {"event": "refund.processed", "data": {"transaction_reference": "ref1"}})

    assert result.outcome == "invalid_transition"
    db.expire_all()
    assert db.get(Payment, p.id).status == PaymentStatus.PENDING
    assert "webhook.invalid_transition" in audit_actions(db)


def test_malformed_json_is_absorbed(db):
    body = b"{not json"

    result = handle_webhook(db, "paystack", body, compute_signature(body, Provider.PAYSTACK, PAYSTACK_SECRET))

    assert result.outcome == "malformed_payload"


def test_event_without_reference_is_malformed(db):
    result = _deliver(db, {"event": "charge.success", "data": {}})
    assert result.outcome == "malformed_payload"


def test_unsupported_provider_is_ignored(db):
    result = handle_webhook(db, "stripe", b"{}", "sig")
    assert result.outcome == reconciliation_service.UNSUPPORTED_PROVIDER


def test_persistence_failure_is_recorded_and_swallowed(db, make_payment, mocker, caplog):
    p = make_payment(reference="ref1")
    mocker.patch.object(reconciliation_service, "_compare_and_set", side_effect=OperationalError("UPDATE", {}, Exception("db down")))

    result = _deliver(db, CHARGE_SUCCESS)

    assert result.outcome == "persistence_failure"
    db.expire_all()
    assert db.get(Payment, p.id).status == PaymentStatus.PENDING
    assert "webhook.persistence_failure" in audit_actions(db)
    assert "webhook processing failed" in caplog.text


def test_concurrent_delivery_applies_once(db, make_user, make_work_order, make_payment, mocker):
    user = make_user()
    wo = make_work_order(user.id)
    p = make_payment(reference="ref1", work_order_id=wo.id)
    event = normalize(Provider.PAYSTACK, CHARGE_SUCCESS)

    # Both deliveries read the payment while it is still PENDING.
    stale = TestingSessionLocal()
    stale_payment = stale.get(Payment, p.id)
    assert stale_payment.status == PaymentStatus.PENDING

    winner = apply_event(db, db.get(Payment, p.id), event, actor="webhook:paystack")
    sync = mocker.spy(reconciliation_service, "set_payment_status")
    loser = apply_event(stale, stale_payment, event, actor="webhook:paystack")
    stale.close()

    assert winner.changed
    assert not loser.changed
    assert sync.call_count == 0
    db.expire_all()
    assert db.get(Payment, p.id).status == PaymentStatus.PAID
    assert audit_actions(db).count("payment.status_changed") == 1


def test_anomaly_audit_rows_point_at_the_payment_when_known(db, make_payment):
    p = make_payment(reference="ref1", status=PaymentStatus.FAILED)

    _deliver(db, CHARGE_SUCCESS)
    _deliver(db, {"event": "charge.success", "data": {"reference": "nope"}})

    rows = {a.action: a for a in db.query(AuditLog).all()}
    assert rows["webhook.invalid_transition"].entity_id == p.id
    assert json.loads(rows["webhook.invalid_transition"].details_json)["reference"] == "ref1"
    assert rows["webhook.unknown_reference"].entity_id == "nope"
