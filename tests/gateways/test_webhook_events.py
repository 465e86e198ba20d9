"""Webhook body parsing and signature verification."""

import json

import pytest

from debit_gateways.events import parse_payment_events
from debit_gateways.mock import build_delivery, payment_event
from debit_gateways.signatures import compute_signature, verify_signature
from debit_kernel.exceptions import MalformedWebhookError

SECRET = "whsec_abc"


class TestSignatures:
    def test_valid_signature(self):
        body = b'{"events": []}'
        assert verify_signature(SECRET, body, compute_signature(SECRET, body))

    def test_uppercase_and_whitespace_tolerated(self):
        body = b'{"events": []}'
        signature = " " + compute_signature(SECRET, body).upper() + "\n"
        assert verify_signature(SECRET, body, signature)

    def test_tampered_body(self):
        signature = compute_signature(SECRET, b'{"events": []}')
        assert not verify_signature(SECRET, b'{"events": [1]}', signature)

    def test_wrong_secret(self):
        body = b"{}"
        assert not verify_signature(SECRET, body, compute_signature("other", body))

    @pytest.mark.parametrize("signature", ["\u00e9" * 64, "\u2603", "\ud800"])
    def test_non_ascii_signature_is_a_mismatch(self, signature):
        assert not verify_signature(SECRET, b"{}", signature)

    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature(self, signature):
        assert not verify_signature(SECRET, b"{}", signature)

    def test_known_vector(self):
        # RFC 4231 test case 2
        assert compute_signature("Jefe", b"what do ya want for nothing?") == (
            "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
        )


class TestParsing:
    def test_payment_event(self):
        (event,) = parse_payment_events(build_delivery([payment_event("EV1", "confirmed", "PM1")]))
        assert event.event_id == "EV1"
        assert event.action == "confirmed"
        assert event.gateway_payment_id == "PM1"
        assert event.new_status == "confirmed"
        assert event.payment_reference is None
        assert event.raw["links"] == {"payment": "PM1"}

    @pytest.mark.parametrize(
        "action, status",
        [
            ("paid_out", "confirmed"),
            ("late_failure_settled", "failed"),
            ("charged_back", "chargeback"),
            ("chargeback_settled", "chargeback"),
            ("cancelled", "cancelled"),
        ],
    )
    def test_action_mapping(self, action, status):
        (event,) = parse_payment_events(build_delivery([payment_event("EV1", action, "PM1")]))
        assert event.new_status == status

    def test_resource_metadata_reference(self):
        body = build_delivery([payment_event("EV1", "confirmed", "PM1", payment_reference="abc")])
        assert parse_payment_events(body)[0].payment_reference == "abc"

    def test_metadata_reference_fallback(self):
        raw = payment_event("EV1", "confirmed", "PM1")
        raw["metadata"] = {"payment_id": "xyz"}
        assert parse_payment_events(build_delivery([raw]))[0].payment_reference == "xyz"

    def test_other_resources_and_actions_skipped(self):
        body = build_delivery(
            [
                {"id": "EV1", "action": "created", "resource_type": "mandates", "links": {"mandate": "MD1"}},
                payment_event("EV2", "customer_approval_granted", "PM1"),
                payment_event("EV3", "failed", "PM1"),
            ]
        )
        assert [e.event_id for e in parse_payment_events(body)] == ["EV3"]

    def test_incomplete_events_skipped(self):
        no_link = payment_event("EV1", "failed", "PM1")
        no_link["links"] = {}
        no_id = payment_event("", "failed", "PM1")
        assert parse_payment_events(build_delivery([no_link, no_id, "junk"])) == []

    @pytest.mark.parametrize("links", [["PM1"], "PM1", 7])
    def test_non_mapping_links_skipped(self, links):
        raw = payment_event("EV1", "confirmed", "PM1")
        raw["links"] = links
        assert parse_payment_events(build_delivery([raw])) == []

    @pytest.mark.parametrize("metadata", [["abc"], "abc"])
    def test_non_mapping_metadata_gives_no_reference(self, metadata):
        raw = payment_event("EV1", "confirmed", "PM1")
        raw["resource_metadata"] = metadata
        (event,) = parse_payment_events(build_delivery([raw]))
        assert event.payment_reference is None

    def test_unhashable_action_skipped(self):
        raw = payment_event("EV1", "confirmed", "PM1")
        raw["action"] = ["confirmed"]
        assert parse_payment_events(build_delivery([raw])) == []

    def test_order_preserved(self):
        body = build_delivery([payment_event(f"EV{i}", "submitted", f"PM{i}") for i in range(5)])
        assert [e.event_id for e in parse_payment_events(body)] == [f"EV{i}" for i in range(5)]

    @pytest.mark.parametrize(
        "body",
        [b"not json", b"\xff\xfe", json.dumps([]).encode(), json.dumps({"events": {}}).encode()],
    )
    def test_malformed(self, body):
        with pytest.raises(MalformedWebhookError):
            parse_payment_events(body)
