"""Tests for Stripe signature verification."""

import json

import pytest

from conftest import make_settings, sign_payload
from gatekeeper.services.billing import WebhookVerificationError, WebhookVerifier
from gatekeeper.services.billing.provider import to_plain

PAYLOAD = json.dumps(
    {"id": "evt_1", "object": "event", "type": "customer.subscription.updated", "data": {"object": {}}}
).encode()


@pytest.fixture()
def verifier():
    return WebhookVerifier(make_settings())


def test_valid_signature_returns_event(verifier):
    event = verifier.verify(PAYLOAD, sign_payload(PAYLOAD))
    assert event["id"] == "evt_1"
    assert event["type"] == "customer.subscription.updated"


def test_reserialized_body_fails(verifier):
    signature = sign_payload(PAYLOAD)
    reserialized = json.dumps(json.loads(PAYLOAD), indent=2).encode()
    with pytest.raises(WebhookVerificationError):
        verifier.verify(reserialized, signature)


def test_wrong_secret_fails(verifier):
    with pytest.raises(WebhookVerificationError):
        verifier.verify(PAYLOAD, sign_payload(PAYLOAD, secret="whsec_other"))


@pytest.mark.parametrize("signature", [None, "", "garbage"])
def test_missing_or_garbled_header_fails(verifier, signature):
    with pytest.raises(WebhookVerificationError):
        verifier.verify(PAYLOAD, signature)


def test_signed_garbage_body_fails(verifier):
    body = b"not json"
    with pytest.raises(WebhookVerificationError):
        verifier.verify(body, sign_payload(body))


class TestToPlain:
    def test_dict_passthrough(self):
        data = {"a": 1}
        assert to_plain(data) is data

    def test_object_with_to_dict(self):
        class Obj:
            def to_dict(self):
                return {"b": 2}

        assert to_plain(Obj()) == {"b": 2}

    def test_unsupported(self):
        with pytest.raises(TypeError):
            to_plain(42)
