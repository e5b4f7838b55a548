# payments/tests/test_signatures.py

import hashlib
import hmac

from django.test import SimpleTestCase

from payments.services.signatures import verify_payment_signature, verify_webhook_signature


def _hex(secret, message):
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentSignatureTests(SimpleTestCase):
    def test_valid_signature(self):
        sig = _hex("s3cret", b"order_1|pay_1")
        self.assertTrue(
            verify_payment_signature(
                gateway_order_id="order_1", gateway_payment_id="pay_1", signature=sig, secret="s3cret"
            )
        )

    def test_tampered_inputs_fail(self):
        sig = _hex("s3cret", b"order_1|pay_1")
        flipped = sig[:-1] + ("1" if sig[-1] == "0" else "0")
        cases = [
            {"gateway_order_id": "order_2", "gateway_payment_id": "pay_1", "signature": sig, "secret": "s3cret"},
            {"gateway_order_id": "order_1", "gateway_payment_id": "pay_2", "signature": sig, "secret": "s3cret"},
            {"gateway_order_id": "order_1", "gateway_payment_id": "pay_1", "signature": sig, "secret": "other"},
            {"gateway_order_id": "order_1", "gateway_payment_id": "pay_1", "signature": flipped, "secret": "s3cret"},
        ]
        for kwargs in cases:
            with self.subTest(kwargs=kwargs):
                self.assertFalse(verify_payment_signature(**kwargs))

    def test_missing_values_never_verify(self):
        sig = _hex("", b"order_1|pay_1")
        self.assertFalse(
            verify_payment_signature(gateway_order_id="order_1", gateway_payment_id="pay_1", signature=sig, secret="")
        )
        self.assertFalse(
            verify_payment_signature(gateway_order_id="order_1", gateway_payment_id="pay_1", signature=None, secret="x")
        )
        self.assertFalse(
            verify_payment_signature(gateway_order_id="", gateway_payment_id="pay_1", signature="abc", secret="x")
        )


class WebhookSignatureTests(SimpleTestCase):
    body = b'{"event":"payment.captured"}'

    def test_valid_signature_over_raw_body(self):
        self.assertTrue(
            verify_webhook_signature(raw_body=self.body, signature=_hex("whsec", self.body), secret="whsec")
        )

    def test_reserialized_body_does_not_verify(self):
        sig = _hex("whsec", self.body)
        self.assertFalse(
            verify_webhook_signature(raw_body=b'{"event": "payment.captured"}', signature=sig, secret="whsec")
        )

    def test_missing_signature_or_secret(self):
        self.assertFalse(verify_webhook_signature(raw_body=self.body, signature=None, secret="whsec"))
        self.assertFalse(verify_webhook_signature(raw_body=self.body, signature="", secret="whsec"))
        self.assertFalse(
            verify_webhook_signature(raw_body=self.body, signature=_hex("", self.body), secret="")
        )
