import unittest


class WebhookSignatureValidatorTests(unittest.TestCase):
    BODY = b'{"action":"opened","issue":{"number":1}}'

    def test_valid_signature_accepted(self):
        from issuemirror.security import WebhookSignatureValidator, compute_signature

        validator = WebhookSignatureValidator("s3cret")
        self.assertTrue(validator.validate(self.BODY, compute_signature(self.BODY, "s3cret")))

    def test_prefix_is_case_insensitive(self):
        from issuemirror.security import WebhookSignatureValidator, compute_signature

        signature = compute_signature(self.BODY, "s3cret").replace("sha256=", "SHA256=")
        self.assertTrue(WebhookSignatureValidator("s3cret").validate(self.BODY, signature))

    def test_tampered_body_rejected_until_resigned(self):
        from issuemirror.security import WebhookSignatureValidator, compute_signature

        validator = WebhookSignatureValidator("s3cret")
        signature = compute_signature(self.BODY, "s3cret")
        tampered = self.BODY.replace(b"opened", b"deleted")

        self.assertFalse(validator.validate(tampered, signature))
        self.assertTrue(validator.validate(tampered, compute_signature(tampered, "s3cret")))

    def test_missing_or_malformed_header_rejected(self):
        from issuemirror.security import WebhookSignatureValidator, compute_signature

        validator = WebhookSignatureValidator("s3cret")
        digest = compute_signature(self.BODY, "s3cret").split("=", 1)[1]

        self.assertFalse(validator.validate(self.BODY, None))
        self.assertFalse(validator.validate(self.BODY, ""))
        self.assertFalse(validator.validate(self.BODY, digest))
        self.assertFalse(validator.validate(self.BODY, f"sha1={digest}"))

    def test_wrong_secret_rejected(self):
        from issuemirror.security import WebhookSignatureValidator, compute_signature

        validator = WebhookSignatureValidator("s3cret")
        self.assertFalse(validator.validate(self.BODY, compute_signature(self.BODY, "other")))

    def test_no_secret_configured_accepts_everything(self):
        from issuemirror.security import WebhookSignatureValidator

        with self.assertLogs("issuemirror.security", level="WARNING"):
            self.assertTrue(WebhookSignatureValidator("").validate(self.BODY, None))


if __name__ == "__main__":
    unittest.main()
