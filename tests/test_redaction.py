"""
Tests for request body redaction.
"""

from medstaff_audit.audit.redaction import redact
from medstaff_audit.audit.taxonomy import REDACTED, SENSITIVE_FIELDS


class TestRedact:

    def test_sensitive_fields_replaced(self):
        body = {"email": "a@b.c", "password": "secret1", "token": "xyz"}

        assert redact(body) == {"email": "a@b.c", "password": REDACTED, "token": REDACTED}

    def test_every_default_field(self):
        body = {name: "value" for name in SENSITIVE_FIELDS}

        assert set(redact(body).values()) == {REDACTED}

    def test_idempotent(self):
        """Should leave an already redacted body unchanged."""
        body = {"email": "a@b.c", "password": "secret1", "refreshToken": "r"}

        once = redact(body)
        assert redact(once) == once

    def test_original_untouched(self):
        body = {"password": "secret1"}

        redact(body)

        assert body == {"password": "secret1"}

    def test_falsy_values_still_redacted(self):
        assert redact({"password": "", "token": None}) == {"password": REDACTED, "token": REDACTED}

    def test_only_top_level_keys(self):
        """Should not traverse nested objects."""
        body = {"user": {"password": "nested"}}

        assert redact(body) == {"user": {"password": "nested"}}

    def test_field_names_are_case_sensitive(self):
        assert redact({"Password": "x"}) == {"Password": "x"}

    def test_custom_field_set(self):
        assert redact({"ssn": "123", "password": "x"}, ("ssn",)) == {"ssn": REDACTED, "password": "x"}

    def test_non_mapping_bodies(self):
        assert redact(None) == {}
        assert redact("raw text") == {}
        assert redact([{"password": "x"}]) == {}
