"""Tests for token masking and header redaction."""

from tmz.utils.redaction import mask_token, redact_headers

LONG = "eyJ0eXAiOiJKV1QiLCJhbGciOi" * 4


class TestMaskToken:
    def test_long_token_keeps_prefix(self):
        assert mask_token(LONG) == f"eyJ0eX…({len(LONG)} chars)"

    def test_short_token_fully_redacted(self):
        assert mask_token("abc123") == "***REDACTED***"

    def test_empty(self):
        assert mask_token("") == "(none)"
        assert mask_token(None) == "(none)"


class TestRedactHeaders:
    def test_bearer_scheme_kept(self):
        result = redact_headers({"Authorization": f"Bearer {LONG}"})
        assert result["Authorization"] == f"Bearer eyJ0eX…({len(LONG)} chars)"

    def test_skypetoken_scheme_kept(self):
        result = redact_headers({"Authentication": f"skypetoken={LONG}"})
        assert result["Authentication"] == f"skypetoken=eyJ0eX…({len(LONG)} chars)"

    def test_bare_value_masked(self):
        assert redact_headers({"X-Skypetoken": LONG})["X-Skypetoken"] == mask_token(LONG)

    def test_other_headers_untouched(self):
        headers = {"Content-Type": "application/json", "authorization": "Bearer short"}
        result = redact_headers(headers)
        assert result["Content-Type"] == "application/json"
        assert result["authorization"] == "Bearer ***REDACTED***"
        assert headers["authorization"] == "Bearer short"

    def test_none(self):
        assert redact_headers(None) == {}
