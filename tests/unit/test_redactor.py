"""
Unit Tests for Log Redactor
===========================
"""

import pytest

from rapidhtml2png.core.security.redactor import (
    CIRCULAR_MARKER,
    MAX_DEPTH,
    REDACTION_MARKER,
    TRUNCATED_MARKER,
    is_sensitive_key,
    redact,
    redact_event,
)


class TestSensitiveKeys:
    @pytest.mark.parametrize(
        "key",
        [
            "password",
            "PASSWORD",
            "api_key",
            "X-Api-Key",
            "apiKey",
            "token",
            "refreshToken",
            "client_secret",
            "access_token",
            "Authorization",
            "cookie",
            "db_passwd",
        ],
    )
    def test_sensitive(self, key):
        assert is_sensitive_key(key)

    @pytest.mark.parametrize("key", ["username", "html_blocks", "css_url", "tokenizer", 42, None])
    def test_not_sensitive(self, key):
        assert not is_sensitive_key(key)


class TestRedact:
    """Test recursive redaction."""

    def test_redacts_and_preserves_siblings(self):
        data = {
            "password": "p",
            "api_key": "k",
            "token": "t",
            "nested": {"secret": "s", "access_token": "a", "keep": "visible"},
            "user": "alice",
        }
        result = redact(data)

        assert result == {
            "password": REDACTION_MARKER,
            "api_key": REDACTION_MARKER,
            "token": REDACTION_MARKER,
            "nested": {
                "secret": REDACTION_MARKER,
                "access_token": REDACTION_MARKER,
                "keep": "visible",
            },
            "user": "alice",
        }

    def test_does_not_mutate_input(self):
        data = {"password": "p", "items": [{"token": "t"}]}
        redact(data)
        assert data == {"password": "p", "items": [{"token": "t"}]}

    def test_walks_sequences(self):
        result = redact([{"token": "a"}, ({"secret": "b"}, "plain")])
        assert result == [{"token": REDACTION_MARKER}, ({"secret": REDACTION_MARKER}, "plain")]

    def test_sensitive_container_replaced_whole(self):
        assert redact({"authorization": {"scheme": "Bearer", "value": "x"}}) == {
            "authorization": REDACTION_MARKER
        }

    def test_scalars_pass_through(self):
        assert redact("password") == "password"
        assert redact(5) == 5
        assert redact(None) is None

    def test_custom_marker(self):
        assert redact({"password": "p"}, marker="***") == {"password": "***"}

    def test_cycle_is_marked(self):
        data = {"name": "loop"}
        data["self"] = data
        result = redact(data)
        assert result["name"] == "loop"
        assert result["self"] == CIRCULAR_MARKER

    def test_shared_reference_is_not_a_cycle(self):
        shared = {"value": 1}
        result = redact({"a": shared, "b": shared})
        assert result == {"a": {"value": 1}, "b": {"value": 1}}

    def test_depth_limit(self):
        data = current = {}
        for _ in range(MAX_DEPTH + 5):
            current["child"] = {}
            current = current["child"]

        result = redact(data)
        for _ in range(MAX_DEPTH):
            result = result["child"]
        assert result == TRUNCATED_MARKER


class TestRedactEvent:
    def test_structlog_processor(self):
        event = {"event": "Conversion requested", "headers": {"Cookie": "sid=1"}, "password": "x"}
        result = redact_event(None, "info", event)

        assert result["event"] == "Conversion requested"
        assert result["headers"] == {"Cookie": REDACTION_MARKER}
        assert result["password"] == REDACTION_MARKER
