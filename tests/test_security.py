"""
Tests for the security layer — auth, role checks, and payload validation.
"""

from __future__ import annotations

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from security.auth import authenticate_user, create_token, role_allows, verify_token, Role
from security.validation import validate_event_batch, validate_event_record
from core.exceptions import SecurityError, ValidationError


# ═══════════════════════════════════════════════════════════════════════
# Authentication Tests
# ═══════════════════════════════════════════════════════════════════════


class TestAuth:
    """Tests for JWT auth and RBAC."""

    def test_authenticate_valid_admin(self):
        user = authenticate_user("admin", "admin")
        assert user["username"] == "admin"
        assert user["role"] == Role.ADMIN

    def test_authenticate_valid_analyst(self):
        user = authenticate_user("analyst", "analyst")
        assert user["role"] == Role.ANALYST

    def test_authenticate_invalid_password(self):
        with pytest.raises(SecurityError):
            authenticate_user("admin", "wrong")

    def test_authenticate_invalid_user(self):
        with pytest.raises(SecurityError):
            authenticate_user("nonexistent", "test")

    def test_create_and_verify_token(self):
        token = create_token("analyst", Role.ANALYST)
        assert isinstance(token, str)

        payload = verify_token(token)
        assert payload["username"] == "analyst"
        assert payload["role"] == Role.ANALYST

    def test_verify_invalid_token(self):
        with pytest.raises(SecurityError):
            verify_token("invalid.token.here")

    def test_token_signed_with_other_secret_rejected(self, monkeypatch):
        from config.settings import get_settings

        token = create_token("admin", Role.ADMIN)
        monkeypatch.setenv("JWT_SECRET", "rotated")
        get_settings.cache_clear()
        with pytest.raises(SecurityError):
            verify_token(token)


class TestRoleHierarchy:
    @pytest.mark.parametrize(
        "user_role, required, allowed",
        [
            ("admin", Role.ADMIN, True),
            ("admin", Role.ANALYST, True),
            ("admin", Role.VIEWER, True),
            ("analyst", Role.ADMIN, False),
            ("analyst", Role.ANALYST, True),
            ("analyst", Role.VIEWER, True),
            ("viewer", Role.ANALYST, False),
            ("viewer", Role.VIEWER, True),
            ("intruder", Role.VIEWER, False),
        ],
    )
    def test_role_allows(self, user_role, required, allowed):
        assert role_allows(user_role, required) is allowed


# ═══════════════════════════════════════════════════════════════════════
# Validation Tests
# ═══════════════════════════════════════════════════════════════════════


class TestValidation:
    """Tests for sensor payload validation."""

    def test_valid_batch(self):
        records = [{"eventid": "cowrie.login.failed", "src_ip": " 10.0.0.1 "}]
        result = validate_event_batch(records)
        assert result[0]["src_ip"] == "10.0.0.1"

    def test_empty_batch_raises(self):
        with pytest.raises(ValidationError):
            validate_event_batch([])

    def test_non_list_raises(self):
        with pytest.raises(ValidationError):
            validate_event_batch("not a list")

    def test_missing_eventid_raises(self):
        with pytest.raises(ValidationError, match="eventid"):
            validate_event_record({"src_ip": "10.0.0.1"})

    def test_missing_src_ip_raises(self):
        with pytest.raises(ValidationError, match="src_ip"):
            validate_event_record({"eventid": "cowrie.login.failed"})

    def test_truncates_long_message(self):
        record = {"eventid": "cowrie.command.input", "src_ip": "10.0.0.1", "input": "x" * 20_000}
        result = validate_event_record(record)
        assert len(result["input"]) == 10_000  # truncated to MAX_TEXT_LENGTH
        assert len(record["input"]) == 20_000
