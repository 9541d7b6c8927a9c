"""
Tests for operator accounts and session tokens.
"""

from datetime import timedelta

import pytest

from vitrina.errors import ValidationError
from vitrina.models import SessionToken
from vitrina.services import session_service
from vitrina.services.auth_service import (
    PasswordValidationError,
    authenticate,
    create_user,
    hash_password,
    verify_password,
)


class TestPasswords:
    @pytest.mark.parametrize("password", ["short1", "onlyletters", "12345678", ""])
    def test_weak_passwords_rejected(self, app, password):
        with pytest.raises(PasswordValidationError):
            hash_password(password)

    def test_hash_and_verify(self, app):
        hashed = hash_password("Cajero1234")
        assert hashed != "Cajero1234"
        assert verify_password("Cajero1234", hashed)
        assert not verify_password("Cajero12345", hashed)
        assert not verify_password("Cajero1234", "not-a-bcrypt-hash")


class TestUsers:
    def test_create_and_authenticate(self, db_session, branch):
        user = create_user(" ana ", "Cajera123", role="CASHIER", branch_id=branch.id)

        assert user.username == "ana"
        assert user.role == "cashier"
        assert authenticate("ana", "Cajera123").id == user.id
        assert authenticate("ana", "wrong-pass1") is None
        assert authenticate("nobody", "Cajera123") is None

    def test_duplicate_and_unknown_role(self, db_session, branch):
        create_user("ana", "Cajera123", branch_id=branch.id)
        with pytest.raises(ValidationError):
            create_user("ana", "Cajera123", branch_id=branch.id)
        with pytest.raises(ValidationError):
            create_user("beto", "Cajero123", role="manager")
        with pytest.raises(ValidationError):
            create_user("carla", "Cajera123", branch_id=999999)

    def test_inactive_user_cannot_log_in(self, db_session, cashier):
        cashier.is_active = False
        db_session.commit()
        assert authenticate("cajero", "Cajero1234") is None


class TestSessionTokens:
    def test_token_is_stored_hashed(self, db_session, cashier):
        session, token = session_service.create_session(cashier.id)

        assert session.token_hash == session_service.hash_token(token)
        assert token not in session.token_hash
        context = session_service.validate_session(token)
        assert context.user.id == cashier.id
        assert context.branch_id == cashier.branch_id

    def test_revoked_token_is_rejected(self, db_session, cashier):
        _, token = session_service.create_session(cashier.id)

        assert session_service.revoke_session(token)
        assert session_service.validate_session(token) is None
        assert not session_service.revoke_session(token)

    def test_idle_timeout(self, db_session, cashier):
        session, token = session_service.create_session(cashier.id)
        session.last_used_at = session.last_used_at - session_service.SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        db_session.commit()

        assert session_service.validate_session(token) is None
        db_session.expire_all()
        assert db_session.get(SessionToken, session.id).revoked_reason == "Idle timeout"

    def test_deactivated_user_loses_session(self, db_session, cashier):
        _, token = session_service.create_session(cashier.id)
        cashier.is_active = False
        db_session.commit()

        assert session_service.validate_session(token) is None
