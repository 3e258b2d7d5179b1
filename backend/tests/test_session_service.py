"""
Tests for resolving the calling user from a session handle.
"""

import unittest
from datetime import datetime, timedelta, timezone

from api_fixtures import make_session_factory

from app.models.database_models import User, UserSession
from app.services.session_service import SessionService, extract_session_handle


class TestSessionService(unittest.TestCase):

    def setUp(self):
        self.session_factory = make_session_factory(self)
        self.db = self.session_factory()
        self.addCleanup(self.db.close)
        now = datetime.now(timezone.utc)
        self.db.add_all([
            User(id=1, first_name="Dana", last_name="Levi", email="dana@example.com"),
            User(id=2, email="ops@example.com"),
            UserSession(session_id="live", user_id=1, host_name="ws-7", ip_address="10.0.0.7",
                        expires_at=now + timedelta(hours=1)),
            UserSession(session_id="expired", user_id=1, expires_at=now - timedelta(hours=1)),
            UserSession(session_id="open", user_id=2),
        ])
        self.db.commit()
        self.service = SessionService()

    def test_live_session(self):
        caller = self.service.resolve(self.db, "live")
        self.assertEqual(caller.user_id, 1)
        self.assertEqual(caller.user_name, "Dana Levi")
        self.assertEqual(caller.host_name, "ws-7")
        self.assertEqual(caller.ip_address, "10.0.0.7")

    def test_session_without_expiry_falls_back_to_email(self):
        caller = self.service.resolve(self.db, "open")
        self.assertEqual(caller.user_name, "ops@example.com")

    def test_expired_and_unknown_sessions(self):
        self.assertIsNone(self.service.resolve(self.db, "expired"))
        self.assertIsNone(self.service.resolve(self.db, "missing"))

    def test_extract_session_handle(self):
        self.assertEqual(extract_session_handle("Bearer abc"), "abc")
        self.assertEqual(extract_session_handle("  abc "), "abc")
        self.assertIsNone(extract_session_handle("Bearer "))
        self.assertIsNone(extract_session_handle(None))


if __name__ == '__main__':
    unittest.main()
