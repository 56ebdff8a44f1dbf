#!/usr/bin/env python3
"""
Unit tests for the signed session cookie
"""

import time
import unittest

import jwt

from common.security import AUDIENCE, mint_session_token, read_session, verify_session_token
from common.settings import settings


class TestSessionToken(unittest.TestCase):

    def test_round_trip_carries_backend_token(self):
        token = mint_session_token("u-alice", "backend-token", {"email": "alice@example.com"})

        claims = verify_session_token(token)

        self.assertEqual(claims["sub"], "u-alice")
        self.assertEqual(claims["bat"], "backend-token")
        self.assertEqual(claims["email"], "alice@example.com")
        self.assertEqual(claims["aud"], AUDIENCE)
        self.assertEqual(claims["exp"] - claims["iat"], settings.session_ttl_seconds)

    def test_missing_or_garbage_token(self):
        self.assertIsNone(read_session(None))
        self.assertIsNone(read_session(""))
        self.assertIsNone(read_session("not-a-jwt"))

    def test_wrong_secret_rejected(self):
        now = int(time.time())
        forged = jwt.encode(
            {"iss": settings.session_issuer, "aud": AUDIENCE, "sub": "u-mallory",
             "iat": now, "exp": now + 60, "bat": "stolen"},
            "some-other-secret",
            algorithm="HS256",
        )
        self.assertIsNone(read_session(forged))

    def test_expired_token_rejected(self):
        now = int(time.time())
        expired = jwt.encode(
            {"iss": settings.session_issuer, "aud": AUDIENCE, "sub": "u-alice",
             "iat": now - 120, "exp": now - 60, "bat": "old"},
            settings.session_secret,
            algorithm="HS256",
        )
        self.assertIsNone(read_session(expired))


if __name__ == "__main__":
    unittest.main()
