"""Tests for :mod:`journal_federation.tokens.codec`."""

from unittest import TestCase, mock
from datetime import datetime, timedelta

import jwt
from pytz import UTC

from ...exceptions import InvalidToken, ExpiredToken
from .. import codec
from ..codec import Purpose, SignedTokenCodec

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


class TestIssueAndVerify(TestCase):
    """Tokens verify until their expiry, and never after."""

    def setUp(self):
        self.codec = SignedTokenCodec('foosecret')
        self.claims = {'submission_id': 'abc123', 'nested': {'a': [1, 2]}}

    @mock.patch(f'{codec.__name__}._now')
    def test_verify_before_expiry(self, mock_now):
        """Claims come back unchanged while the token is fresh."""
        mock_now.return_value = NOW
        token = self.codec.issue(self.claims, Purpose.EXPORT,
                                 timedelta(minutes=10))
        mock_now.return_value = NOW + timedelta(minutes=9, seconds=59)
        self.assertEqual(self.codec.verify(token, Purpose.EXPORT),
                         self.claims)

    @mock.patch(f'{codec.__name__}._now')
    def test_verify_at_expiry(self, mock_now):
        """A token is no longer valid at the exact moment it expires."""
        mock_now.return_value = NOW
        token = self.codec.issue(self.claims, Purpose.EXPORT,
                                 timedelta(minutes=10))
        mock_now.return_value = NOW + timedelta(minutes=10)
        with self.assertRaises(ExpiredToken):
            self.codec.verify(token, Purpose.EXPORT)

    @mock.patch(f'{codec.__name__}._now')
    def test_expired_is_invalid(self, mock_now):
        """Callers that only handle :class:`.InvalidToken` see expiry too."""
        mock_now.return_value = NOW
        token = self.codec.issue(self.claims, Purpose.SESSION,
                                 timedelta(hours=2))
        mock_now.return_value = NOW + timedelta(days=1)
        with self.assertRaises(InvalidToken):
            self.codec.verify(token, Purpose.SESSION)

    @mock.patch(f'{codec.__name__}._now')
    def test_decode_timestamps(self, mock_now):
        """The decoded token reports when it was issued and when it expires."""
        mock_now.return_value = NOW
        token = self.codec.issue({}, Purpose.PASSWORD_RESET,
                                 timedelta(minutes=10))
        decoded = self.codec.decode(token, Purpose.PASSWORD_RESET)
        self.assertEqual(decoded.issued_at, NOW)
        self.assertEqual(decoded.expires, NOW + timedelta(minutes=10))
        self.assertEqual(decoded.purpose, Purpose.PASSWORD_RESET)
        self.assertEqual(decoded.claims, {})


class TestRejection(TestCase):
    """Anything other than a token we issued for this purpose is rejected."""

    def setUp(self):
        self.codec = SignedTokenCodec('foosecret')

    def test_not_a_token(self):
        """Something other than a JWT is passed."""
        with self.assertRaises(InvalidToken):
            self.codec.verify('definitelynotatoken', Purpose.EXPORT)

    def test_wrong_secret(self):
        """A token signed by another instance is rejected."""
        token = SignedTokenCodec('othersecret').issue(
            {'submission_id': 'abc'}, Purpose.EXPORT, timedelta(minutes=10)
        )
        with self.assertRaises(InvalidToken):
            self.codec.verify(token, Purpose.EXPORT)

    def test_wrong_purpose(self):
        """A token minted for one purpose fails verification for another."""
        token = self.codec.issue({'user_id': '1t00'}, Purpose.PASSWORD_RESET,
                                 timedelta(minutes=10))
        with self.assertRaises(InvalidToken):
            self.codec.verify(token, Purpose.EXPORT)

    def test_missing_purpose(self):
        """Tokens without a purpose are never accepted."""
        exp = datetime.now(tz=UTC) + timedelta(minutes=10)
        token = jwt.encode({'submission_id': 'abc', 'exp': exp,
                            'iat': datetime.now(tz=UTC)},
                           'foosecret', algorithm='HS256')
        with self.assertRaises(InvalidToken):
            self.codec.verify(token, Purpose.EXPORT)

    def test_missing_expiry(self):
        """Tokens without an expiry are never accepted."""
        token = jwt.encode({'submission_id': 'abc', 'purpose': 'export',
                            'iat': datetime.now(tz=UTC)},
                           'foosecret', algorithm='HS256')
        with self.assertRaises(InvalidToken):
            self.codec.verify(token, Purpose.EXPORT)


class TestIssueArguments(TestCase):
    """Issuing enforces a positive lifetime and unreserved claim names."""

    def test_empty_secret(self):
        with self.assertRaises(ValueError):
            SignedTokenCodec('')

    def test_non_positive_lifetime(self):
        with self.assertRaises(ValueError):
            SignedTokenCodec('foo').issue({}, Purpose.EXPORT, timedelta(0))

    def test_reserved_claim(self):
        with self.assertRaises(ValueError):
            SignedTokenCodec('foo').issue({'purpose': 'session'},
                                          Purpose.EXPORT,
                                          timedelta(minutes=1))
