"""
Tests for JWT Authentication Middleware.

Verifies token creation, validation, and error handling.
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock, patch

from fastapi import HTTPException
from jose import jwt

# Constants matching the middleware
ALGORITHM = "HS256"
TEST_SECRET = "test-secret-key-for-testing-only"


@pytest.fixture
def mock_secret():
    """Mock the secret key for all tests."""
    with patch('stockledger.auth_middleware._get_secret_key', return_value=TEST_SECRET):
        yield TEST_SECRET


def make_request(cookies=None):
    request = MagicMock()
    request.cookies = cookies or {}
    return request


class TestCreateAccessToken:
    """Tests for create_access_token function."""

    def test_creates_valid_token(self, mock_secret):
        """Token should be decodable and contain the user id."""
        from stockledger.auth_middleware import create_access_token

        token = create_access_token("user-123")

        payload = jwt.decode(token, TEST_SECRET, algorithms=[ALGORITHM])

        assert payload["sub"] == "user-123"
        assert "exp" in payload

    def test_custom_expiration(self, mock_secret):
        """Token should respect custom expiration delta."""
        from stockledger.auth_middleware import create_access_token

        token = create_access_token("user-456", expires_delta=timedelta(minutes=5))

        payload = jwt.decode(token, TEST_SECRET, algorithms=[ALGORITHM])

        assert payload["sub"] == "user-456"


class TestGetCurrentUser:
    """Tests for get_current_user dependency."""

    @pytest.mark.asyncio
    async def test_valid_bearer_token(self, mock_secret):
        from stockledger.auth_middleware import create_access_token, get_current_user

        token = create_access_token("user-789")

        assert await get_current_user(make_request(), f"Bearer {token}") == "user-789"

    @pytest.mark.asyncio
    async def test_cookie_token(self, mock_secret):
        from stockledger.auth_middleware import create_access_token, get_current_user

        token = create_access_token("user-cookie")

        assert await get_current_user(make_request({"auth_token": token}), None) == "user-cookie"

    @pytest.mark.asyncio
    async def test_missing_token_raises_401(self, mock_secret):
        from stockledger.auth_middleware import get_current_user

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(make_request(), None)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_bearer_prefix_raises_401(self, mock_secret):
        """Token without 'Bearer ' prefix should raise 401."""
        from stockledger.auth_middleware import create_access_token, get_current_user

        token = create_access_token("some-user")

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(make_request(), token)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token_raises_401(self, mock_secret):
        from stockledger.auth_middleware import create_access_token, get_current_user

        token = create_access_token("user-old", expires_delta=timedelta(minutes=-5))

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(make_request(), f"Bearer {token}")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_token_with_wrong_secret_raises_401(self, mock_secret):
        """Token signed with different secret should raise 401."""
        from stockledger.auth_middleware import get_current_user

        token = jwt.encode({"sub": "user-abc"}, "wrong-secret-key", algorithm=ALGORITHM)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(make_request(), f"Bearer {token}")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_token_without_sub_raises_401(self, mock_secret):
        """Token without 'sub' claim should raise 401."""
        from stockledger.auth_middleware import get_current_user

        token = jwt.encode({"other": "data"}, TEST_SECRET, algorithm=ALGORITHM)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(make_request(), f"Bearer {token}")

        assert exc_info.value.status_code == 401
