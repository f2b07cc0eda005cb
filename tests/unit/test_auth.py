"""Unit tests for API key authentication"""
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from taskquest import config
from taskquest.api.auth import verify_api_key


def credentials(key: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=key)


class TestVerifyApiKey:
    """Test suite for verify_api_key"""

    @pytest.mark.asyncio
    async def test_valid_key(self, monkeypatch):
        monkeypatch.setattr(config, "API_KEYS", ["key_a", "key_b"])
        assert await verify_api_key(credentials("key_b")) == "key_b"

    @pytest.mark.asyncio
    async def test_invalid_key(self, monkeypatch):
        monkeypatch.setattr(config, "API_KEYS", ["key_a"])
        with pytest.raises(HTTPException) as exc_info:
            await verify_api_key(credentials("not_a_key"))
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_no_keys_configured(self, monkeypatch):
        """All requests are rejected when no keys are configured"""
        monkeypatch.setattr(config, "API_KEYS", [])
        with pytest.raises(HTTPException) as exc_info:
            await verify_api_key(credentials("key_a"))
        assert exc_info.value.status_code == 503
