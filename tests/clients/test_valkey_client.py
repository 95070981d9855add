"""Tests for ValkeyClient - session store wrapper, redis mocked."""

import json
from unittest.mock import MagicMock

import pytest
import redis

from clients.valkey_client import ValkeyClient


@pytest.fixture
def backend(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr(redis, "from_url", MagicMock(return_value=client))
    return client


@pytest.fixture
def valkey(backend):
    return ValkeyClient("redis://localhost:6379/0")


class TestValkeyClientInit:
    """Connection initialization."""

    def test_connects_and_pings(self, backend):
        ValkeyClient("redis://localhost:6379/0")

        redis.from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)
        backend.ping.assert_called_once()

    def test_unreachable_server_raises(self, backend):
        backend.ping.side_effect = redis.ConnectionError("refused")
        with pytest.raises(redis.ConnectionError):
            ValkeyClient("redis://localhost:6379/0")

    def test_ping_returns_true(self, valkey):
        assert valkey.ping() is True


class TestJsonOperations:

    def test_set_json_without_ttl(self, valkey, backend):
        valkey.set_json("session:abc", {"user_id": "u1"})
        backend.set.assert_called_once_with("session:abc", json.dumps({"user_id": "u1"}))

    def test_set_json_with_ttl(self, valkey, backend):
        valkey.set_json("session:abc", {"user_id": "u1"}, expire_seconds=3600)
        backend.setex.assert_called_once_with("session:abc", 3600, json.dumps({"user_id": "u1"}))

    def test_get_json_roundtrip(self, valkey, backend):
        backend.get.return_value = '{"user_id": "u1"}'
        assert valkey.get_json("session:abc") == {"user_id": "u1"}

    def test_get_json_missing_returns_none(self, valkey, backend):
        backend.get.return_value = None
        assert valkey.get_json("session:missing") is None

    def test_get_json_invalid_raises_valueerror(self, valkey, backend):
        backend.get.return_value = "not json"
        with pytest.raises(ValueError, match="Invalid JSON"):
            valkey.get_json("session:abc")


class TestDelete:

    def test_returns_true_when_existed(self, valkey, backend):
        backend.delete.return_value = 1
        assert valkey.delete("session:abc") is True

    def test_returns_false_when_missing(self, valkey, backend):
        backend.delete.return_value = 0
        assert valkey.delete("session:abc") is False


def test_close_closes_connection(valkey, backend):
    valkey.close()
    backend.close.assert_called_once()
