import pytest

import src.storage.db as db_module
import src.storage.redis_client as redis_module
from src.core.config import get_settings
from src.storage.security import decrypt_token, encrypt_token, reset_token_key_cache


class _DummyConnection:
    def execute(self, _statement):
        return 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        del exc_type, exc, tb
        return False


class _DummyEngine:
    def connect(self):
        return _DummyConnection()


class _DummyRedis:
    def ping(self):
        return True


def test_db_connection_success(monkeypatch) -> None:
    monkeypatch.setattr(db_module, "get_engine", lambda: _DummyEngine())
    ok, error = db_module.test_connection()
    assert ok is True
    assert error is None


def test_redis_connection_success(monkeypatch) -> None:
    monkeypatch.setattr(redis_module, "get_client", lambda: _DummyRedis())
    ok, error = redis_module.test_connection()
    assert ok is True
    assert error is None


def test_session_scope_rolls_back_and_reraises(session_factory) -> None:
    with pytest.raises(RuntimeError, match="boom"):
        with db_module.session_scope(session_factory):
            raise RuntimeError("boom")


def test_encrypted_tokens_are_opaque_and_tamper_evident() -> None:
    ciphertext = encrypt_token("ya29.access-token")

    assert "ya29" not in ciphertext
    assert encrypt_token("ya29.access-token") != ciphertext
    assert decrypt_token(ciphertext) == "ya29.access-token"

    tampered = ciphertext[:-4] + ("AAAA" if not ciphertext.endswith("AAAA") else "BBBB")
    with pytest.raises(ValueError):
        decrypt_token(tampered)


def test_token_key_rotation_invalidates_ciphertext(monkeypatch) -> None:
    ciphertext = encrypt_token("secret")

    monkeypatch.setenv("TOKEN_ENCRYPTION_KEY", "rotated-key")
    get_settings.cache_clear()
    reset_token_key_cache()

    with pytest.raises(ValueError):
        decrypt_token(ciphertext)
