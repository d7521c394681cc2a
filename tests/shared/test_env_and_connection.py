import logging

import pytest

from src.shared.db import connection
from src.shared.utils.env import get_env_bool, get_env_int, load_env
from src.shared.utils.logging import resolve_level


def test_load_env_reads_explicit_file(tmp_path, monkeypatch):
    monkeypatch.delenv("DECK_TEST_VALUE", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("DECK_TEST_VALUE=42\n")

    assert load_env(str(env_file)) is True
    assert get_env_int("DECK_TEST_VALUE", 0) == 42


def test_load_env_missing_file(tmp_path):
    assert load_env(str(tmp_path / "absent.env")) is False


def test_typed_getters_reject_junk(monkeypatch):
    monkeypatch.setenv("DECK_TEST_FLAG", "maybe")
    monkeypatch.setenv("DECK_TEST_INT", "three")

    with pytest.raises(ValueError):
        get_env_bool("DECK_TEST_FLAG", False)
    with pytest.raises(ValueError):
        get_env_int("DECK_TEST_INT", 1)


def test_resolve_level_falls_back_to_info():
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level("chatty") == logging.INFO


def test_supabase_clients_are_cached(monkeypatch):
    created = []

    def fake_create_client(url, key, options=None):
        created.append((url, key, options))
        return object()

    monkeypatch.setattr(connection, "create_client", fake_create_client)
    connection.reset_clients()
    try:
        config = connection.SupabaseConfig(url="https://proj.supabase.co/", key="secret")
        first = connection.get_supabase_client(config)
        second = connection.get_supabase_client(connection.SupabaseConfig(url="https://proj.supabase.co", key="secret"))
    finally:
        connection.reset_clients()

    assert first is second
    assert created == [("https://proj.supabase.co", "secret", None)]


def test_supabase_client_requires_credentials():
    with pytest.raises(ValueError):
        connection.get_supabase_client(connection.SupabaseConfig(url="", key="secret"))
