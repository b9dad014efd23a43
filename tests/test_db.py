"""Tests for hivetask.data.db — SqliteIdentityCache."""

from hivetask.data.db import SqliteIdentityCache


class TestIdentityCache:
    def test_empty_cache_loads_none(self, identity_cache):
        assert identity_cache.load() is None

    def test_save_and_load(self, identity_cache):
        identity_cache.save('{"id": "u1"}', "ext-1")
        cached = identity_cache.load()
        assert cached is not None
        assert cached.identity_json == '{"id": "u1"}'
        assert cached.external_id == "ext-1"

    def test_save_replaces_previous(self, identity_cache):
        identity_cache.save('{"id": "u1"}', "ext-1")
        identity_cache.save('{"id": "u2"}', "ext-2")
        cached = identity_cache.load()
        assert cached.identity_json == '{"id": "u2"}'
        assert cached.external_id == "ext-2"

    def test_external_id_only(self, identity_cache):
        identity_cache.save(None, "ext-1")
        cached = identity_cache.load()
        assert cached.identity_json is None
        assert cached.external_id == "ext-1"

    def test_clear(self, identity_cache):
        identity_cache.save('{"id": "u1"}', "ext-1")
        identity_cache.clear()
        assert identity_cache.load() is None

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "nested" / "session.db")
        SqliteIdentityCache(db_path=path).save('{"id": "u1"}', None)
        cached = SqliteIdentityCache(db_path=path).load()
        assert cached.identity_json == '{"id": "u1"}'
        assert cached.external_id is None
