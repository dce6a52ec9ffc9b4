from supabase_auth import SyncSupportedStorage

from cochera.auth.storage import MemoryStorage


def test_memory_storage_is_a_supabase_token_storage():
    assert isinstance(MemoryStorage(), SyncSupportedStorage)


def test_clear_respects_prefix():
    storage = MemoryStorage()
    storage.set_item("sb-token", "a")
    storage.set_item("sb-refresh", "b")
    storage.set_item("garage_shadow_user", "c")

    storage.clear(prefix="sb-")

    assert storage.keys() == ["garage_shadow_user"]
    assert storage.get_item("sb-token") is None
