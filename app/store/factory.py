from typing import Optional

from ..config import Settings
from ..errors import ConfigError
from .base import RecordStore
from .memory import InMemoryRecordStore


def get_record_store(settings: Settings, backend: Optional[str] = None) -> RecordStore:
    name = (backend or settings.store_provider or "supabase").lower()

    if name == "memory":
        return InMemoryRecordStore()

    if name == "supabase":
        if not (settings.supabase_url and settings.supabase_anon_key):
            raise ConfigError("SUPABASE_URL and SUPABASE_ANON_KEY are required")
        from .supabase import SupabaseRecordStore

        return SupabaseRecordStore(
            settings.supabase_url,
            settings.supabase_data_key,
            timeout=settings.supabase_timeout_seconds,
        )

    raise ConfigError(f"unknown STORE_PROVIDER {name!r}")
