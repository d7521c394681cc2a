"""Shared Supabase access for deck storage and mirroring."""

from .connection import SupabaseConfig, get_supabase_client, reset_clients

__all__ = ["SupabaseConfig", "get_supabase_client", "reset_clients"]
