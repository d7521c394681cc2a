"""Shared Supabase client creation.

Clients are cached per (url, key, schema) so a warm Cloud Function instance
reuses one HTTP session for storage uploads and table upserts.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Tuple

from supabase import Client, ClientOptions, create_client

logger = logging.getLogger(__name__)

_clients: Dict[Tuple[str, str, str], Client] = {}
_clients_lock = threading.Lock()


@dataclass(frozen=True)
class SupabaseConfig:
    """Connection settings for a Supabase project.

    Attributes:
        url: Supabase project URL
        key: Supabase API key (anon or service role)
        schema: Database schema for table calls
    """

    url: str
    key: str
    schema: str = "public"

    def cache_key(self) -> Tuple[str, str, str]:
        return (self.url.rstrip("/"), self.key, self.schema or "public")


def get_supabase_client(config: SupabaseConfig) -> Client:
    """Return a Supabase client for *config*, creating it on first use.

    Raises:
        ValueError: If the URL or key is empty
    """
    if not config.url or not config.key:
        raise ValueError("Supabase url and key are required to create a client")

    cache_key = config.cache_key()
    with _clients_lock:
        client = _clients.get(cache_key)
        if client is not None:
            return client

        logger.debug("Creating Supabase client for %s (schema=%s)", cache_key[0], cache_key[2])
        if cache_key[2] != "public":
            client = create_client(cache_key[0], config.key, options=ClientOptions(schema=cache_key[2]))
        else:
            client = create_client(cache_key[0], config.key)
        _clients[cache_key] = client
        return client


def reset_clients() -> None:
    """Drop cached clients (used when credentials rotate and in tests)."""
    with _clients_lock:
        _clients.clear()
