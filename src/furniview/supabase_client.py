"""
Supabase client initialization.

Two lazily created singletons are exposed:

- the service-role client, used for backend-only writes to tables and
  buckets (no user session is kept or refreshed);
- the anon client, used to verify user access tokens, sign users in and
  serve public reads.
"""

import logging

from supabase import Client, ClientOptions, create_client

from furniview import config

logger = logging.getLogger(__name__)

_service_client: Client | None = None
_anon_client: Client | None = None


def get_service_client() -> Client:
    global _service_client
    if _service_client is None:
        if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
            raise ValueError(
                "Missing Supabase credentials. Please set SUPABASE_URL and "
                "SUPABASE_SERVICE_ROLE_KEY environment variables."
            )
        options = ClientOptions(auto_refresh_token=False, persist_session=False)
        _service_client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY, options=options)
        logger.info("Supabase service client initialized")
    return _service_client


def get_anon_client() -> Client:
    global _anon_client
    if _anon_client is None:
        if not config.SUPABASE_URL or not config.SUPABASE_ANON_KEY:
            raise ValueError(
                "Missing Supabase credentials. Please set SUPABASE_URL and "
                "SUPABASE_ANON_KEY environment variables."
            )
        _anon_client = create_client(config.SUPABASE_URL, config.SUPABASE_ANON_KEY)
        logger.info("Supabase anon client initialized")
    return _anon_client


def new_session_client() -> Client:
    """A fresh anon client for one sign-in; its session never leaks into shared clients."""
    if not config.SUPABASE_URL or not config.SUPABASE_ANON_KEY:
        raise ValueError(
            "Missing Supabase credentials. Please set SUPABASE_URL and "
            "SUPABASE_ANON_KEY environment variables."
        )
    options = ClientOptions(auto_refresh_token=False, persist_session=False)
    return create_client(config.SUPABASE_URL, config.SUPABASE_ANON_KEY, options=options)


def reset() -> None:
    """Drop both cached clients (used by tests)."""
    global _service_client, _anon_client
    _service_client = None
    _anon_client = None
