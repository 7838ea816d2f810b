"""
Supabase client initialization.

This module contains *only* the database connection setup. The client is
created on first use so that modules importing the repositories (and the test
suite) do not need credentials until a query is actually made.

Environment variables required:
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import httpx
from dotenv import load_dotenv
from postgrest.exceptions import APIError

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]

# Load environment variables from the project's .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Return the process-wide Supabase client, creating it on first call."""

    # Read credentials from the environment to avoid hard-coding secrets in code.
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_KEY")

    if not supabase_url:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_URL. "
            "Set SUPABASE_URL to your Supabase project URL."
        )

    if not supabase_key:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_KEY. "
            "Set SUPABASE_KEY to your Supabase API key."
        )

    return create_client(supabase_url, supabase_key)


class RepositoryError(RuntimeError):
    """Raised when the datastore rejects or fails an operation."""


def execute(query: Any, action: str) -> Any:
    """
    Execute a PostgREST query and normalize failures to RepositoryError.

    supabase-py raises `APIError` for error responses; older clients instead
    return a response carrying an `error` attribute. Transport failures surface
    as httpx errors.
    """

    try:
        response = query.execute()
    except APIError as exc:
        raise RepositoryError(f"Failed to {action}: {exc.message}") from exc
    except httpx.HTTPError as exc:
        raise RepositoryError(f"Failed to {action}: {exc}") from exc

    error = getattr(response, "error", None)
    if error:
        raise RepositoryError(f"Failed to {action}: {error}")
    return response


__all__ = ["get_supabase", "execute", "RepositoryError"]
