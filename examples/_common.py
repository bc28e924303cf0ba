"""
Shared helpers for SubTracker examples.

Handles the health check and a throwaway account per run so each
example can focus on its specific workflow.
"""

import sys
import uuid

import httpx

BASE = "http://localhost:8000/api/v1"
PASSWORD = "Demo1Password"


def check_backend() -> None:
    """Verify the backend is reachable and the database is connected."""
    try:
        resp = httpx.get(f"{BASE}/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {BASE}")
        print("Start it with:  subtracker serve --reload")
        sys.exit(1)

    if resp.status_code != 200:
        print(f"ERROR: Health check returned {resp.status_code}")
        sys.exit(1)

    health = resp.json()
    print("Backend health:")
    print(f"  Database: {'✓' if health['database'] == 'ok' else '✗'}")
    print(f"  Redis:    {'✓' if health['redis'] == 'ok' else '✗ (rate limiting off)'}")

    if health["database"] != "ok":
        print("\nERROR: Database is not connected. Check SUBTRACKER_DATABASE_URL.")
        sys.exit(1)


def new_credentials() -> dict:
    """A unique email per run so examples are idempotent."""
    run_id = uuid.uuid4().hex[:8]
    return {
        "email": f"demo-{run_id}@example.com",
        "password": PASSWORD,
        "firstName": "Demo",
        "lastName": f"User {run_id}",
    }


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
