#!/usr/bin/env python3
"""
SubTracker Quickstart — the full auth lifecycle in one script.

register → login → profile → refresh → logout → profile (rejected).
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:8000
"""

import sys

import httpx

from _common import BASE, bearer, check_backend, new_credentials


def main():
    check_backend()
    client = httpx.Client(base_url=BASE, timeout=10)
    creds = new_credentials()

    # ── Register ──────────────────────────────────────────────────
    print("\n1. Registering...")
    resp = client.post("/auth/register", json=creds)
    assert resp.status_code == 201, f"Failed: {resp.text}"
    user = resp.json()["user"]
    print(f"   User: {user['email']} ({user['id'][:8]}...)")

    # ── Login (a second session) ──────────────────────────────────
    print("\n2. Logging in...")
    resp = client.post("/auth/login", json={"email": creds["email"], "password": creds["password"]})
    assert resp.status_code == 200, f"Failed: {resp.text}"
    token = resp.json()["token"]
    print(f"   Token expires in {resp.json()['expiresIn']}")

    # ── Wrong password ────────────────────────────────────────────
    resp = client.post("/auth/login", json={"email": creds["email"], "password": "Wrong1Password"})
    print(f"   Wrong password → {resp.status_code} {resp.json()['detail']['message']}")

    # ── Profile ───────────────────────────────────────────────────
    print("\n3. Fetching profile...")
    resp = client.get("/auth/profile", headers=bearer(token))
    assert resp.status_code == 200, f"Failed: {resp.text}"
    profile = resp.json()["user"]
    print(f"   {profile['firstName']} {profile['lastName']} — {profile['currency']}, {profile['timezone']}")

    # ── Refresh ───────────────────────────────────────────────────
    print("\n4. Refreshing token...")
    resp = client.post("/auth/refresh", headers=bearer(token))
    assert resp.status_code == 200, f"Failed: {resp.text}"
    token = resp.json()["token"]
    print("   New token issued for the same session")

    # ── Logout ────────────────────────────────────────────────────
    print("\n5. Logging out (all devices)...")
    resp = client.post("/auth/logout", headers=bearer(token))
    assert resp.status_code == 200, f"Failed: {resp.text}"

    resp = client.get("/auth/profile", headers=bearer(token))
    print(f"   Profile after logout → {resp.status_code}")
    if resp.status_code != 401:
        print("ERROR: token still accepted after logout")
        sys.exit(1)

    print("\nDone.")


if __name__ == "__main__":
    main()
