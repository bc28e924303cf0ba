#!/usr/bin/env python3
"""
Local session walkthrough — no server needed.

bootstrap (demo profile) → sign up → update preferences → sync →
sign out → sign in. Uses an in-memory store, so nothing touches disk.
Run with: python examples/local_session.py
"""

import asyncio

from subtracker.client import ClientSessionManager, MemoryStore


async def main():
    mgr = ClientSessionManager(MemoryStore(), navigate=lambda path: print(f"   → navigate {path}"))

    profile = await mgr.bootstrap()
    print(f"1. Bootstrapped as {profile.name} <{profile.email}>")

    profile = await mgr.sign_up("ann@example.com", "Demo1Password", "Ann Lee")
    print(f"2. Signed up {profile.id}, free plan until {profile.subscription.valid_until:%Y-%m-%d}")

    profile = await mgr.update_preferences(dark_mode=True, currency="EUR")
    print(f"3. Preferences: {profile.preferences.currency}, dark mode {profile.preferences.dark_mode}")

    mgr.write_bucket("transactions", [{"payee": "Coffee", "amount": 3.5}])
    result = await mgr.sync_data()
    print(f"4. Sync delivered={result.delivered}, recorded at {mgr.last_synced_at():%H:%M:%S}")

    print("5. Signing out")
    await mgr.sign_out()

    profile = await mgr.sign_in("ann@example.com", "Demo1Password")
    print(f"6. Signed back in as {profile.name}")


if __name__ == "__main__":
    asyncio.run(main())
