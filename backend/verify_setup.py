#!/usr/bin/env python3
"""
Verify the checkout backend is properly configured.
Run this after setting up .env, before pointing Stripe at the webhook.

    python verify_setup.py
    python verify_setup.py --register USER_ID [--username NAME]
"""
import argparse
import asyncio
import sys

from errors import ConfigurationError, EntitlementStoreError
from payments.provider import StripeProvider
from settings import Settings
from storage.entitlement_store import create_entitlement_store


async def verify(register: str = None, username: str = None) -> bool:
    print("=" * 60)
    print("PREMIUM PASS CHECKOUT VERIFICATION")
    print("=" * 60)

    try:
        settings = Settings.from_env().validate_for_startup()
    except ConfigurationError as e:
        print(f"\n❌ {e}")
        return False

    print(f"\n📋 Configuration:")
    print(f"   Environment: {settings.env}")
    print(f"   Stripe key: {'✅' if settings.stripe_configured else '❌ NOT SET'}")
    print(f"   Webhook secret: {'✅' if settings.stripe_webhook_secret else '❌ NOT SET'}")
    print(f"   Public URL: {settings.resolve_base_url()}")
    print(f"   Store: {settings.entitlement_backend.value}")
    print(f"   Store failure policy: {settings.store_failure_policy.value}")

    print("\n🔄 Checking Stripe...")
    provider = StripeProvider(settings.stripe_secret_key, settings.stripe_webhook_secret)
    status = await provider.check_connectivity()
    if not status["connected"]:
        print(f"❌ Stripe unreachable: {status.get('message', status.get('reason'))}")
        return False
    print(f"✅ Stripe reachable (livemode={status['livemode']})")

    print("\n🔄 Checking entitlement store...")
    store = create_entitlement_store(settings)
    try:
        await store.initialize()
        if not await store.ping():
            print("❌ Store did not answer ping")
            return False
        print("✅ Store reachable")

        if register:
            record = await store.register(register, username)
            print(f"✅ Registered {record.user_id} (premium={record.premium})")
    except (EntitlementStoreError, ValueError) as e:
        print(f"❌ Store check failed: {e}")
        return False
    finally:
        await store.close()

    print("\n" + "=" * 60)
    print("✅ ALL CHECKS PASSED - Ready to take payments!")
    print("=" * 60)
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--register", help="create a user record with premium=false")
    parser.add_argument("--username")
    args = parser.parse_args()

    result = asyncio.run(verify(args.register, args.username))
    sys.exit(0 if result else 1)
