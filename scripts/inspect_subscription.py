"""Utility to inspect (and optionally repair) a user's subscription state.

Run with:

    python -m scripts.inspect_subscription --email someone@example.com
    python -m scripts.inspect_subscription --email someone@example.com --sync

Requires SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY and STRIPE_SECRET_KEY
environment variables (a ``.env`` file in the working directory is read).
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict


def build_sync():
    # Lazy imports so the .env file is loaded before settings are computed
    from grantdesk.billing import StripeBillingService, SubscriptionSync
    from grantdesk.config import CONFIG, load_envs
    from grantdesk.db import create_database_client

    load_envs(os.getcwd())
    db = create_database_client(CONFIG)
    billing = StripeBillingService(CONFIG.stripe_secret_key, product_prefix=CONFIG.stripe_product_prefix)
    return SubscriptionSync(
        db,
        billing,
        standard_price_id=CONFIG.stripe_standard_price_id,
        max_price_id=CONFIG.stripe_max_price_id,
    )


def dump(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, default=str)


def inspect_subscription(email: str, *, sync_profile: bool = False) -> int:
    from grantdesk.billing import ProfileNotFoundError

    sync = build_sync()
    try:
        report = sync.check(email)
    except ProfileNotFoundError:
        print(f"No profile found for {email}", file=sys.stderr)
        return 1

    print("Profile record:\n" + dump(report["profile"]))
    print("\nStripe customers by email:\n" + dump({"customers": report["stripe_customers_by_email"]}))
    print("\nDiagnosis:")
    for line in report["diagnosis"]:
        print(f"  - {line}")

    if sync_profile:
        result = sync.sync(email)
        print("\nSync result:\n" + dump(result.to_dict()))
        return 0 if result.success else 2

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect a user's subscription against Stripe")
    parser.add_argument("--email", required=True, help="Profile e-mail address")
    parser.add_argument("--sync", action="store_true", help="Overwrite the profile with the Stripe state")
    args = parser.parse_args()

    return inspect_subscription(args.email.strip(), sync_profile=args.sync)


if __name__ == "__main__":
    raise SystemExit(main())
