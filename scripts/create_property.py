#!/usr/bin/env python3
"""Create a property and print its URL hash.

Usage:
    python scripts/create_property.py --slug maple-court --name "Maple Court"

Environment Variables:
    DATABASE_URL: PostgreSQL connection string (uses the memory store if not set)
    SHARED_FS_ROOT: State directory for the memory store
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main():
    parser = argparse.ArgumentParser(
        description="Create a property",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--slug", required=True, help="Stable external identifier")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument(
        "--contact-requires-auth",
        action="store_true",
        help="Hide contact details from residents without a session",
    )
    args = parser.parse_args()

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    from boardaccess.service.runtime import get_runtime
    from boardaccess.storage.errors import ConstraintViolation

    runtime = get_runtime()
    existing = runtime.store.get_property_by_slug(args.slug)
    if existing:
        print(f"Property {args.slug} already exists (id: {existing.id}, hash: {existing.hash})")
        return

    try:
        prop = runtime.store.create_property(
            args.slug, args.name, contact_requires_auth=args.contact_requires_auth
        )
    except ConstraintViolation as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)

    print(f"Created property {prop.name} (id: {prop.id})")
    print(f"  Hash: {prop.hash}")
    if runtime.settings.site_url:
        print(f"  URL:  {runtime.settings.site_url}/{prop.hash}")


if __name__ == "__main__":
    main()
