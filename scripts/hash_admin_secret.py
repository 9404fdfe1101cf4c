#!/usr/bin/env python3
"""Produce the argon2id digest for ADMIN_PASSWORD_HASH.

Usage:
    # Prompt for the secret:
    python scripts/hash_admin_secret.py

    # Or pass it through the environment:
    ADMIN_PASSWORD=SecurePassword123! python scripts/hash_admin_secret.py

Print the digest; put it in ``.env`` as ``ADMIN_PASSWORD_HASH=<digest>``.
"""
from __future__ import annotations

import argparse
import getpass
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

MIN_SECRET_LENGTH = 12


def main():
    parser = argparse.ArgumentParser(
        description="Hash the property admin secret for ADMIN_PASSWORD_HASH",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--check",
        metavar="DIGEST",
        help="Verify the secret against an existing digest instead of hashing",
    )
    args = parser.parse_args()

    secret = os.environ.get("ADMIN_PASSWORD")
    if not secret:
        secret = getpass.getpass("Admin secret: ")
        if args.check is None and getpass.getpass("Repeat: ") != secret:
            print("Error: secrets do not match")
            sys.exit(1)

    from boardaccess.service.passwords import PasswordVerifier

    verifier = PasswordVerifier()
    if args.check is not None:
        ok = verifier.verify(secret, args.check)
        print("match" if ok else "no match")
        sys.exit(0 if ok else 1)

    if len(secret) < MIN_SECRET_LENGTH:
        print(f"Error: secret must be at least {MIN_SECRET_LENGTH} characters")
        sys.exit(1)
    print(verifier.hash_secret(secret))


if __name__ == "__main__":
    main()
