#!/usr/bin/env python3
"""
Device Token Generator for the Publish Broker
Usage: cd app && python -m scripts.generate_device_token [--bytes 32]

Prints a fresh shared device token together with the hash prefix the broker
logs for it, so operators can match log lines to a deployed token.
"""
import argparse
import secrets

from dotenv import load_dotenv
load_dotenv()

from core.auth import token_hash_prefix
from core.config import settings


def generate_device_token(num_bytes: int = 32) -> str:
    """Generate a URL-safe random device token"""
    token = secrets.token_urlsafe(num_bytes)

    print("Generated device token:")
    print("=" * 80)
    print(f"Token: {token}")
    print(f"Fingerprint (as logged): {token_hash_prefix(token)}")
    print("=" * 80)
    print("\nServer environment:")
    print(f"ABBA_DEVICE_TOKEN={token}")
    print("\nClient header:")
    print(f"{settings.DEVICE_TOKEN_HEADER}: {token}")
    print("=" * 80)

    return token


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate a broker device token")
    parser.add_argument("--bytes", type=int, default=32, help="Random bytes before encoding")
    args = parser.parse_args()
    generate_device_token(args.bytes)
