#!/usr/bin/env python3
"""
Helper script to sign a development access token with JWT_SECRET.

Usage:
    JWT_SECRET=... python get_token.py SUBJECT [ROLE] [--expires-in SECONDS]
"""

import argparse

from lexidraft.auth import credential_verifier


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("subject", help="User id placed in the sub claim")
    parser.add_argument("role", nargs="?", default=None)
    parser.add_argument("--expires-in", type=int, default=None)
    args = parser.parse_args()

    token = credential_verifier.issue(
        args.subject, role=args.role, expires_in=args.expires_in
    )

    print("\n" + "=" * 60)
    print(f"Access token for subject {args.subject}:\n{token}\n")
    print("=" * 60)
    print("\nTo test WebSocket, connect to ws://localhost:8000/ws and send:")
    print(f'  {{"type": "authenticate", "token": "{token}"}}')
    print("=" * 60)


if __name__ == "__main__":
    main()
