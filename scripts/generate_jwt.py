from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timedelta, timezone

import jwt

RELAY_ROLES = ("admin", "operator")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Mint a bearer token for the relay's /admin and /registerWebhook endpoints."
    )
    parser.add_argument("--secret", default=os.getenv("JWT_SECRET", ""), help="Defaults to $JWT_SECRET.")
    parser.add_argument("--subject", default="relay-operator")
    parser.add_argument(
        "--role",
        action="append",
        choices=RELAY_ROLES,
        help="Repeat for several roles. Defaults to operator (read-only stats).",
    )
    parser.add_argument("--hours", type=int, default=12)
    parser.add_argument("--algorithm", default=os.getenv("JWT_ALGORITHM", "HS256"))
    parser.add_argument("--header", action="store_true", help="Print as an Authorization header.")
    args = parser.parse_args()

    if not args.secret:
        print("no signing secret: pass --secret or set JWT_SECRET", file=sys.stderr)
        return 2

    issued = datetime.now(timezone.utc)
    payload = {
        "sub": args.subject,
        "roles": sorted(set(args.role or ["operator"])),
        "iat": issued,
        "exp": issued + timedelta(hours=args.hours),
    }
    token = jwt.encode(payload, args.secret, algorithm=args.algorithm)
    print(f"Authorization: Bearer {token}" if args.header else token)
    return 0


if __name__ == "__main__":
    sys.exit(main())
