from __future__ import annotations

import argparse
from datetime import datetime, timedelta

import jwt


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate JWT for Lead Duplicate Guard API users.")
    parser.add_argument("--secret", required=True)
    parser.add_argument("--subject", required=True)
    parser.add_argument("--name", default="", help="Display name recorded on warnings.")
    parser.add_argument("--roles", default="bdr", help="Comma-separated roles (bdr, admin).")
    parser.add_argument("--hours", type=int, default=12)
    parser.add_argument("--algorithm", default="HS256")
    args = parser.parse_args()

    payload = {
        "sub": args.subject,
        "name": args.name.strip() or args.subject,
        "roles": [item.strip() for item in args.roles.split(",") if item.strip()],
        "exp": datetime.utcnow() + timedelta(hours=args.hours),
    }
    token = jwt.encode(payload, args.secret, algorithm=args.algorithm)
    print(token)


if __name__ == "__main__":
    main()
