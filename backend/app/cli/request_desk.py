"""Operator CLI: fetch request analytics, run an SLA sweep, or mint a dev token."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import cast
from urllib import parse, request
from uuid import UUID


def build_analytics_url(*, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/api/v1/requests/analytics"


def fetch_request_analytics(
    *,
    base_url: str,
    token: str,
    timeout_seconds: int,
) -> dict[str, object]:
    """Fetch dashboard counters from the backend analytics endpoint."""
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    url = build_analytics_url(base_url=base_url)
    if parse.urlparse(url).scheme not in {"http", "https"}:
        msg = f"unsupported URL scheme: {url}"
        raise ValueError(msg)
    req = request.Request(url, headers=headers, method="GET")
    with request.urlopen(req, timeout=timeout_seconds) as response:  # noqa: S310
        payload = response.read().decode("utf-8")
    decoded = json.loads(payload)
    if not isinstance(decoded, dict):
        msg = "analytics payload is not a JSON object"
        raise ValueError(msg)
    return cast(dict[str, object], decoded)


async def _run_sla_sweep() -> dict[str, object]:
    from app.db.session import async_session_maker
    from app.services.sla_sweep import SLASweeper

    async with async_session_maker() as session:
        result = await SLASweeper(session).run_once()
    return {"scanned": result.scanned, "updated": result.updated, "breached": result.breached}


def _issue_token(user_id: str, ttl_hours: int) -> dict[str, object]:
    from datetime import timedelta

    from app.core.auth import create_access_token

    token = create_access_token(UUID(user_id), ttl=timedelta(hours=ttl_hours))
    return {"user_id": user_id, "token": token}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m app.cli.request_desk",
        description="Request desk operator commands.",
    )
    parser.add_argument(
        "--compact",
        action="store_true",
        help="Print single-line JSON output.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    analytics = commands.add_parser("analytics", help="Fetch request analytics from the API.")
    analytics.add_argument("--base-url", default="http://localhost:8000")
    analytics.add_argument("--token", default="")
    analytics.add_argument("--timeout-seconds", type=int, default=12)

    commands.add_parser("sla-sweep", help="Recompute SLA status and priority for active requests.")

    token = commands.add_parser("token", help="Sign an access token for a user id.")
    token.add_argument("--user-id", required=True)
    token.add_argument("--ttl-hours", type=int, default=12)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        if args.command == "analytics":
            payload = fetch_request_analytics(
                base_url=args.base_url,
                token=args.token,
                timeout_seconds=args.timeout_seconds,
            )
        elif args.command == "sla-sweep":
            payload = asyncio.run(_run_sla_sweep())
        else:
            payload = _issue_token(args.user_id, args.ttl_hours)
    except Exception as exc:  # pragma: no cover - operator output
        print(f"request-desk {args.command} error: {exc}", file=sys.stderr)
        return 1

    if args.compact:
        print(json.dumps(payload, sort_keys=True))
    else:
        print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
