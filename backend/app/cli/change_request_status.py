"""CLI for CI/CD pipelines that gate deployment on a change request's status."""

from __future__ import annotations

import argparse
import json
import sys
from typing import cast
from urllib import error, parse, request

EXIT_EXECUTABLE = 0
EXIT_ERROR = 1
EXIT_NOT_EXECUTABLE = 3


def build_status_url(*, base_url: str, change_request_id: str) -> str:
    """Build the automation status endpoint URL for one change request."""
    normalized_base = base_url.rstrip("/")
    quoted_id = parse.quote(change_request_id.strip(), safe="")
    return f"{normalized_base}/api/v1/automation/change-requests/{quoted_id}/status"


def fetch_change_request_status(
    *,
    base_url: str,
    change_request_id: str,
    timeout_seconds: int,
) -> dict[str, object]:
    """Fetch the CI status projection; the endpoint needs no token."""
    url = build_status_url(base_url=base_url, change_request_id=change_request_id)
    req = request.Request(url, headers={"Accept": "application/json"}, method="GET")
    try:
        with request.urlopen(req, timeout=timeout_seconds) as response:  # noqa: S310
            payload = response.read().decode("utf-8")
    except error.HTTPError as exc:
        if exc.code == 404:
            raise LookupError(f"change request {change_request_id} not found") from exc
        raise
    decoded = json.loads(payload)
    if not isinstance(decoded, dict):
        msg = "change request status payload is not a JSON object"
        raise ValueError(msg)
    return cast(dict[str, object], decoded)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m app.cli.change_request_status",
        description="Check whether an approved change request is ready to deploy.",
    )
    parser.add_argument("change_request_id")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--timeout-seconds", type=int, default=12)
    parser.add_argument(
        "--no-gate",
        action="store_true",
        help="Exit 0 even when the change request is not executable.",
    )
    parser.add_argument(
        "--compact",
        action="store_true",
        help="Print single-line JSON output.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        payload = fetch_change_request_status(
            base_url=args.base_url,
            change_request_id=args.change_request_id,
            timeout_seconds=args.timeout_seconds,
        )
    except Exception as exc:  # pragma: no cover - defensive operator output
        print(f"change-request-status error: {exc}", file=sys.stderr)
        return EXIT_ERROR

    if args.compact:
        print(json.dumps(payload, sort_keys=True))
    else:
        print(json.dumps(payload, indent=2, sort_keys=True))
    if args.no_gate or payload.get("can_execute") is True:
        return EXIT_EXECUTABLE
    return EXIT_NOT_EXECUTABLE


if __name__ == "__main__":
    raise SystemExit(main())
