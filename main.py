"""Command-line interface for the PostgreSQL instance broker."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Sequence

import httpx

from pgbroker.allocation import AllocationService
from pgbroker.config import BrokerSettings, load_settings
from pgbroker.service import build_service, seed_pool

logger = logging.getLogger("pgbroker.main")

_DEFAULT_SERVICE_URL = "http://localhost:3001"
_KNOWN_COMMANDS = {"serve", "seed", "pool", "accounts", "status"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="PostgreSQL instance broker utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP broker service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=3001,
        help="Port for the HTTP API (default: 3001)",
    )

    subparsers.add_parser("seed", help="Bootstrap the instance pool if it is empty")
    subparsers.add_parser("pool", help="List the instances waiting in the pool")
    subparsers.add_parser("accounts", help="List every user and their assigned instances")

    status_parser = subparsers.add_parser("status", help="Query the pool of a running service")
    status_parser.add_argument(
        "--service-url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of a running broker service (default: {_DEFAULT_SERVICE_URL})",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in _KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _serve(*, settings: BrokerSettings, service: AllocationService, host: str, port: int) -> None:
    from pgbroker.service import create_app
    import uvicorn

    logger.info("Starting instance broker on http://%s:%s", host, port)
    app = create_app(settings, service=service)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _seed(service: AllocationService, settings: BrokerSettings) -> None:
    if seed_pool(service, settings):
        print(f"Seeded the pool with {service.available_count()} instance(s).")
    else:
        print(f"Pool already holds {service.available_count()} instance(s); nothing to do.")


def _list_pool(service: AllocationService) -> None:
    instances = service.pool.list_available()
    if not instances:
        print("The instance pool is empty.")
        return

    print(f"{len(instances)} instance(s) available:")
    print(f"{'ID':>4}  {'Name':<16}  {'Region':<12}  Host")
    print("-" * 80)
    for instance in instances:
        print(f"{instance.id:>4}  {instance.name:<16}  {instance.region:<12}  {instance.host}")


def _list_accounts(service: AllocationService) -> None:
    accounts = service.registry.list_all_accounts()
    if not accounts:
        print("No users currently hold instances.")
        return

    maximum = service.registry.get_max_per_user()
    print(f"{len(accounts)} user(s) found:")
    for account in accounts:
        print(f"- {account.username} ({len(account.instances)}/{maximum})")
        for instance in account.instances:
            created = instance.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
            print(f"    {instance.id}  {instance.instance_name:<16}  {instance.region:<12}  {created}")


def _show_status(base_url: str) -> int:
    endpoint = base_url.rstrip("/") + "/api/v1/cache/instances/available"

    try:
        response = httpx.get(endpoint, timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact broker service: {exc}")
        return 1

    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {response.text.strip()}")
        return 1

    try:
        payload = response.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return 1

    instances = payload.get("instances", [])
    print(f"{payload.get('availableCount', len(instances))} instance(s) available at {base_url}")
    for instance in instances:
        print(f"- {instance.get('id', '?')} {instance.get('instanceName', '?')} ({instance.get('region', '?')})")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)

    if args.command == "status":
        return _show_status(args.service_url)

    settings = load_settings()
    service = build_service(settings)
    logger.info("Using data directory %s", settings.data_dir)

    if args.command == "serve":
        _serve(settings=settings, service=service, host=args.host, port=args.port)
    elif args.command == "seed":
        _seed(service, settings)
    elif args.command == "pool":
        _list_pool(service)
    elif args.command == "accounts":
        _list_accounts(service)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
