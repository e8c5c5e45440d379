"""Command line entry point: run one statement against a configured profile."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict

from .adapter import MysqlAdapter
from .config import CONFIG_FILE, ConnectionConfig, load_config
from .errors import AdapterError

LOG = logging.getLogger(__name__)

PASSWORD_ENV = "MYSQLGUARD_PASSWORD"


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="mysqlguard", description=__doc__)
    parser.add_argument("sql", nargs="?", help="Statement to execute")
    parser.add_argument("--profile", help=f"Profile name from {CONFIG_FILE}")
    parser.add_argument("--ping", action="store_true", help="Only initialize the pool and report health")
    parser.add_argument("--batch", action="store_true", help="Run SQL as a multi-statement script")
    parser.add_argument(
        "--password-env",
        default=PASSWORD_ENV,
        help="Environment variable holding the password (profiles never store one)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not args.ping and not args.sql:
        print("Provide SQL to execute or pass --ping.", file=sys.stderr)
        return 2
    try:
        profile = load_config().profile(args.profile)
    except LookupError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    password = os.environ.get(args.password_env)
    if password and profile.password is None and not profile.aws_iam_auth:
        profile = profile.model_copy(update={"password": password})
    return asyncio.run(_run(profile, args))


async def _run(profile: ConnectionConfig, args: argparse.Namespace) -> int:
    adapter = MysqlAdapter(profile)
    try:
        await adapter.initialize()
        if args.ping:
            payload = {"state": adapter.state.value, **asdict(adapter.describe_self())}
            print(json.dumps(payload))
            return 0
        sql = args.sql.strip()
        if args.batch:
            await adapter.exec_batch(sql)
            print("OK")
        elif _returns_rows(sql):
            rows = await adapter.query_all(sql)
            print(json.dumps(rows, default=str, indent=2))
        else:
            result = await adapter.query_write(sql)
            print(json.dumps(asdict(result)))
    except AdapterError as exc:
        LOG.debug("Command failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        await adapter.close()
    return 0


def _returns_rows(statement: str) -> bool:
    token = statement.lstrip().split(None, 1)
    if not token:
        return False
    head = token[0].lower()
    return head in {"select", "with", "show", "values", "describe", "desc", "explain"}


__all__ = ["main", "parse_args"]
