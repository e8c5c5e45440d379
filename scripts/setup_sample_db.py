"""Utility that launches a sample MySQL Docker container for mysqlguard."""

from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mysqlguard.adapter import MysqlAdapter
from mysqlguard.config import CONFIG_FILE, AppConfig, ConnectionConfig, load_config, save_config
from mysqlguard.errors import AdapterError

DEFAULT_CONTAINER = "mysqlguard-sample-db"
DEFAULT_PORT = 3407
DEFAULT_PASSWORD = "mysqlguard"
DEFAULT_DB = "mysqlguard_demo"
DEFAULT_USER = "mysqlguard"
DOCKER_IMAGE = "mysql:8.4"
PROFILE_NAME = "Docker Sample"

SEED_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id INT AUTO_INCREMENT PRIMARY KEY,
    email VARCHAR(255) NOT NULL UNIQUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS orders (
    id INT AUTO_INCREMENT PRIMARY KEY,
    account_id INT NOT NULL,
    total DECIMAL(10,2) NOT NULL,
    status VARCHAR(32) NOT NULL DEFAULT 'pending',
    FOREIGN KEY (account_id) REFERENCES accounts(id)
);
INSERT IGNORE INTO accounts (email) VALUES
    ('anna@example.com'),
    ('ben@example.com'),
    ('cara@example.com');
INSERT INTO orders (account_id, total, status)
SELECT id, ROUND(RAND() * 100, 2), 'complete'
FROM accounts;
""".strip()


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, password: str, database: str, user: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker",
                "run",
                "-d",
                "--name",
                name,
                "-e",
                f"MYSQL_ROOT_PASSWORD={password}",
                "-e",
                f"MYSQL_DATABASE={database}",
                "-e",
                f"MYSQL_USER={user}",
                "-e",
                f"MYSQL_PASSWORD={password}",
                "-p",
                f"{port}:3306",
                DOCKER_IMAGE,
            ]
        )
    wait_for_start(name, password)


def wait_for_start(name: str, password: str, retries: int = 30, delay: float = 2.0) -> None:
    for _ in range(retries):
        result = subprocess.run(
            ["docker", "exec", name, "mysqladmin", "ping", "-uroot", f"-p{password}", "--silent"],
            text=True,
            capture_output=True,
        )
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def sample_profile(port: int, user: str, database: str) -> ConnectionConfig:
    return ConnectionConfig(name=PROFILE_NAME, host="127.0.0.1", port=port, database=database, user=user)


async def seed_data(profile: ConnectionConfig, password: str) -> None:
    async with MysqlAdapter(profile.model_copy(update={"password": password})) as adapter:
        await adapter.exec_batch(SEED_SQL)
        rows = await adapter.query_all(adapter.list_tables_query())
    print(f"Seeded tables: {', '.join(str(row['name']) for row in rows)}")


def update_config(profile: ConnectionConfig) -> None:
    try:
        config = load_config()
    except Exception:
        config = AppConfig()
    if any(entry.name == PROFILE_NAME for entry in config.profiles):
        print(f"Profile '{PROFILE_NAME}' already present in config; leaving as-is.")
        return
    save_config(config.with_profile(profile))
    print(f"Added '{PROFILE_NAME}' profile to {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose MySQL on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="MySQL password (root and user)")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database user")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    try:
        start_container(args.container, args.port, args.password, args.database, args.user)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    profile = sample_profile(args.port, args.user, args.database)
    try:
        asyncio.run(seed_data(profile, args.password))
    except AdapterError as exc:
        print(f"Seeding failed: {exc}")
        return 1
    update_config(profile)
    print(
        f"Sample database is ready. Run `MYSQLGUARD_PASSWORD={args.password} "
        f"python -m mysqlguard --profile '{PROFILE_NAME}' --ping` to check it."
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
