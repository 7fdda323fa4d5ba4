"""Command line entry point: run the API server or apply the database schema."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from vaultwars.backend.config import VaultWarsSettings, load_settings

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="VaultWars backend")
    subcommands = parser.add_subparsers(dest="command")
    run = subcommands.add_parser("run", help="serve the HTTP and websocket API")
    run.add_argument("--host", default=None)
    run.add_argument("--port", type=int, default=None)
    subcommands.add_parser("migrate", help="apply db_schema.sql to VAULTWARS_DATABASE_URL")
    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run"
        args.host = None
        args.port = None
    return args


def apply_schema(settings: VaultWarsSettings) -> None:
    if not settings.database_url:
        raise RuntimeError("VAULTWARS_DATABASE_URL is required for migration")

    import psycopg

    schema_path = Path(__file__).with_name("db_schema.sql")
    schema_sql = schema_path.read_text(encoding="utf-8")

    with psycopg.connect(settings.database_url) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        conn.commit()
    logger.info(f"Applied {schema_path.name}")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "migrate":
        apply_schema(settings)
        return 0

    import uvicorn

    uvicorn.run(
        "vaultwars.backend.api:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
