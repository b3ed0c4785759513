"""Command-line entry point: load the configuration and serve DNS."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from havendns.database import connect
from havendns.db_config import DatabaseConfig
from havendns.dns_config import UpstreamConfig
from havendns.server import create_server

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Config:
    """The whole server configuration: DNS settings and database settings."""

    dns: UpstreamConfig
    database: DatabaseConfig

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Config:
        """Build a config from a parsed TOML document."""
        if not isinstance(data, Mapping) or "dns" not in data or "database" not in data:
            raise ValueError("configuration needs [dns] and [database] sections")
        return Config(UpstreamConfig.from_dict(data["dns"]), DatabaseConfig.from_dict(data["database"]))

    @staticmethod
    def load(path: str | os.PathLike[str]) -> Config:
        """Read and parse a TOML configuration file."""
        with open(path, "rb") as handle:
            return Config.from_dict(tomllib.load(handle))


async def run_server(config: Config) -> None:
    """Connect to the databases and serve until cancelled."""
    database = await asyncio.to_thread(connect, config.database)
    try:
        server = await create_server(config.dns, database)
        logger.info("Starting Haven DNS server...")
        try:
            await server.run()
        finally:
            server.transport.close()
    finally:
        database.close()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the DNS server; return the process exit status."""
    parser = argparse.ArgumentParser(prog="havendns", description="Haven DNS server")
    parser.add_argument("-c", "--config", default="config.toml", help="TOML configuration file")
    args = parser.parse_args(argv)
    level = os.environ.get("HAVENDNS_LOG", "ERROR").upper()
    logging.basicConfig(level=logging.getLevelNamesMapping().get(level, logging.ERROR))

    try:
        config = Config.load(args.config)
        logger.info("Loaded configuration from %s", args.config)
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        return 0
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())