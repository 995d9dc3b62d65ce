"""
Command line tool for the universal data engine.

Commands:
- init-db: Create the SQLite database and schema
- validate-code: Validate one or more smart codes
- create-org: Create an organization
- introspect: Show organizations, roles and apps of an actor

Usage:
    python -m udb.udb_core.tools.cli init-db --data-dir ./data
    python -m udb.udb_core.tools.cli validate-code HERA.FURNITURE.PRODUCT.CHAIR.EXECUTIVE.v1
    python -m udb.udb_core.tools.cli create-org --name "Demo Salon" --code DEMO-SALON
    python -m udb.udb_core.tools.cli introspect <actor-entity-id>

Invariants:
    - Output is deterministic JSON (sorted keys)
    - Exit code 0 on success, 1 on any engine error or invalid code

How to change safely:
    - Add new commands, don't change existing output shapes
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any

from ..config import ServerConfig
from ..errors import UdbError
from ..schema.smart_code import SmartCodeValidator
from ..api.crud import UniversalApi

logger = logging.getLogger(__name__)


class UdbCLI:
    """CLI operations, each returning a JSON-serializable result.

    Example:
        >>> cli = UdbCLI(ServerConfig())
        >>> cli.validate_codes(["HERA.AB.v1"])["HERA.AB.v1"]["valid"]
        False
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.validator = SmartCodeValidator(config.smart_code.root_tag)

    def _api(self) -> UniversalApi:
        return UniversalApi.from_config(self.config)

    def init_db(self) -> dict[str, Any]:
        api = self._api()
        return {"db_path": str(api.store.db_path), "initialized": True}

    def validate_codes(self, codes: list[str]) -> dict[str, Any]:
        report: dict[str, Any] = {}
        for code in codes:
            errors = self.validator.check(code)
            if errors:
                report[code] = {"valid": False, "errors": errors}
                continue
            parsed = self.validator.validate(code)
            report[code] = {
                "valid": True,
                "root": parsed.root,
                "segments": list(parsed.domain_segments),
                "version": parsed.version,
            }
        return report

    def create_org(
        self, name: str, code: str, org_type: str, actor_id: str | None
    ) -> dict[str, Any]:
        api = self._api()
        org = asyncio.run(
            api.organization_engine.create_organization(
                name=name, code=code, org_type=org_type, actor_id=actor_id
            )
        )
        return org.to_dict()

    def introspect(self, actor_id: str) -> dict[str, Any]:
        api = self._api()
        return asyncio.run(api.resolver.introspect(actor_id)).to_dict()


def _print(result: Any) -> None:
    print(json.dumps(result, indent=2, sort_keys=True, default=str))


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Universal data engine tool")
    parser.add_argument("--data-dir", help="Directory of the SQLite file (default: DATA_DIR)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database and schema")

    validate_parser = subparsers.add_parser("validate-code", help="Validate smart codes")
    validate_parser.add_argument("codes", nargs="+", help="Smart codes to validate")

    org_parser = subparsers.add_parser("create-org", help="Create an organization")
    org_parser.add_argument("--name", required=True, help="Organization name")
    org_parser.add_argument("--code", required=True, help="Unique organization code")
    org_parser.add_argument("--type", default="business", help="Organization type")
    org_parser.add_argument("--actor", help="Creating actor id")

    introspect_parser = subparsers.add_parser("introspect", help="Resolve an actor's access")
    introspect_parser.add_argument("actor_id", help="Actor entity id")

    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    if args.data_dir:
        config.storage = replace(config.storage, data_dir=args.data_dir)

    cli = UdbCLI(config)

    try:
        if args.command == "init-db":
            _print(cli.init_db())
        elif args.command == "validate-code":
            report = cli.validate_codes(args.codes)
            _print(report)
            sys.exit(0 if all(r["valid"] for r in report.values()) else 1)
        elif args.command == "create-org":
            _print(cli.create_org(args.name, args.code, args.type, args.actor))
        elif args.command == "introspect":
            _print(cli.introspect(args.actor_id))
    except UdbError as e:
        _print(e.to_dict())
        sys.exit(1)


if __name__ == "__main__":
    main()
