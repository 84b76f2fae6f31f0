from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn

from essaycoach.api.http_app import SERVICE_NAME, build_app
from essaycoach.domain.errors import DomainValidationError
from essaycoach.domain.ids import new_run_id
from essaycoach.logging_setup import configure_logging
from essaycoach.services.bootstrap import build_runtime_container
from essaycoach.strategies.registry import get_registration, supported_strategies


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Essay feedback API entrypoint")
    parser.add_argument("--host", default=os.getenv("APP_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument(
        "--vendor",
        default=None,
        help="Vendor strategy key, overrides ESSAYCOACH_VENDOR",
    )
    parser.add_argument(
        "--dry-run-startup",
        action="store_true",
        help="Validate startup and exit",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable code reload (dev mode)",
    )
    return parser.parse_args(argv)


def create_runtime_app() -> object:
    configure_logging()
    container = build_runtime_container()
    return build_app(
        run_id=new_run_id(),
        api_deps=container.api_deps,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.vendor is not None:
        try:
            get_registration(args.vendor)
        except DomainValidationError as exc:
            sys.stderr.write(f"ERROR: {exc}\n")
            sys.stderr.write(f"Try one of: {', '.join(supported_strategies())}\n")
            return 2
        os.environ["ESSAYCOACH_VENDOR"] = args.vendor

    configure_logging()
    run_id = new_run_id()
    logger = logging.getLogger("runtime")

    logger.info("runtime initialized", extra={"service": SERVICE_NAME, "run_id": run_id})

    if args.dry_run_startup:
        logger.info("dry-run startup complete", extra={"service": SERVICE_NAME, "run_id": run_id})
        return 0

    port = args.port if args.port is not None else int(os.getenv("APP_PORT", "8000"))
    if args.reload:
        uvicorn.run(
            "essaycoach.main:create_runtime_app",
            host=args.host,
            port=port,
            log_level="warning",
            reload=True,
            factory=True,
        )
    else:
        container = build_runtime_container()
        app = build_app(
            run_id=run_id,
            api_deps=container.api_deps,
            on_startup=container.on_startup,
            on_shutdown=container.on_shutdown,
        )
        uvicorn.run(app, host=args.host, port=port, log_level="warning")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
