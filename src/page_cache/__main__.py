from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from page_cache.config import YamlConfigLoader
from page_cache.config.models import AppConfig, ConfigLoadRequest
from page_cache.logging import init_logging
from page_cache.service import PageCacheService
from page_cache.utils import format_size

logger = logging.getLogger(__name__)


class CommandError(Exception):
    pass


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="page-cache", description="Disk-backed full page cache")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: delete
    delete_parser = subparsers.add_parser("delete", help="Delete cached data of a single URL")
    delete_parser.add_argument("url", help="Absolute URL of the page")
    delete_parser.add_argument(
        "--variant",
        default=None,
        help="Request variant to delete (default: all configured variants)",
    )

    # Command: flush
    subparsers.add_parser("flush", help="Flush the whole cache")

    # Command: size
    size_parser = subparsers.add_parser("size", help="Print the cache size in bytes")
    size_parser.add_argument("--human-readable", action="store_true", help="Print size as 1.5 KB, 2.0 MB, ...")

    # Command: inspect
    subparsers.add_parser("inspect", help="List all cache entries")

    # Command: warm-up
    warm_up_parser = subparsers.add_parser("warm-up", help="Run the cache warm-up once")
    warm_up_parser.add_argument(
        "--budget",
        type=float,
        default=None,
        help="Time budget in seconds (capped by warm_up.run_timeout_seconds).",
    )

    # Command: status
    subparsers.add_parser("status", help="Print cache and warm-up status")

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


def _format_timestamp(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


async def _delete(service: PageCacheService, args: argparse.Namespace) -> None:
    result = service.store.codec.try_encode(args.url)
    if not result.ok:
        raise CommandError(f"Invalid URL: {result.error}")
    if not await service.delete(args.url, args.variant):
        raise CommandError(f"Failed to delete cache data of {args.url}.")
    print(f"Deleted cache data of {args.url}.")


async def _flush(service: PageCacheService, args: argparse.Namespace) -> None:
    if not service.store.flush():
        raise CommandError("Failed to flush the cache.")
    print("Cache flushed.")


async def _size(service: PageCacheService, args: argparse.Namespace) -> None:
    size = service.store.get_size(precise=True)
    if size is None:
        raise CommandError("Failed to determine the cache size.")
    print(format_size(size) if args.human_readable else size)


async def _inspect(service: PageCacheService, args: argparse.Namespace) -> None:
    entries = service.store.inspect()
    if entries is None:
        raise CommandError("Failed to read the cache directory.")
    for entry in entries:
        print(
            "\t".join(
                [
                    entry.url,
                    entry.request_variant or "-",
                    str(entry.size),
                    _format_timestamp(entry.timestamp),
                ]
            )
        )


async def _warm_up(service: PageCacheService, args: argparse.Namespace) -> None:
    if not service.warm_up_enabled:
        raise CommandError("Warm-up is disabled in the configuration.")
    remaining = await service.crawler.tick(args.budget)
    print(f"Warm-up run finished. remaining={remaining}")


async def _status(service: PageCacheService, args: argparse.Namespace) -> None:
    status = await service.status()
    print(f"Cache size: {format_size(status.size) if status.size is not None else 'unknown'}")
    print(f"Cache age: {_format_timestamp(status.age)}")
    if status.warm_up is None:
        print("Warm-up: disabled")
        return
    print(
        "Warm-up queue: processed={processed} waiting={waiting} total={total}".format(**status.warm_up)
    )
    print(f"Next warm-up run: {_format_timestamp(status.next_run_at)}")


_COMMANDS = {
    "delete": _delete,
    "flush": _flush,
    "size": _size,
    "inspect": _inspect,
    "warm-up": _warm_up,
    "status": _status,
}


async def _main_async(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = await _load_config(args)
    init_logging(config.logging)

    service = PageCacheService(config)
    try:
        await _COMMANDS[args.command](service, args)
    except CommandError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        await service.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(_main_async(argv))
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return 1
    except Exception as e:
        logger.exception("Command failed.")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
