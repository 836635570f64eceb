"""
Operator commands for session locks.

    python -m sessionkv inspect <entity_id>     # lock age + stored record
    python -m sessionkv release <entity_id>     # force-release a stuck lock

Force-release is for recovering from stuck locks; only use it when no process
is actively serving the entity.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from .config import SessionStoreConfig
from .errors import ExhaustedRetries
from .logging_utils import configure_logging
from .retry import RetryExecutor
from .session_lock import SessionLockManager
from .store.redis_client import close_redis
from .store.remote_store import RemoteStore, open_store


async def _inspect(locks: SessionLockManager, store: RemoteStore, entity_id: str, raw: bool) -> int:
    info = await locks.inspect(entity_id)
    result = await locks.executor.execute(
        lambda: store.get(locks.config.data_key(entity_id)), label="read record"
    )
    if not result.success:
        raise result.as_exception()

    payload = {
        "entity_id": entity_id,
        "lock": info.to_dict() if info else None,
        "record": result.value,
    }
    if raw:
        print(json.dumps(payload))
        return 0

    print(f"Entity: {entity_id}")
    print("=" * 60)
    if info is None:
        print("Lock:   none")
    else:
        state = "stale" if info.stale else "HELD"
        print(f"Lock:   {state} (stamped {info.age:.0f}s ago, threshold {locks.config.autosave_interval}s)")
    if result.value is None:
        print("Record: none")
    else:
        print("Record:")
        print(json.dumps(result.value, indent=2, sort_keys=True))
    return 0


async def _release(locks: SessionLockManager, entity_id: str, force: bool) -> int:
    info = await locks.inspect(entity_id)
    if info is not None and not info.stale and not force:
        print(
            f"Lock for {entity_id} is fresh ({info.age:.0f}s old). "
            f"Re-run with --force to release it anyway.",
            file=sys.stderr,
        )
        return 1
    if not await locks.release(entity_id):
        print(f"Could not release lock for {entity_id}", file=sys.stderr)
        return 1
    print(f"Released session lock for {entity_id}")
    return 0


async def run(args: argparse.Namespace, store: Optional[RemoteStore] = None) -> int:
    config = SessionStoreConfig()
    owns_store = store is None
    store = store if store is not None else open_store(config)
    executor = RetryExecutor(attempts=config.retry_attempts, delay=config.retry_delay)
    locks = SessionLockManager(store, executor, config)
    try:
        if args.command == "inspect":
            return await _inspect(locks, store, args.entity_id, args.raw)
        return await _release(locks, args.entity_id, args.force)
    except ExhaustedRetries as e:
        print(f"Remote store unreachable: {e}", file=sys.stderr)
        return 2
    finally:
        if owns_store:
            await close_redis()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sessionkv",
        description="Inspect and recover session locks",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    inspect_cmd = sub.add_parser("inspect", help="Show lock state and stored record")
    inspect_cmd.add_argument("entity_id")
    inspect_cmd.add_argument("--raw", "-r", action="store_true", help="Output raw JSON")

    release_cmd = sub.add_parser("release", help="Release a session lock")
    release_cmd.add_argument("entity_id")
    release_cmd.add_argument("--force", "-f", action="store_true", help="Release even if the lock is fresh")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return asyncio.run(run(args))
