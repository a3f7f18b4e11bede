"""CLI entrypoint for a single relayer pass."""

from __future__ import annotations

import argparse
import dataclasses
import os
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount

from relayer import __version__
from relayer.config import ChainConfig, ConfigError, RelayerConfig, load_config
from relayer.config.loader import DEFAULT_DATABASE_PATH
from relayer.core.chain import BridgeClient
from relayer.core.executor import RelayExecutor
from relayer.core.gas import GasManager
from relayer.core.lease import DEFAULT_LOCK_PATH, ExclusiveLease, FileLease
from relayer.core.processor import process_requests
from relayer.core.retry import RetryConfig
from relayer.core.scanner import ChainScanner
from relayer.core.utils import configure_logging, ensure_web3_connected, get_logger
from relayer.db import RequestStore, open_store

LOGGER = get_logger("relayer.cli")

DEFAULT_LOG_FILE = "./logs/relayer.log"

ClientFactory = Callable[[ChainConfig, Optional[LocalAccount]], Any]


@dataclass(frozen=True)
class RunSummary:
    """Counters reported at the end of a run."""

    new_events: int = 0
    processed: int = 0
    failed: int = 0
    failed_chains: List[str] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0


class RelayerRun:
    """One scan-then-relay pass over every configured chain.

    Services (store, chain clients, gas cache) are created here once per run
    and handed to the scanner and executor.
    """

    def __init__(
        self,
        config: RelayerConfig,
        *,
        client_factory: Optional[ClientFactory] = None,
        store_factory: Callable[[Path], RequestStore] = open_store,
        gas_manager: Optional[GasManager] = None,
        batch_size: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.client_factory = client_factory or self._default_client_factory
        self.store_factory = store_factory
        defaults = config.defaults
        self.gas_manager = gas_manager or GasManager(
            ttl=defaults.gas_cache_ttl,
            gas_limit=defaults.gas_limit,
            buffer_percent=defaults.gas_price_buffer_percent,
        )
        self.batch_size = batch_size or defaults.batch_size
        self.retry_config = RetryConfig(
            max_attempts=defaults.retry_attempts,
            base_delay=defaults.retry_base_delay,
            max_delay=defaults.retry_max_delay,
            jitter=defaults.retry_jitter,
        )
        self._sleep = sleep

    def _default_client_factory(self, chain: ChainConfig, account: Optional[LocalAccount]) -> BridgeClient:
        client = BridgeClient(chain, account=account, receipt_timeout=self.config.defaults.receipt_timeout)
        ensure_web3_connected(client.web3, expected_chain_id=chain.chain_id)
        return client

    def _build_clients(self, account: LocalAccount) -> Tuple[Dict[int, Any], List[str]]:
        clients: Dict[int, Any] = {}
        broken: List[str] = []
        for chain in self.config.chains:
            try:
                clients[chain.chain_id] = self.client_factory(chain, account)
            except Exception as exc:
                LOGGER.error("Failed to create client for %s chain_id=%s error=%s", chain.name, chain.chain_id, exc)
                broken.append(chain.name)
        return clients, broken

    def execute(self) -> RunSummary:
        started = time.monotonic()
        account = Account.from_key(self.config.relayer_private_key)
        LOGGER.info(
            "Configuration loaded chains=%s dry_run=%s relayer=%s",
            [chain.name for chain in self.config.chains],
            self.config.dry_run,
            account.address,
        )

        store = self.store_factory(self.config.database_path)
        try:
            LOGGER.info("Database initialized path=%s", self.config.database_path)
            clients, failed_chains = self._build_clients(account)

            scanner = ChainScanner(store)
            new_events = 0
            for chain in self.config.chains:
                client = clients.get(chain.chain_id)
                if client is None:
                    continue
                try:
                    new_events += len(scanner.scan(chain, client))
                except Exception as exc:
                    LOGGER.error("Failed to scan chain %s chain_id=%s error=%s", chain.name, chain.chain_id, exc)
                    failed_chains.append(chain.name)
            LOGGER.info("Scan complete total_events=%s", new_events)

            executor = RelayExecutor(
                store,
                clients,
                gas_manager=self.gas_manager,
                retry_config=self.retry_config,
                dry_run=self.config.dry_run,
                liquidity_backoff=self.config.defaults.liquidity_backoff,
                configured_chains=[chain.chain_id for chain in self.config.chains],
                sleep=self._sleep,
            )
            result = process_requests(store, executor, self.batch_size)
            stats = store.get_stats()
        finally:
            store.close()

        summary = RunSummary(
            new_events=new_events,
            processed=result.processed,
            failed=result.failed,
            failed_chains=failed_chains,
            stats=stats,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        LOGGER.info(
            "Relayer run complete duration=%sms new_events=%s processed=%s failed=%s "
            "total_pending=%s total_completed=%s total_failed=%s total_skipped=%s",
            summary.duration_ms,
            summary.new_events,
            summary.processed,
            summary.failed,
            stats.get("pending", 0),
            stats.get("completed", 0),
            stats.get("failed", 0),
            stats.get("skipped", 0),
        )
        return summary


def _parse_request_key(value: str) -> Tuple[int, int]:
    try:
        chain, nonce = value.split(":", 1)
        return int(chain), int(nonce)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected CHAIN_ID:NONCE, got {value!r}") from exc


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay BridgeInitiated events to releaseFunds on destination chains")
    parser.add_argument("--config", type=Path, help="Path to a JSON config file (default: $RELAYER_CONFIG or ./config.json)")
    parser.add_argument("--lock-file", type=Path, help="Lease marker path (default: $RELAYER_LOCK_PATH or ./data/relayer.lock)")
    parser.add_argument("--database", type=Path, help="Database path for --stats/--requeue (default: $DATABASE_PATH)")
    parser.add_argument("--batch-size", type=int, help="Maximum pending requests to process this run")
    parser.add_argument("--dry-run", action="store_true", help="Log intended releases without sending transactions")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--stats", action="store_true", help="Print request counts and checkpoints, then exit")
    group.add_argument(
        "--requeue",
        type=_parse_request_key,
        metavar="CHAIN_ID:NONCE",
        help="Reset a failed request to pending with a fresh retry budget",
    )
    return parser.parse_args(argv)


def _database_path(args: argparse.Namespace) -> Path:
    return args.database or Path(os.getenv("DATABASE_PATH") or DEFAULT_DATABASE_PATH)


def _print_stats(store: RequestStore) -> None:
    stats = store.get_stats()
    for status, count in stats.items():
        print(f"{status:>10}: {count}")
    for chain_id, last_block in store.get_checkpoints().items():
        print(f"checkpoint chain {chain_id}: {last_block}")


def _requeue(store: RequestStore, key: Tuple[int, int]) -> int:
    source_chain, nonce = key
    if store.requeue(source_chain, nonce):
        LOGGER.info("Requeued request source_chain=%s nonce=%s", source_chain, nonce)
        return 0
    LOGGER.error("No failed request found for source_chain=%s nonce=%s", source_chain, nonce)
    return 1


def run_relayer(args: argparse.Namespace, lease: ExclusiveLease) -> int:
    """Lease-guarded relayer pass; returns the process exit code."""
    if not lease.acquire():
        LOGGER.info("Another instance is running, exiting")
        return 0

    try:
        try:
            config = load_config(args.config)
        except ConfigError as exc:
            LOGGER.error("Configuration validation failed: %s", exc)
            return 1
        if args.dry_run:
            config = dataclasses.replace(config, dry_run=True)

        RelayerRun(config, batch_size=args.batch_size).execute()
        return 0
    except Exception:
        LOGGER.exception("Fatal error")
        return 1
    finally:
        lease.release()


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    load_dotenv()

    try:
        configure_logging(os.getenv("LOG_LEVEL") or "info", os.getenv("LOG_FILE") or DEFAULT_LOG_FILE)
    except ValueError as exc:
        LOGGER.error("Configuration validation failed: %s", exc)
        return 1

    if args.stats or args.requeue:
        with open_store(_database_path(args)) as store:
            if args.stats:
                _print_stats(store)
                return 0
            return _requeue(store, args.requeue)

    LOGGER.info("Bridge relayer starting version=%s", __version__)
    lock_path = args.lock_file or Path(os.getenv("RELAYER_LOCK_PATH") or DEFAULT_LOCK_PATH)
    return run_relayer(args, FileLease(lock_path))


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":  # pragma: no cover - CLI entry
    run()
