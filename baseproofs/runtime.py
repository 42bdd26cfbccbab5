"""
Runtime Wiring

Builds the cache, ledger access, sync engine and services from the
environment. Used by the HTTP app and the management CLI.

Mode is determined by environment variables:
- BASEPROOFS_CACHE_DRIVER / BASEPROOFS_CACHE_PATH / DATABASE_URL: local cache
- BASEPROOFS_RPC_URL / BASEPROOFS_CHAIN_ID / BASEPROOFS_CONTRACT_ADDRESS: chain
- Nothing set: in-memory cache and in-memory ledger (development)
"""

from dataclasses import dataclass
from typing import Optional

from .chain import ChainConfig, InMemoryLogSource
from .core import (
    ChainSync,
    HttpWitnessProvider,
    LogScanner,
    PromiseService,
    ReconcilePolicy,
    SyncScheduler,
    WitnessService,
)
from .core.scanner import LogSource
from .db.cache import InMemoryPromiseCache, JsonFilePromiseCache, PromiseCache
from .db.config import CacheDriver, DatabaseConfig, get_cache_driver, get_cache_path, get_database_url
from .observability import get_logger

logger = get_logger(__name__)


def create_cache() -> PromiseCache:
    """
    Create the PromiseCache selected by configuration.

    Returns:
        InMemoryPromiseCache for development/testing
        JsonFilePromiseCache when BASEPROOFS_CACHE_PATH or driver=file
        PostgresPromiseCache when a database is configured
    """
    driver = get_cache_driver()

    if driver == CacheDriver.MEMORY:
        logger.info("Using in-memory promise cache (no persistence)")
        return InMemoryPromiseCache()

    if driver == CacheDriver.FILE:
        path = get_cache_path()
        logger.info("Using JSON file promise cache", path=path)
        return JsonFilePromiseCache(path)

    db_url = get_database_url()
    if db_url is None:
        logger.warning("Driver is psycopg2 but no database configured; using in-memory cache")
        return InMemoryPromiseCache()

    config = DatabaseConfig.from_url(db_url) if "://" in db_url else DatabaseConfig.from_env()
    return _create_psycopg2_cache(config)


def _create_psycopg2_cache(config: DatabaseConfig) -> PromiseCache:
    """Create PostgresPromiseCache with psycopg2 and make sure its table exists."""
    import psycopg2
    from .db.cache import PostgresPromiseCache

    def connection_factory():
        return psycopg2.connect(config.to_dsn())

    cache = PostgresPromiseCache(connection_factory)
    cache.ensure_schema()
    logger.info(
        "PostgreSQL promise cache ready",
        host=f"{config.host}:{config.port}/{config.database}",
    )
    return cache


def create_log_source(config: ChainConfig) -> LogSource:
    """
    Web3LogSource when an RPC endpoint is known, otherwise an in-memory ledger.

    The in-memory ledger also accepts writes, so development setups can
    run the full anchor → scan loop without a node.
    """
    if config.is_configured:
        from .chain.web3_source import Web3LogSource

        logger.info(
            "Reading ledger over JSON-RPC",
            chain_id=config.chain_id,
            contract=config.contract_address,
        )
        return Web3LogSource.from_config(config)

    logger.info("No ledger RPC configured; using in-memory ledger")
    if config.contract_address:
        return InMemoryLogSource(config.contract_address)
    return InMemoryLogSource()


def create_sync(config: ChainConfig, source: LogSource) -> ChainSync:
    scanner = LogScanner(
        source,
        max_concurrency=config.scan_concurrency,
        fetch_timeout=config.fetch_timeout,
    )
    contract = config.contract_address
    if contract is None and isinstance(source, InMemoryLogSource):
        contract = source.contract_address

    return ChainSync(
        scanner,
        contract_address=contract,
        from_block=config.from_block,
        policy=ReconcilePolicy.from_env(),
        timeout=config.scan_timeout,
    )


@dataclass
class Runtime:
    """Everything the app and CLI share."""
    chain_config: ChainConfig
    cache: PromiseCache
    source: LogSource
    sync: ChainSync
    scheduler: SyncScheduler
    promises: PromiseService

    def close(self) -> None:
        self.scheduler.stop()
        self.sync.close()
        self.cache.close()


def create_runtime(
    chain_config: Optional[ChainConfig] = None,
    cache: Optional[PromiseCache] = None,
    source: Optional[LogSource] = None,
) -> Runtime:
    chain_config = chain_config or ChainConfig.from_env()
    cache = cache if cache is not None else create_cache()
    source = source if source is not None else create_log_source(chain_config)
    sync = create_sync(chain_config, source)

    # In-memory ledgers accept writes directly
    submitter = source if isinstance(source, InMemoryLogSource) else None
    promises = PromiseService(
        cache,
        witness=WitnessService(HttpWitnessProvider.from_env()),
        submitter=submitter,
        chain_records=lambda: sync.chain_records,
    )

    return Runtime(
        chain_config=chain_config,
        cache=cache,
        source=source,
        sync=sync,
        scheduler=SyncScheduler(sync, cache),
        promises=promises,
    )
