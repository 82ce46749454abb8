"""
Database connection pool management.

This module provides:
- Connection settings with defaults and completeness validation
- A pool lifecycle manager that opens one bounded pool, runs the schema
  bootstrap script once, and shuts the pool down on request
- Synchronous and asynchronous execution of units of work against a
  pooled connection, with the connection always returned to the pool
- Pool metrics collection
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine, URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool
from prometheus_client import Counter, Histogram, Gauge

from stackutils.core.config import settings
from stackutils.core.config_files import get_custom_config, read_resource_text
from stackutils.core.exceptions import (
    ConfigurationError,
    InitFailureReason,
    InitializationError,
    NotInitializedError,
    WorkError,
)
from stackutils.monitoring.logging import task_context

logger = logging.getLogger(__name__)

# Metrics for connection pool monitoring
db_connections_created = Counter('stackutils_db_connections_created_total', 'Total database connections created')
db_connections_closed = Counter('stackutils_db_connections_closed_total', 'Total database connections closed')
db_connection_pool_checked_out = Gauge('stackutils_db_connection_pool_checked_out', 'Currently checked out connections')
db_task_duration = Histogram('stackutils_db_task_duration_seconds', 'Duration of units of work run against the pool')
db_task_errors = Counter('stackutils_db_task_errors_total', 'Units of work that failed')

# A unit of work receives a pooled connection. It signals a database-level
# failure by raising SQLAlchemyError or WorkError.
UnitOfWork = Callable[[Connection], Any]


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class PoolConfiguration:
    """Connection settings for the database pool"""
    hostname: str = "localhost"
    port: int = 3306
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    max_pool_size: int = 10
    driver: str = "mysql+pymysql"
    pool_timeout: int = field(default_factory=lambda: settings.db_pool_timeout)
    pool_recycle: int = field(default_factory=lambda: settings.db_pool_recycle)
    pool_pre_ping: bool = field(default_factory=lambda: settings.db_pool_pre_ping)

    def load_present(self, section: Mapping[str, Any]) -> bool:
        """
        Load the fields present in ``section``, keeping defaults for the
        optional ones that are absent or of the wrong type.

        Returns:
            Whether the resulting configuration is complete
        """
        host = section.get("host")
        if isinstance(host, str):
            self.hostname = host

        port = section.get("port")
        if _is_int(port):
            self.port = port

        self.database = _as_str(section.get("database"))
        self.username = _as_str(section.get("username"))
        self.password = _as_str(section.get("password"))

        max_pool_size = section.get("max_pool_size")
        if _is_int(max_pool_size):
            self.max_pool_size = max_pool_size

        return self.is_complete()

    def missing_fields(self) -> List[str]:
        """Names of the required fields that are unset or empty"""
        return [
            name for name in ("database", "username", "password")
            if not getattr(self, name)
        ]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def validate(self) -> None:
        """Raise ConfigurationError if a required field is missing"""
        missing = self.missing_fields()
        if missing:
            raise ConfigurationError(
                f"Connection settings are missing: {', '.join(missing)}",
                missing_fields=missing,
            )
        if self.max_pool_size < 1:
            raise ConfigurationError(f"max_pool_size must be at least 1, got {self.max_pool_size}")

    @property
    def is_sqlite(self) -> bool:
        return self.driver.startswith("sqlite")

    def url(self) -> URL:
        """SQLAlchemy URL for these settings"""
        if self.is_sqlite:
            # SQLite URLs reject credentials and host
            return URL.create(self.driver, database=self.database)
        return URL.create(
            self.driver,
            username=self.username,
            password=self.password,
            host=self.hostname,
            port=self.port,
            database=self.database,
        )


class PoolState(str, Enum):
    """Lifecycle of the connection pool"""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class InitResult:
    """Outcome of a pool initialization attempt"""
    success: bool
    error: Optional[InitializationError] = None

    @property
    def reason(self) -> Optional[InitFailureReason]:
        return self.error.reason if self.error else None

    def is_success(self) -> bool:
        return self.success

    def __bool__(self) -> bool:
        return self.success


def split_statements(script: str) -> List[str]:
    """Split a bootstrap script into statements, dropping comment lines"""
    lines = [
        line for line in script.splitlines()
        if not line.strip().startswith("--")
    ]
    return [
        statement.strip()
        for statement in "\n".join(lines).split(";")
        if statement.strip()
    ]


class DatabaseConnectionManager:
    """
    Owns one bounded database connection pool and mediates all access to it.

    The manager is created once by the host application and handed to the
    code that needs the database.
    """

    def __init__(
        self,
        owner_name: str,
        bootstrap_script: Union[str, Path, None] = None,
        async_workers: Optional[int] = None,
    ):
        """
        Args:
            owner_name: Name of the host application, used in worker thread names
            bootstrap_script: SQL text, a path to a SQL file, or None for the
                packaged bootstrap script
            async_workers: Worker threads for execute_async; defaults to
                ``settings.async_max_workers`` or the pool size
        """
        if not owner_name:
            raise ValueError("owner_name cannot be empty")
        self.owner_name = owner_name
        self.bootstrap_script = bootstrap_script
        self.async_workers = async_workers
        self.engine: Optional[Engine] = None
        self.config: Optional[PoolConfiguration] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._state = PoolState.UNINITIALIZED
        self._lifecycle_lock = threading.RLock()
        # Signalled whenever a unit of work gives its engine lease back
        self._leases_released = threading.Condition(self._lifecycle_lock)
        self._leases = 0
        self._local = threading.local()

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is PoolState.READY and self.engine is not None

    def initialize(self, config: PoolConfiguration) -> InitResult:
        """
        Open the pool and run the bootstrap script.

        Never raises: every failure is logged and returned in the result.
        If it fails the host should treat the database as unusable.
        """
        with self._lifecycle_lock:
            if self._state is PoolState.READY:
                logger.warning(f"Connection pool for {self.owner_name} is already initialized")
                return InitResult(success=True)

            self._state = PoolState.INITIALIZING
            try:
                engine = self._open_pool(config)
            except InitializationError as e:
                return self._fail(e)
            except Exception as e:
                return self._fail(InitializationError(
                    f"Unexpected error while opening the database pool: {e}",
                    InitFailureReason.CONNECT_FAILED,
                    cause=e,
                ))

            self.engine = engine
            self.config = config
            self._executor = ThreadPoolExecutor(
                max_workers=self.async_workers or settings.async_max_workers or config.max_pool_size,
                thread_name_prefix=f"{self.owner_name}-worker",
            )
            self._state = PoolState.READY

        logger.info(
            f"Connected to the database {config.database} on {config.hostname}:{config.port} "
            f"with max_pool_size={config.max_pool_size}"
        )
        return InitResult(success=True)

    def initialize_from_data_dir(
        self,
        data_dir: Union[str, Path],
        default_config: PoolConfiguration,
        config_name: Optional[str] = None,
    ) -> InitResult:
        """
        Load connection settings from the YAML file in ``data_dir`` (created
        from the bundled template on first use) over ``default_config`` and
        initialize the pool with them.
        """
        config_name = config_name or settings.config_file_name
        section = get_custom_config(data_dir, config_name)
        if section is None:
            with self._lifecycle_lock:
                if self._state is PoolState.READY:
                    logger.warning(f"Connection pool for {self.owner_name} is already initialized")
                    return InitResult(success=True)
                return self._fail(InitializationError(
                    f"Unable to load {config_name}",
                    InitFailureReason.CONFIG_FILE_UNAVAILABLE,
                ))

        config = replace(default_config)
        config.load_present(section)
        return self.initialize(config)

    def _fail(self, error: InitializationError) -> InitResult:
        self._state = PoolState.FAILED
        logger.error(
            f"Database initialization for {self.owner_name} failed ({error.reason.value}): {error.message}",
            exc_info=error.cause,
        )
        return InitResult(success=False, error=error)

    def _open_pool(self, config: PoolConfiguration) -> Engine:
        try:
            config.validate()
        except ConfigurationError as e:
            raise InitializationError(
                f"{e.message}, unable to connect",
                InitFailureReason.CONFIGURATION_INCOMPLETE,
                cause=e,
            ) from e

        statements = split_statements(self._load_bootstrap_script())

        try:
            engine = self._create_engine(config)
        except (SQLAlchemyError, ImportError) as e:
            raise InitializationError(
                f"Unable to create the database pool: {e}",
                InitFailureReason.CONNECT_FAILED,
                cause=e,
            ) from e

        try:
            self._bootstrap(engine, statements)
        except Exception:
            engine.dispose()
            raise
        return engine

    def _load_bootstrap_script(self) -> str:
        source = self.bootstrap_script
        if source is None:
            name = settings.bootstrap_resource
            text = read_resource_text(name)
        elif isinstance(source, Path):
            name = str(source)
            try:
                text = source.read_text(encoding="utf-8")
            except OSError:
                text = None
        else:
            name = "inline bootstrap script"
            text = source

        if text is None or not split_statements(text):
            raise InitializationError(
                f"{name} is missing, contact the application developer for help",
                InitFailureReason.BOOTSTRAP_MISSING,
            )
        return text

    def _create_engine(self, config: PoolConfiguration) -> Engine:
        connect_args = {}
        if config.is_sqlite:
            connect_args["check_same_thread"] = False

        engine = create_engine(
            config.url(),
            poolclass=QueuePool,
            pool_size=config.max_pool_size,
            max_overflow=0,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=config.pool_pre_ping,
            connect_args=connect_args,
        )
        self._setup_monitoring(engine)
        return engine

    def _setup_monitoring(self, engine: Engine):
        """Setup connection pool monitoring and metrics"""

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            db_connections_created.inc()
            logger.debug("Database connection created")

        @event.listens_for(engine, "close")
        def on_close(dbapi_connection, connection_record):
            db_connections_closed.inc()
            logger.debug("Database connection closed")

        @event.listens_for(engine, "checkout")
        def on_checkout(dbapi_connection, connection_record, connection_proxy):
            db_connection_pool_checked_out.inc()

        @event.listens_for(engine, "checkin")
        def on_checkin(dbapi_connection, connection_record):
            db_connection_pool_checked_out.dec()

    def _bootstrap(self, engine: Engine, statements: List[str]):
        try:
            connection = engine.connect()
        except SQLAlchemyError as e:
            raise InitializationError(
                f"Unable to connect to the database: {e}",
                InitFailureReason.CONNECT_FAILED,
                cause=e,
            ) from e

        with connection:
            try:
                with connection.begin():
                    for statement in statements:
                        connection.exec_driver_sql(statement)
            except SQLAlchemyError as e:
                raise InitializationError(
                    f"An error occurred during database creation: {e}",
                    InitFailureReason.BOOTSTRAP_FAILED,
                    cause=e,
                ) from e

    def shutdown(self, wait: bool = True):
        """
        Close all connections. Safe to call any number of times, and before
        initialize(). May be called from inside a unit of work.

        Args:
            wait: Wait for queued asynchronous work to finish first; when
                False, queued work that has not started is cancelled
        """
        with self._lifecycle_lock:
            if self._state is not PoolState.READY:
                return
            self._state = PoolState.CLOSED
            executor, self._executor = self._executor, None
            engine = self.engine

        try:
            if executor is not None:
                # A worker cannot join itself
                on_worker = getattr(self._local, "worker", False)
                executor.shutdown(wait=wait and not on_worker, cancel_futures=not wait)
        finally:
            with self._lifecycle_lock:
                if self.engine is engine:
                    self.engine = None
                own_leases = getattr(self._local, "leases", 0)
                self._leases_released.wait_for(lambda: self._leases <= own_leases)
                if engine is not None:
                    engine.dispose()
        logger.info(f"Connection pool for {self.owner_name} closed")

    def _ensure_ready(self):
        if not self.is_ready:
            raise NotInitializedError(self._state.value)

    @contextmanager
    def _lease(self, require_ready: bool) -> Iterator[Engine]:
        """
        Hold the engine for one unit of work. shutdown() does not dispose
        the engine while leases from other threads are outstanding.
        """
        with self._lifecycle_lock:
            if require_ready:
                self._ensure_ready()
            engine = self.engine
            if engine is None:
                raise NotInitializedError(self._state.value)
            self._leases += 1

        depth = getattr(self._local, "leases", 0)
        self._local.leases = depth + 1
        try:
            yield engine
        finally:
            self._local.leases = depth
            with self._lifecycle_lock:
                self._leases -= 1
                self._leases_released.notify_all()

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """
        Borrow a connection from the pool for the duration of the block.

        Work done without an explicit commit is committed when the block
        exits normally and rolled back when it raises.
        """
        with self._lease(require_ready=True) as engine:
            with self._checkout(engine) as connection:
                yield connection

    @contextmanager
    def _checkout(self, engine: Engine) -> Iterator[Connection]:
        with engine.connect() as connection:
            yield connection
            if connection.in_transaction():
                connection.commit()

    def execute_sync(self, action_label: str, work: UnitOfWork) -> None:
        """
        Run ``work`` with a pooled connection on the calling thread.

        Database errors raised by ``work`` (SQLAlchemyError or WorkError) are
        logged with ``action_label`` and not propagated. The connection is
        returned to the pool before this method returns or raises.

        Raises:
            NotInitializedError: if the pool is not ready
        """
        with self._lease(require_ready=True) as engine:
            self._run(engine, action_label, work)

    def execute_async(self, action_label: str, work: UnitOfWork) -> "Future[None]":
        """
        Run ``work`` with a pooled connection on a worker thread named
        ``{owner_name}-{action_label}-Thread`` and return immediately.

        Every failure is logged; none reaches the caller. The returned
        future completes with None once the work has run.

        Raises:
            NotInitializedError: if the pool is not ready
        """
        self._ensure_ready()
        executor = self._executor
        if executor is None:
            raise NotInitializedError(self._state.value)
        try:
            return executor.submit(self._run_named, action_label, work)
        except RuntimeError as e:
            # shutdown() won the race after the readiness check
            raise NotInitializedError(self._state.value) from e

    def _run_named(self, action_label: str, work: UnitOfWork) -> None:
        thread = threading.current_thread()
        original_name = thread.name
        thread.name = f"{self.owner_name}-{action_label}-Thread"
        self._local.worker = True
        try:
            # Queued work still runs while shutdown(wait=True) drains the executor
            with self._lease(require_ready=False) as engine:
                self._run(engine, action_label, work)
        except Exception:
            db_task_errors.inc()
            logger.exception(f"Unexpected error during database action: {action_label}")
        finally:
            self._local.worker = False
            thread.name = original_name

    def _run(self, engine: Engine, action_label: str, work: UnitOfWork) -> None:
        start_time = time.time()
        with task_context(self.owner_name, action_label):
            try:
                with self._checkout(engine) as connection:
                    work(connection)
            except (SQLAlchemyError, WorkError):
                db_task_errors.inc()
                logger.error(f"Error during database action: {action_label}", exc_info=True)
            finally:
                db_task_duration.observe(time.time() - start_time)

    def get_pool_stats(self) -> Dict[str, Any]:
        """Get current connection pool statistics"""
        engine = self.engine
        stats: Dict[str, Any] = {
            "owner": self.owner_name,
            "state": self._state.value,
        }
        if engine is None or self.config is None:
            stats["pool_stats"] = "N/A"
            return stats

        pool_obj = engine.pool
        stats.update({
            "pool_size": pool_obj.size(),
            "checked_out": pool_obj.checkedout(),
            "checked_in": pool_obj.checkedin(),
            "overflow": pool_obj.overflow(),
            "configuration": {
                "driver": self.config.driver,
                "hostname": self.config.hostname,
                "port": self.config.port,
                "database": self.config.database,
                "max_pool_size": self.config.max_pool_size,
                "pool_timeout": self.config.pool_timeout,
                "pool_recycle": self.config.pool_recycle,
            },
        })
        return stats
