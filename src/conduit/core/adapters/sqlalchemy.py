"""SQLAlchemy backend adapter.

Wraps one SQLAlchemy 2.x ``Connection`` (or an ``Engine``, connected
lazily on first use) under a connection name.

* Outermost ``begin()`` starts a real transaction, nested ``begin()`` calls
  on the same adapter use SAVEPOINTs.
* Isolation levels are applied per outermost transaction (or per single
  query/statement outside a transaction) and reverted afterwards.
* Driver exceptions are translated into conduit errors, with connection
  name and source text attached.

Tags:
    conduit, sqlalchemy, adapter, transactions, savepoint

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import itertools
import re
from typing import Any, TypeVar

from sqlalchemy import bindparam, create_engine, event, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql.elements import TextClause

from conduit.core.errors import (
    BeginTransactionError,
    CommitTransactionError,
    ConduitError,
    DatabaseConnectionError,
    DeadlockError,
    DriverError,
    DriverSyntaxError,
    ErrorContext,
    IsolationError,
    LockWaitTimeoutError,
    LogicError,
    RollbackTransactionError,
)

from .base import Adapter
from .parameters import Named, Parameters, Positional
from .result import Result
from .types import Options, Transaction

_DEADLOCK_CODES = {"40P01", "40001", 1213}
_LOCK_WAIT_CODES = {"55P03", 1205}
_SYNTAX_CODES = {"42601", 1064}
_CONNECTION_ERRNOS = {2002, 2003, 2006, 2013}

# Quoted literals/identifiers and comments are matched first so a "?" inside them is kept
_POSITIONAL_TOKENS = re.compile(
    r"""'(?:[^']|'')*'|"(?:[^"]|"")*"|--[^\n]*|/\*.*?\*/|\?""",
    re.DOTALL,
)

T = TypeVar("T")


@dataclass
class _Frame:
    handle: Transaction
    transaction: Any
    isolation: str | None


def create_sqlite_engine(url: str = "sqlite://", **kwargs: Any) -> Engine:
    """Create a SQLite engine with working SAVEPOINT support.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINTs. The driver's own transaction handling is disabled and
    BEGIN is emitted when SQLAlchemy starts a transaction.
    """
    kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, _rec: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


class SQLAlchemyAdapter(Adapter):
    """
    Adapter over a single SQLAlchemy connection.

    Usage:
        engine = create_engine("postgresql+psycopg://localhost/orders")
        with SQLAlchemyAdapter("orders", engine) as adapter:
            adapter.query("SELECT 1").scalar()
    """

    def __init__(self, name: str, bind: Engine | Connection):
        super().__init__(name)
        self._engine: Engine | None = bind if isinstance(bind, Engine) else None
        self._connection: Connection | None = bind if isinstance(bind, Connection) else None
        self._owns_connection = self._engine is not None
        self._frames: list[_Frame] = []

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    @property
    def connection(self) -> Connection:
        """Underlying connection, connecting the engine on first access."""
        if self._connection is None:
            if self._engine is None:
                raise LogicError(f'Connection of adapter "{self.name}" is closed.')
            try:
                self._connection = self._engine.connect()
            except sa_exc.SQLAlchemyError as exc:
                raise DatabaseConnectionError(
                    f'Unable to connect "{self.name}": {exc}',
                    cause=exc,
                    context=ErrorContext(connection=self.name),
                ) from exc
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return bool(self._frames)

    def close(self) -> None:
        """Close the connection if this adapter opened it."""
        if self._owns_connection and self._connection is not None:
            self._connection.close()
            self._connection = None
        self._frames.clear()

    def __enter__(self) -> SQLAlchemyAdapter:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #

    def begin(self, transaction: Transaction | None = None) -> Transaction:
        handle = (transaction or Transaction()).with_connection(self.name)
        conn = self.connection
        isolation = handle.isolation.value if handle.isolation is not None else None

        if self._frames or conn.in_transaction():
            if isolation is not None:
                raise IsolationError(
                    f'Unable to change isolation level of connection "{self.name}" '
                    f"within an active transaction.",
                    context=ErrorContext(connection=self.name, isolation=isolation),
                )
            try:
                savepoint = conn.begin_nested()
            except sa_exc.SQLAlchemyError as exc:
                raise self._translate(exc, BeginTransactionError, f'Unable to begin transaction on "{self.name}"') from exc

            self._frames.append(_Frame(handle, savepoint, None))
            return handle

        previous = self._apply_isolation(isolation)

        try:
            outer = conn.begin()
        except sa_exc.SQLAlchemyError as exc:
            self._revert_isolation(previous)
            raise self._translate(exc, BeginTransactionError, f'Unable to begin transaction on "{self.name}"') from exc

        self._frames.append(_Frame(handle, outer, previous))
        return handle

    def commit(self, transaction: Transaction) -> None:
        frame = self._innermost(transaction, CommitTransactionError)
        try:
            frame.transaction.commit()
        except sa_exc.SQLAlchemyError as exc:
            # frame stays on the stack, the caller is expected to roll it back
            raise self._translate(exc, CommitTransactionError, f'Unable to commit transaction on "{self.name}"') from exc

        self._frames.pop()
        if not self._frames:
            self._revert_isolation(frame.isolation)

    def rollback(self, transaction: Transaction) -> None:
        frame = self._innermost(transaction, RollbackTransactionError)
        self._frames.pop()
        failed_commit = not frame.transaction.is_active

        try:
            frame.transaction.rollback()
            if failed_commit and not self._frames:
                # SQLAlchemy deactivates a root transaction whose COMMIT failed
                # without rolling it back, while the database may keep it open
                conn = self.connection
                conn.dialect.do_rollback(conn.connection)
        except sa_exc.SQLAlchemyError as exc:
            raise self._translate(exc, RollbackTransactionError, f'Unable to roll back transaction on "{self.name}"') from exc
        except self.connection.dialect.loaded_dbapi.Error as exc:
            raise RollbackTransactionError(
                f'Unable to roll back transaction on "{self.name}": {exc}',
                cause=exc,
                context=ErrorContext(connection=self.name),
            ) from exc
        finally:
            if not self._frames:
                self._revert_isolation(frame.isolation)

    def _innermost(self, transaction: Transaction, error: type[ConduitError]) -> _Frame:
        if not self._frames or self._frames[-1].handle is not transaction:
            raise error(
                f'Transaction {transaction!r} is not the innermost active transaction of "{self.name}".',
                context=ErrorContext(connection=self.name),
            )
        return self._frames[-1]

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def query(
        self,
        source: str,
        parameters: Parameters | None = None,
        options: Options | None = None,
    ) -> Result:
        rows = self._execute(source, parameters, options, lambda cursor: [dict(row._mapping) for row in cursor])
        return Result(self.name, rows)

    def statement(
        self,
        source: str,
        parameters: Parameters | None = None,
        options: Options | None = None,
    ) -> int:
        return self._execute(source, parameters, options, lambda cursor: cursor.rowcount)

    def _execute(
        self,
        source: str,
        parameters: Parameters | None,
        options: Options | None,
        consume: Callable[[Any], T],
    ) -> T:
        conn = self.connection
        isolation = options.isolation if options is not None else None
        standalone = not conn.in_transaction()

        if isolation is not None and not standalone:
            raise IsolationError(
                f'Unable to change isolation level of connection "{self.name}" '
                f"within an active transaction.",
                context=ErrorContext(connection=self.name, source=source, isolation=isolation.value),
            )

        previous = self._apply_isolation(isolation.value if isolation is not None else None) if standalone else None
        clause, values = self._compile(source, parameters)

        try:
            cursor = conn.execute(clause, values)
            output = consume(cursor)
            if standalone:
                conn.commit()
            return output
        except sa_exc.SQLAlchemyError as exc:
            if standalone:
                conn.rollback()
            raise self._translate(exc, DriverError, f'Unable to execute on "{self.name}"', source) from exc
        finally:
            if standalone:
                self._revert_isolation(previous)

    @staticmethod
    def _compile(source: str, parameters: Parameters | None) -> tuple[TextClause, dict[str, Any]]:
        if parameters is None or len(parameters) == 0:
            return text(source), {}

        if isinstance(parameters, Positional):
            # text() only binds named parameters, rewrite ? placeholders
            counter = itertools.count()

            def placeholder(match: re.Match[str]) -> str:
                token = match.group(0)
                return f":p{next(counter)}" if token == "?" else token

            values = {f"p{i}": v for i, v in enumerate(parameters.values)}
            types = {f"p{i}": t for i, t in enumerate(parameters.types)}
            clause = text(_POSITIONAL_TOKENS.sub(placeholder, source))
        elif isinstance(parameters, Named):
            values = parameters.values
            types = parameters.types
            clause = text(source)
        else:
            raise DriverError(f"Unsupported parameters type {type(parameters).__qualname__}.")

        typed = [bindparam(name, type_=type_) for name, type_ in types.items() if type_ is not None]
        if typed:
            clause = clause.bindparams(*typed)

        return clause, values

    # ------------------------------------------------------------------ #
    # Isolation
    # ------------------------------------------------------------------ #

    def _apply_isolation(self, isolation: str | None) -> str | None:
        """Set isolation level, return the level to revert to (``None`` → unchanged)."""
        if isolation is None:
            return None

        conn = self.connection
        previous = conn.get_execution_options().get("isolation_level", conn.default_isolation_level)
        try:
            conn.execution_options(isolation_level=isolation)
        except sa_exc.SQLAlchemyError as exc:
            raise IsolationError(
                f'Unable to set isolation level "{isolation}" on "{self.name}": {exc}',
                cause=exc,
                context=ErrorContext(connection=self.name, isolation=isolation),
            ) from exc
        return previous

    def _revert_isolation(self, previous: str | None) -> None:
        if previous is None or self._connection is None:
            return
        try:
            self._connection.execution_options(isolation_level=previous)
        except sa_exc.SQLAlchemyError as exc:
            raise IsolationError(
                f'Unable to revert isolation level to "{previous}" on "{self.name}": {exc}',
                cause=exc,
                context=ErrorContext(connection=self.name, isolation=previous),
            ) from exc

    # ------------------------------------------------------------------ #
    # Exception translation
    # ------------------------------------------------------------------ #

    def _translate(
        self,
        exc: sa_exc.SQLAlchemyError,
        fallback: type[ConduitError],
        message: str,
        source: str | None = None,
    ) -> ConduitError:
        """Map a SQLAlchemy/driver exception onto the conduit taxonomy."""
        orig = getattr(exc, "orig", None)
        detail = str(orig if orig is not None else exc)
        lowered = detail.lower()
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if code is None and orig is not None and orig.args and isinstance(orig.args[0], int):
            code = orig.args[0]

        error_class: type[ConduitError]
        if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
            error_class = DatabaseConnectionError
        elif code in _DEADLOCK_CODES or "deadlock" in lowered:
            error_class = DeadlockError
        elif code in _LOCK_WAIT_CODES or "database is locked" in lowered or "lock wait timeout" in lowered:
            error_class = LockWaitTimeoutError
        elif code in _SYNTAX_CODES or "syntax error" in lowered:
            error_class = DriverSyntaxError
        elif (isinstance(code, str) and code.startswith("08")) or code in _CONNECTION_ERRNOS:
            error_class = DatabaseConnectionError
        else:
            error_class = fallback

        return error_class(
            f"{message}: {detail}",
            cause=exc,
            context=ErrorContext(connection=self.name, source=source),
        )


__all__ = [
    "SQLAlchemyAdapter",
    "create_sqlite_engine",
]
