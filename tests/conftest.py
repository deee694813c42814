"""Shared pytest fixtures and utilities for storefront finance tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from storefront_finance import cli, constants, core_logic, data_manager  # noqa: E402
from storefront_finance.constants import TransactionStatus, TransactionType  # noqa: E402
from storefront_finance.dates import DateNormalizer  # noqa: E402
from storefront_finance.local_cache import LocalCache  # noqa: E402
from storefront_finance.remote_store import RemoteStore, encode_row  # noqa: E402
from setup_store import write_config  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    cache_path: Path
    schema_version: str


# ---------------------------------------------------------------------------
# Supabase test double
# ---------------------------------------------------------------------------


@dataclass
class FakeResponse:
    data: Any
    count: Optional[int] = None


class FakeBackendError(Exception):
    """Raised by the fake client while ``failing`` is switched on."""


class FakeQuery:
    """Minimal stand-in for the PostgREST request builder."""

    def __init__(self, backend: "FakeSupabase", table: str) -> None:
        self.backend = backend
        self.table = table
        self.action = "select"
        self.payload: Optional[Dict[str, Any]] = None
        self.want_count = False
        self.predicates: List[Callable[[Dict[str, Any]], bool]] = []
        self.ordering: List[tuple] = []
        self.window: Optional[tuple] = None
        self.max_rows: Optional[int] = None

    def select(self, *columns: str, count: Optional[str] = None) -> "FakeQuery":
        self.action = "select"
        self.want_count = count == "exact"
        return self

    def insert(self, row: Dict[str, Any]) -> "FakeQuery":
        self.action, self.payload = "insert", dict(row)
        return self

    def update(self, row: Dict[str, Any]) -> "FakeQuery":
        self.action, self.payload = "update", dict(row)
        return self

    def delete(self) -> "FakeQuery":
        self.action = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.predicates.append(lambda row: row.get(column) == value)
        return self

    def gte(self, column: str, value: str) -> "FakeQuery":
        bound = _instant(value)
        self.predicates.append(lambda row: _instant(row[column]) >= bound)
        return self

    def lte(self, column: str, value: str) -> "FakeQuery":
        bound = _instant(value)
        self.predicates.append(lambda row: _instant(row[column]) <= bound)
        return self

    def or_(self, expression: str) -> "FakeQuery":
        clauses = []
        for clause in expression.split(","):
            column, operator, pattern = clause.split(".", 2)
            assert operator == "ilike"
            clauses.append((column, pattern.strip("%").lower()))
        self.predicates.append(
            lambda row: any(term in str(row.get(column) or "").lower() for column, term in clauses)
        )
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.ordering.append((column, desc))
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.window = (start, end)
        return self

    def limit(self, size: int) -> "FakeQuery":
        self.max_rows = size
        return self

    def execute(self) -> FakeResponse:
        self.backend.record(self.table, self.action)
        rows = self.backend.rows
        matching = [row for row in rows if all(predicate(row) for predicate in self.predicates)]

        if self.action == "insert":
            created = self.backend.add_row(self.payload or {})
            return FakeResponse(data=[dict(created)])
        if self.action == "update":
            for row in matching:
                row.update(self.backend.normalize_dates(self.payload or {}))
            return FakeResponse(data=[dict(row) for row in matching])
        if self.action == "delete":
            self.backend.rows = [row for row in rows if row not in matching]
            return FakeResponse(data=[dict(row) for row in matching])

        for column, desc in reversed(self.ordering):
            matching = sorted(matching, key=lambda row: _sort_value(column, row), reverse=desc)
        total = len(matching)
        if self.window is not None:
            start, end = self.window
            matching = matching[start:end + 1]
        if self.max_rows is not None:
            matching = matching[: self.max_rows]
        if self.backend.max_rows is not None:
            matching = matching[: self.backend.max_rows]
        return FakeResponse(data=[dict(row) for row in matching], count=total if self.want_count else None)


class FakeRpc:
    def __init__(self, backend: "FakeSupabase", name: str, params: Dict[str, Any]) -> None:
        self.backend = backend
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        self.backend.record("rpc", self.name)
        if not self.backend.rpc_enabled:
            raise FakeBackendError(f"function {self.name} does not exist")
        self.backend.rpc_calls.append(dict(self.params))
        row = {key[len("p_"):]: value for key, value in self.params.items()}
        created = self.backend.add_row(row)
        return FakeResponse(data=created["id"])


class FakeSupabase:
    """In-memory double of the supabase client with a failure switch.

    Date columns are kept as UTC instants, the way the backend stores them;
    plain dates arriving through the RPC are stamped at business noon.
    """

    DATE_COLUMNS = ("data", "datavencimento", "datapagamento")

    def __init__(self, *, normalizer: Optional[DateNormalizer] = None) -> None:
        self.normalizer = normalizer or DateNormalizer()
        self.rows: List[Dict[str, Any]] = []
        self.failing = False
        self.rpc_enabled = True
        # Server-side cap on rows per response, like PostgREST max-rows.
        self.max_rows: Optional[int] = None
        self.rpc_calls: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self._next_id = 1

    def record(self, target: str, action: str) -> None:
        self.calls.append((target, action))
        if self.failing:
            raise FakeBackendError("connection refused")

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def normalize_dates(self, row: Dict[str, Any]) -> Dict[str, Any]:
        normalized = dict(row)
        for column in self.DATE_COLUMNS:
            value = normalized.get(column)
            if isinstance(value, str) and len(value) == 10:
                normalized[column] = self.normalizer.to_storage_instant(value)
        return normalized

    def add_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        created = self.normalize_dates(row)
        if not created.get("id"):
            created["id"] = f"FT{self._next_id:04d}"
            self._next_id += 1
        created["created_at"] = "2024-01-01T00:00:00+00:00"
        self.rows.append(created)
        return created

    def load(self, transactions: Iterable[data_manager.Transaction]) -> None:
        """Store ``transactions`` as backend rows, keeping their ids."""

        for txn in transactions:
            row = encode_row(txn.__dict__, self.normalizer)
            row["id"] = txn.id
            self.add_row(row)


def _instant(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _sort_value(column: str, row: Dict[str, Any]) -> Any:
    if column in FakeSupabase.DATE_COLUMNS:
        return _instant(row[column])
    return str(row.get(column) or "")


# ---------------------------------------------------------------------------
# Session and environment
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _no_supabase_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep real credentials from the environment out of every test."""

    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


# ---------------------------------------------------------------------------
# Record and store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_transaction() -> Callable[..., data_manager.Transaction]:
    """Factory producing valid transactions with overridable fields."""

    base = data_manager.Transaction(
        id="TRX100",
        description="Counter sale",
        amount=Decimal("10.00"),
        type=TransactionType.INCOME,
        category="Sales",
        status=TransactionStatus.CONFIRMED,
        transaction_date="2024-03-01",
    )

    def _make(**overrides: Any) -> data_manager.Transaction:
        return replace(base, **overrides)

    return _make


@pytest.fixture
def normalizer() -> DateNormalizer:
    return DateNormalizer(constants.DEFAULT_UTC_OFFSET_HOURS)


@pytest.fixture
def fake_supabase(normalizer: DateNormalizer) -> FakeSupabase:
    return FakeSupabase(normalizer=normalizer)


@pytest.fixture
def remote_store(fake_supabase: FakeSupabase, normalizer: DateNormalizer) -> RemoteStore:
    return RemoteStore(fake_supabase, normalizer=normalizer)


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / "cache" / "transactions_cache.json"


@pytest.fixture
def local_cache(cache_path: Path) -> LocalCache:
    """A cache that seeds the baseline transactions on first use."""

    return LocalCache(cache_path)


@pytest.fixture
def empty_cache(tmp_path: Path) -> LocalCache:
    """A cache with no seed records, for exact-content assertions."""

    return LocalCache(tmp_path / "empty_cache.json", seed=())


@pytest.fixture
def store(remote_store: RemoteStore, empty_cache: LocalCache, normalizer: DateNormalizer) -> core_logic.TransactionStore:
    """Transaction store whose remote path is the fake backend."""

    return core_logic.TransactionStore(remote_store, empty_cache, normalizer=normalizer)


@pytest.fixture
def offline_store(local_cache: LocalCache, normalizer: DateNormalizer) -> core_logic.TransactionStore:
    """Transaction store with no remote client, served by the seeded cache."""

    return core_logic.TransactionStore(RemoteStore(None, normalizer=normalizer), local_cache, normalizer=normalizer)


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        remote_url: str = "",
        remote_key: str = "",
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        cache_path = bundle_dir / "transactions_cache.json"
        cache_entry = cache_path.name if make_relative else str(cache_path)
        config_path = write_config(
            bundle_dir / "config.ini",
            cache_file=cache_entry,
            remote_url=remote_url,
            remote_key=remote_key,
            schema_version=schema_version,
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            cache_path=cache_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    return core_logic.load_runtime_context(config_file)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="finance-cli", description="Finance CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("catalog-test")

    spec = cli.CommandSpec(
        name="catalog-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "catalog-test", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
