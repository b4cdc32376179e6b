"""Shared test fixtures: settings, async SQLite database, CSV writer and in-memory fakes."""

import csv
import uuid
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from schools_api.core.config import Settings
from schools_api.lib.enrichment.base import (
    EnrichmentProviderError,
    PostalAddress,
    PostalLookup,
    SchoolCorrection,
    SchoolText,
    TextNormalizer,
)
from schools_api.lib.enrichment.stage import EnrichmentStage
from schools_api.lib.importer.records import NormalizedSchoolRecord
from schools_api.lib.jobs.checkpoint import JobCheckpoint
from schools_api.lib.jobs.commit import CommitRetryPolicy, CommitStage
from schools_api.lib.jobs.controller import ImportJobController
from schools_api.lib.jobs.errors import DuplicateKeyError, InfrastructureError, InsertError
from schools_api.lib.jobs.storage import LocalSourceStorage
from schools_api.models.base import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DEFAULT_HEADER = ["Nome da Escola", "CEP", "Endereço", "Cidade", "UF"]


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside the transaction."""

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn) -> None:  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


def school_row(index: int, *, city: str = "Campinas", state: str = "SP") -> list[str]:
    """A complete source row whose name and CEP are unique per index."""
    return [f"Escola Teste {index}", f"{13000000 + index:08d}", f"Rua {index}, 100", city, state]


@pytest.fixture
def school_rows() -> Callable[..., list[list[str]]]:
    """Factory for ``count`` complete rows numbered from ``start``."""

    def _rows(count: int, start: int = 1) -> list[list[str]]:
        return [school_row(i) for i in range(start, start + count)]

    return _rows


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test application settings: SQLite, no outbound providers."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url=TEST_DATABASE_URL,
        import_upload_dir=str(tmp_path / "uploads"),
        ai_enrichment_enabled=False,
        postal_lookup_enabled=False,
    )


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory async SQLite engine for testing."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def file_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """SQLite file database: every session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'schools.db'}", echo=False)
    enable_sqlite_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Create a per-test async session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a CSV file and returning its path."""

    def _write(
        rows: list[list[str]],
        *,
        header: list[str] | None = None,
        name: str = "escolas.csv",
        delimiter: str = ",",
        encoding: str = "utf-8",
    ) -> Path:
        path = tmp_path / name
        with path.open("w", encoding=encoding, newline="") as f:
            writer = csv.writer(f, delimiter=delimiter)
            writer.writerow(header or DEFAULT_HEADER)
            writer.writerows(rows)
        return path

    return _write


@pytest.fixture
def csv_bytes(write_csv: Callable[..., Path]) -> Callable[..., bytes]:
    """Factory returning the bytes of a generated CSV."""

    def _bytes(rows: list[list[str]], **kwargs: object) -> bytes:
        return write_csv(rows, **kwargs).read_bytes()

    return _bytes


# -- In-memory fakes -----------------------------------------------------------


class InMemoryCheckpointStore:
    """CheckpointStore keeping committed checkpoints in a dict.

    ``fail_saves`` makes the next N saves raise, emulating a lost database.
    """

    def __init__(self) -> None:
        self.committed: dict[uuid.UUID, JobCheckpoint] = {}
        self.saves = 0
        self.rollbacks = 0
        self.fail_saves = 0
        self.on_rollback: Callable[[], None] | None = None
        self.on_save: Callable[[], None] | None = None

    async def create(self, checkpoint: JobCheckpoint) -> None:
        self.committed[checkpoint.id] = checkpoint

    async def load(self, job_id: uuid.UUID) -> JobCheckpoint | None:
        return self.committed.get(job_id)

    async def save(self, checkpoint: JobCheckpoint) -> None:
        if self.fail_saves:
            self.fail_saves -= 1
            msg = "checkpoint store unreachable"
            raise InfrastructureError(msg)
        self.saves += 1
        self.committed[checkpoint.id] = checkpoint
        if self.on_save is not None:
            self.on_save()

    async def rollback(self) -> None:
        self.rollbacks += 1
        if self.on_rollback is not None:
            self.on_rollback()


class FakeRecordStore:
    """RecordStore with a unique slug constraint and scriptable failures.

    Inserts are staged until ``commit`` (wired to the checkpoint store's
    save) and discarded by ``rollback``, like a database transaction.
    """

    def __init__(self) -> None:
        self.rows: dict[str, NormalizedSchoolRecord] = {}
        self.staged: dict[str, NormalizedSchoolRecord] = {}
        self.insert_calls: list[int] = []
        self.fail_lines: set[int] = set()
        self.outage_after_calls: int | None = None

    @property
    def slugs(self) -> set[str]:
        return set(self.rows) | set(self.staged)

    async def existing_fingerprints(self, fingerprints: list[str]) -> set[str]:
        known = {record.fingerprint for record in self.rows.values()}
        return known & set(fingerprints)

    async def insert_many(self, records: list[NormalizedSchoolRecord]) -> None:
        self.insert_calls.append(len(records))
        if self.outage_after_calls is not None and len(self.insert_calls) > self.outage_after_calls:
            msg = "record store unreachable"
            raise InfrastructureError(msg)
        for record in records:
            if record.line in self.fail_lines:
                msg = f"value too long for line {record.line}"
                raise InsertError(msg)
        seen: set[str] = set()
        for record in records:
            if record.slug in self.slugs or record.slug in seen:
                msg = f'duplicate key value violates unique constraint "schools_slug_key": {record.slug}'
                raise DuplicateKeyError(msg)
            seen.add(record.slug)
        for record in records:
            self.staged[record.slug] = record

    def commit(self) -> None:
        self.rows.update(self.staged)
        self.staged.clear()

    def rollback(self) -> None:
        self.staged.clear()


class FakeNormalizer(TextNormalizer):
    """Returns scripted corrections, or raises a provider error on every call."""

    def __init__(
        self,
        corrections: Callable[[SchoolText], SchoolCorrection | None] | None = None,
        *,
        fail: bool = False,
    ) -> None:
        self._corrections = corrections
        self._fail = fail
        self.calls: list[int] = []

    @property
    def provider_name(self) -> str:
        return "fake_ai"

    async def normalize(self, items: list[SchoolText]) -> list[SchoolCorrection]:
        self.calls.append(len(items))
        if self._fail:
            raise EnrichmentProviderError("fake_ai", "Rate limit exceeded", status_code=429)
        if self._corrections is None:
            return []
        return [c for c in (self._corrections(item) for item in items) if c is not None]


class FakePostalLookup(PostalLookup):
    """Resolves postal codes from a dict; listed codes raise provider errors."""

    def __init__(
        self,
        addresses: dict[str, PostalAddress] | None = None,
        *,
        failing: set[str] | None = None,
        name: str = "fake_postal",
    ) -> None:
        self._addresses = addresses or {}
        self._failing = failing or set()
        self._name = name
        self.calls: list[str] = []

    @property
    def provider_name(self) -> str:
        return self._name

    async def lookup(self, postal_code: str) -> PostalAddress | None:
        self.calls.append(postal_code)
        if postal_code in self._failing:
            raise EnrichmentProviderError(self._name, "Lookup request timed out")
        return self._addresses.get(postal_code)


@pytest.fixture
def checkpoint_store() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def record_store(checkpoint_store: InMemoryCheckpointStore) -> FakeRecordStore:
    store = FakeRecordStore()
    checkpoint_store.on_save = store.commit
    checkpoint_store.on_rollback = store.rollback
    return store


@pytest.fixture
def storage(tmp_path: Path) -> LocalSourceStorage:
    return LocalSourceStorage(tmp_path / "uploads")


@pytest.fixture
def make_controller(
    checkpoint_store: InMemoryCheckpointStore,
    record_store: FakeRecordStore,
    storage: LocalSourceStorage,
) -> Callable[..., ImportJobController]:
    """Factory for a controller over the in-memory fakes."""

    def _make(
        *,
        batch_size: int = 1500,
        enrichment: EnrichmentStage | None = None,
        policy: CommitRetryPolicy | None = None,
        max_logged_errors: int = 200,
    ) -> ImportJobController:
        return ImportJobController(
            checkpoint_store,
            storage,
            enrichment or EnrichmentStage(),
            CommitStage(record_store, policy),
            batch_size=batch_size,
            max_logged_errors=max_logged_errors,
        )

    return _make


@pytest.fixture
def fake_normalizer_cls() -> type[FakeNormalizer]:
    return FakeNormalizer


@pytest.fixture
def fake_postal_cls() -> type[FakePostalLookup]:
    return FakePostalLookup
