"""
Session Store - SQLite-backed durable project context.

Features:
- One record per project root, tagged with a schema version
- Atomic saves (readers never observe a partially written record)
- Append-only session history, enforced on every save
- Per-project step locks serializing phase-step writes
- Quarantine of corrupt records instead of silent deletion
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite
from pydantic import ValidationError as PydanticValidationError

from ..errors import CorruptStateError, ValidationError
from .models import ProjectContext, SessionEvent

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def normalize_root(project_root: str | Path) -> str:
	"""Canonical key for a project root."""
	return str(Path(project_root).expanduser().resolve())


class SessionStore:
	"""
	SQLite-backed session storage keyed by project root.

	Usage:
		store = SessionStore("data/sessions.db")
		await store.init()

		async with store.step_lock(root):
			context = await store.load(root)
			context = context.record(event)
			await store.save(root, context)
	"""

	def __init__(self, db_path: str | Path):
		"""Initialize the session store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None
		self._write_lock = asyncio.Lock()
		self._step_locks: dict[str, asyncio.Lock] = {}

	async def init(self):
		"""Initialize the database schema."""
		# Autocommit mode; write transactions are opened explicitly
		self._db = await aiosqlite.connect(str(self.db_path), isolation_level=None)
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("PRAGMA journal_mode=WAL")
		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS sessions (
				project_root TEXT PRIMARY KEY,
				schema_version INTEGER NOT NULL,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
		""")
		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS quarantined_sessions (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				project_root TEXT NOT NULL,
				schema_version INTEGER,
				data TEXT,
				reason TEXT NOT NULL,
				quarantined_at TEXT NOT NULL
			)
		""")
		logger.info(f"Session store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def _conn(self) -> aiosqlite.Connection:
		if not self._db:
			await self.init()
		return self._db

	@asynccontextmanager
	async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
		"""Run a block inside one immediate write transaction."""
		db = await self._conn()
		async with self._write_lock:
			await db.execute("BEGIN IMMEDIATE")
			try:
				yield db
			except BaseException:
				await db.execute("ROLLBACK")
				raise
			await db.execute("COMMIT")

	@asynccontextmanager
	async def step_lock(self, project_root: str | Path) -> AsyncIterator[None]:
		"""
		Exclusive access to a project's record for one phase step.

		Released on every exit path, including failure and cancellation.
		"""
		key = normalize_root(project_root)
		lock = self._step_locks.setdefault(key, asyncio.Lock())
		async with lock:
			logger.debug(f"Acquired step lock for {key}")
			try:
				yield
			finally:
				logger.debug(f"Released step lock for {key}")

	def _parse(self, key: str, row: aiosqlite.Row) -> ProjectContext:
		"""Parse a stored row, rejecting unknown versions and bad payloads."""
		version = row["schema_version"]
		if version != SCHEMA_VERSION:
			raise CorruptStateError(key, f"unrecognized schema version {version!r}")
		try:
			return ProjectContext.model_validate_json(row["data"])
		except PydanticValidationError as e:
			raise CorruptStateError(key, f"record does not match schema: {e}") from e

	async def _fetch_row(self, db: aiosqlite.Connection, key: str) -> Optional[aiosqlite.Row]:
		async with db.execute(
			"SELECT * FROM sessions WHERE project_root = ?",
			(key,)
		) as cursor:
			return await cursor.fetchone()

	async def load(self, project_root: str | Path) -> Optional[ProjectContext]:
		"""
		Load the project context for a root.

		Returns:
			ProjectContext, or None when no record exists

		Raises:
			CorruptStateError: If the record is unparseable or has an unknown version
		"""
		key = normalize_root(project_root)
		db = await self._conn()
		row = await self._fetch_row(db, key)
		if not row:
			return None
		return self._parse(key, row)

	async def save(self, project_root: str | Path, context: ProjectContext) -> None:
		"""
		Atomically write the project context.

		Raises:
			CorruptStateError: If the existing record is corrupt (quarantine it first)
			ValidationError: If the save would rewrite or drop recorded history
		"""
		key = normalize_root(project_root)
		async with self._transaction() as db:
			row = await self._fetch_row(db, key)
			if row:
				existing = self._parse(key, row)
				self._check_history_append_only(key, existing, context)
			await self._write(db, key, context, created=row["created_at"] if row else None)

		logger.info(f"Saved session for {key} ({len(context.session_history)} events)")

	async def append_event(self, project_root: str | Path, event: SessionEvent) -> ProjectContext:
		"""
		Append one event to the stored history in a single transaction.

		Returns:
			The updated ProjectContext

		Raises:
			ValidationError: If no record exists for the project
			CorruptStateError: If the stored record is corrupt
		"""
		key = normalize_root(project_root)
		async with self._transaction() as db:
			row = await self._fetch_row(db, key)
			if not row:
				raise ValidationError(f"No session to append to for {key}")
			context = self._parse(key, row)
			context = context.record(event)
			await self._write(db, key, context, created=row["created_at"])

		logger.info(f"Appended {event.kind.value} event for {event.phase.value} to {key}")
		return context

	async def _write(
		self,
		db: aiosqlite.Connection,
		key: str,
		context: ProjectContext,
		created: Optional[str],
	) -> None:
		now = datetime.now().isoformat()
		await db.execute(
			"""
			INSERT INTO sessions (project_root, schema_version, data, created_at, updated_at)
			VALUES (?, ?, ?, ?, ?)
			ON CONFLICT(project_root) DO UPDATE SET
				schema_version = excluded.schema_version,
				data = excluded.data,
				updated_at = excluded.updated_at
			""",
			(key, SCHEMA_VERSION, context.to_record(), created or now, now)
		)

	def _check_history_append_only(
		self,
		key: str,
		existing: ProjectContext,
		incoming: ProjectContext,
	) -> None:
		old = existing.session_history
		if incoming.session_history[:len(old)] != old:
			raise ValidationError(
				f"Refusing to rewrite session history for {key}: "
				f"stored {len(old)} events, incoming {len(incoming.session_history)}"
			)

	async def quarantine(self, project_root: str | Path, reason: str = "corrupt") -> bool:
		"""
		Move a project's record aside so a fresh run can start.

		The record is kept in quarantined_sessions, never deleted.

		Returns:
			True if a record was moved
		"""
		key = normalize_root(project_root)
		async with self._transaction() as db:
			row = await self._fetch_row(db, key)
			if not row:
				return False
			await db.execute(
				"""
				INSERT INTO quarantined_sessions (project_root, schema_version, data, reason, quarantined_at)
				VALUES (?, ?, ?, ?, ?)
				""",
				(key, row["schema_version"], row["data"], reason, datetime.now().isoformat())
			)
			await db.execute("DELETE FROM sessions WHERE project_root = ?", (key,))

		logger.warning(f"Quarantined session record for {key}: {reason}")
		return True

	async def list_quarantined(self, project_root: str | Path) -> list[dict]:
		"""List quarantined records for a project, newest first."""
		key = normalize_root(project_root)
		db = await self._conn()
		async with db.execute(
			"SELECT * FROM quarantined_sessions WHERE project_root = ? ORDER BY id DESC",
			(key,)
		) as cursor:
			rows = await cursor.fetchall()
		return [
			{
				"project_root": row["project_root"],
				"schema_version": row["schema_version"],
				"reason": row["reason"],
				"quarantined_at": row["quarantined_at"],
			}
			for row in rows
		]

	async def list_projects(self) -> list[dict]:
		"""
		List all projects with stored sessions.

		Returns:
			List of project info dictionaries
		"""
		db = await self._conn()
		async with db.execute(
			"SELECT project_root, schema_version, updated_at FROM sessions ORDER BY updated_at DESC"
		) as cursor:
			rows = await cursor.fetchall()

		return [
			{
				"project_root": row["project_root"],
				"schema_version": row["schema_version"],
				"last_updated": row["updated_at"],
			}
			for row in rows
		]


# Global store instance
_store: Optional[SessionStore] = None


async def get_session_store(db_path: str = "") -> SessionStore:
	"""Get or create the global session store."""
	global _store
	if _store is None:
		if not db_path:
			from ..config import get_config
			db_path = str(get_config().state_db_path)
		_store = SessionStore(db_path)
		await _store.init()
	return _store
