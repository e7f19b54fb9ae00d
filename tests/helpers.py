"""Shared test fixtures and helpers for planning-orchestrator tests."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable, Optional

import aiosqlite

from planning_orchestrator.config import Config
from planning_orchestrator.orchestrator.collaborators import (
	DispatchInstruction,
	DispatchResult,
	Prompt,
	PromptKind,
)
from planning_orchestrator.session.models import (
	ComplexityPreference,
	Constraints,
	EventKind,
	PhaseId,
	ProjectContext,
	SessionEvent,
)
from planning_orchestrator.session.store import SessionStore, normalize_root

CONTEXT_ANSWERS = {
	"project_type": "web app",
	"primary_goal": "Sell handmade goods online",
	"target_audience": "independent makers",
	"must_have_features": "checkout, product catalog",
	"technical_constraints": "python",
	"timeline": "3 months",
	"budget": "small",
	"complexity_preference": "HIGH_LEVEL",
	"integrations": "Stripe",
}


def capture_tools(config: Any, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		config: Config object to pass to the registration function
		register_fn: The registration function (e.g., register_planning_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), config)
	return captured


def make_config(tmp_path: Path, **overrides: Any) -> Config:
	"""Config rooted in a temp directory."""
	return Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data", **overrides)


@asynccontextmanager
async def open_store(tmp_path: Path) -> AsyncIterator[SessionStore]:
	"""An initialized store in a temp directory, closed afterwards."""
	store = SessionStore(tmp_path / "sessions.db")
	await store.init()
	try:
		yield store
	finally:
		await store.close()


async def write_raw(db_path: Path, root: Path, schema_version: int, data: str) -> None:
	"""Write a session row behind the store's back."""
	async with aiosqlite.connect(str(db_path)) as db:
		await db.execute(
			"""
			INSERT OR REPLACE INTO sessions (project_root, schema_version, data, created_at, updated_at)
			VALUES (?, ?, ?, '2026-01-01T00:00:00', '2026-01-01T00:00:00')
			""",
			(normalize_root(root), schema_version, data),
		)
		await db.commit()


def make_context(
	preference: ComplexityPreference = ComplexityPreference.HIGH_LEVEL,
	history: Iterable[SessionEvent] = (),
	**overrides: Any,
) -> ProjectContext:
	"""Create a ProjectContext with realistic content for testing."""
	fields = {
		"project_type": "web app",
		"primary_goal": "Sell handmade goods online",
		"target_audience": "independent makers",
		"must_have_features": ["checkout", "product catalog"],
		"constraints": Constraints(technical=frozenset({"python"}), timeline="3 months"),
		"complexity_preference": preference,
		"integrations": frozenset({"Stripe"}),
		"session_history": tuple(history),
	}
	fields.update(overrides)
	return ProjectContext(**fields)


def make_event(
	phase: PhaseId,
	kind: EventKind = EventKind.COMPLETED,
	decisions: Optional[list[str]] = None,
) -> SessionEvent:
	return SessionEvent(phase=phase, kind=kind, decisions=decisions or [f"{phase.value} done"])


def completed_through(phase: PhaseId) -> list[SessionEvent]:
	"""Completed events for every phase up to and including phase."""
	order = list(PhaseId)
	return [make_event(p) for p in order[:order.index(phase) + 1]]


class ScriptedDialogue:
	"""
	Dialogue collaborator answering from a dict keyed by prompt id.

	Unanswered prompts get a blank answer (the prompt's default), except
	confirmations, which default to "no".
	"""

	def __init__(self, answers: Optional[dict[str, Any]] = None, fail_times: int = 0):
		self.answers = dict(CONTEXT_ANSWERS)
		self.answers.update(answers or {})
		self.fail_times = fail_times
		self.asked: list[Prompt] = []

	async def ask(self, prompts: list[Prompt]) -> list[Any]:
		if self.fail_times > 0:
			self.fail_times -= 1
			raise RuntimeError("dialogue unavailable")
		self.asked.extend(prompts)
		replies = []
		for prompt in prompts:
			if prompt.id in self.answers:
				replies.append(self.answers[prompt.id])
			elif prompt.kind == PromptKind.CONFIRM:
				replies.append("no")
			else:
				replies.append("")
		return replies

	def prompt_ids(self) -> list[str]:
		return [p.id for p in self.asked]


class RecordingExecutor:
	"""Execution collaborator that records instructions and can fail on demand."""

	def __init__(
		self,
		fail_ids: Iterable[str] = (),
		fail_times: int = 0,
		tokens: int = 0,
		delay: float = 0.0,
	):
		self.fail_ids = set(fail_ids)
		self.fail_times = fail_times
		self.tokens = tokens
		self.delay = delay
		self.instructions: list[DispatchInstruction] = []
		self.active_agents = 0
		self.peak_agents = 0

	async def execute(self, instruction: DispatchInstruction) -> DispatchResult:
		self.instructions.append(instruction)
		self.active_agents += instruction.agent_count
		self.peak_agents = max(self.peak_agents, self.active_agents)
		try:
			if self.delay:
				await asyncio.sleep(self.delay)
			if instruction.task_id in self.fail_ids:
				return DispatchResult(success=False, error=f"{instruction.task_id} broke")
			if self.fail_times > 0:
				self.fail_times -= 1
				raise RuntimeError("executor offline")
			return DispatchResult(success=True, artifact=f"{instruction.task_id}.md", tokens_used=self.tokens)
		finally:
			self.active_agents -= instruction.agent_count

	def task_ids(self) -> list[str]:
		return [i.task_id for i in self.instructions]
