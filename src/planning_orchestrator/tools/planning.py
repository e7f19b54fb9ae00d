"""Planning decision and session tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..engine.allocation import allocate
from ..engine.breakdown import AskUser, describe, requires_breakdown
from ..engine.complexity import FactorTag, score, score_breakdown
from ..errors import CorruptStateError, PhaseTransitionError, ValidationError
from ..orchestrator.driver import revise_session
from ..orchestrator.phases import PhaseStateMachine
from ..session.models import ComplexityPreference, PhaseId
from ..session.store import get_session_store


def _parse_flags(flags: str) -> list[FactorTag]:
	tags = []
	for raw in flags.split(","):
		name = raw.strip().upper()
		if name:
			tags.append(FactorTag(name))
	return tags


def register_planning_tools(mcp: FastMCP, config: Config) -> None:
	"""Register planning decision and session tools."""

	@mcp.tool()
	async def score_task(
		flags: str = "",
		file_impact_count: int = 0,
		preference: str = "ASK_EACH_TIME",
	) -> str:
		"""
		Score a task's complexity and decide whether it needs a breakdown.

		Args:
			flags: Comma-separated complexity factors (e.g., "REAL_TIME,AUTH_SECURITY")
			file_impact_count: Number of files the task touches
			preference: FULL_BREAKDOWN, HIGH_LEVEL, or ASK_EACH_TIME
		"""
		try:
			tags = _parse_flags(flags)
			pref = ComplexityPreference(preference.strip().upper())
		except ValueError as e:
			return json.dumps({
				"error": str(e),
				"valid_flags": [t.value for t in FactorTag],
				"valid_preferences": [p.value for p in ComplexityPreference],
			})
		if file_impact_count < 0:
			return json.dumps({"error": "file_impact_count cannot be negative"})

		value = score(tags, file_impact_count)
		decision = requires_breakdown(value, pref)
		return json.dumps({
			"score": value,
			"contributions": score_breakdown(tags, file_impact_count),
			"breakdown": describe(decision),
			"ask_user": isinstance(decision, AskUser),
		}, indent=2)

	@mcp.tool()
	async def plan_allocation(
		score: float,
		subtask_count: int = 0,
		context_remaining_fraction: float = 1.0,
		wants_detail: bool = False,
	) -> str:
		"""
		Compute how many concurrent agents a task warrants.

		Args:
			score: Complexity score between 0.0 and 1.0
			subtask_count: Size of the breakdown the task belongs to (0 if undivided)
			context_remaining_fraction: Share of the context budget still available
			wants_detail: Whether detailed treatment was requested
		"""
		if not 0.0 <= score <= 1.0:
			return json.dumps({"error": f"score must be between 0.0 and 1.0, got {score}"})
		if subtask_count < 0:
			return json.dumps({"error": "subtask_count cannot be negative"})

		return json.dumps({
			"agent_count": allocate(score, subtask_count, context_remaining_fraction, wants_detail),
			"max_agents": config.max_agents,
		}, indent=2)

	@mcp.tool()
	async def planning_status(project_root: str) -> str:
		"""
		Show where a project's planning run stands.

		Args:
			project_root: Project directory the session belongs to
		"""
		store = await get_session_store(str(config.state_db_path))
		try:
			context = await store.load(project_root)
		except CorruptStateError as e:
			return json.dumps({
				"error": str(e),
				"hint": "Run `planning-orchestrator reset` to quarantine the record and start fresh",
			})

		if context is None:
			return json.dumps({
				"error": f"No planning session for {project_root}",
				"next_phase": PhaseId.CONTEXT.value,
			})

		machine = PhaseStateMachine(context.session_history)
		return json.dumps({
			"project_type": context.project_type,
			"primary_goal": context.primary_goal,
			"state": machine.state.value,
			"completed_phases": [p.value for p in context.completed_phases()],
			"remaining_phases": [p.value for p in machine.remaining_phases()],
			"history": [
				{
					"timestamp": event.timestamp.isoformat(),
					"phase": event.phase.value,
					"kind": event.kind.value,
					"decisions": list(event.decisions),
				}
				for event in context.session_history
			],
		}, indent=2)

	@mcp.tool()
	async def list_planning_sessions() -> str:
		"""List every project with a stored planning session, most recently updated first."""
		store = await get_session_store(str(config.state_db_path))
		projects = await store.list_projects()
		return json.dumps({"count": len(projects), "projects": projects}, indent=2)

	@mcp.tool()
	async def revise_phase(project_root: str, phase: str, reason: str = "") -> str:
		"""
		Re-enter an earlier planning phase. Earlier history is kept.

		Args:
			project_root: Project directory the session belongs to
			phase: Phase to re-enter (e.g., "RESEARCH")
			reason: Why the phase is being revisited
		"""
		try:
			target = PhaseId(phase.strip().upper())
		except ValueError:
			return json.dumps({
				"error": f"Invalid phase: {phase}",
				"valid_phases": [p.value for p in PhaseId],
			})

		store = await get_session_store(str(config.state_db_path))
		try:
			event = await revise_session(store, project_root, target, reason)
		except (CorruptStateError, PhaseTransitionError, ValidationError) as e:
			return json.dumps({"error": str(e)})

		return json.dumps({
			"success": True,
			"phase": event.phase.value,
			"decisions": list(event.decisions),
		}, indent=2)
