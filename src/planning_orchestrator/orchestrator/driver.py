"""
Orchestration Driver - runs planning phases one step at a time.

Each step, under the store's step lock:
1. Load the project context and replay its history to find the phase
2. Gather inputs from the dialogue collaborator
3. Build the phase's tasks, then score, break down and allocate them
4. Dispatch leaf tasks to the execution collaborator
5. Record a SessionEvent, save, and advance the state machine

Nothing is written until the step succeeds, so an abandoned step leaves
no partial state and simply runs again on resume. Collaborator failures
are recorded as FAILED events and the step is retried.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from ..config import Config, get_config
from ..engine.breakdown import AskUser, describe, requires_breakdown
from ..engine.complexity import FactorTag
from ..engine.tasks import Task, allocate_leaves
from ..errors import (
	CollaboratorFailure,
	CorruptStateError,
	PhaseTransitionError,
	PlanningError,
	ValidationError,
)
from ..session.models import (
	ComplexityPreference,
	Constraints,
	EventKind,
	PhaseId,
	ProjectContext,
	SessionEvent,
)
from ..session.store import SessionStore
from .budget import ContextBudget
from .collaborators import (
	DialogueCollaborator,
	DispatchInstruction,
	ExecutionCollaborator,
	Prompt,
	PromptKind,
	parse_answer,
)
from .dispatch import AgentCapacity, Dispatcher, DispatchOutcome, DispatchSummary
from .phases import MachineState, PhaseStateMachine

logger = logging.getLogger(__name__)

# Fixed document tasks for phases that take no intake
_FIXED_TASKS: dict[PhaseId, list[tuple[str, str]]] = {
	PhaseId.DOC_SCAFFOLD: [
		("scaffold-requirements", "Scaffold the requirements document"),
		("scaffold-technical-spec", "Scaffold the technical specification"),
		("scaffold-task-breakdown", "Scaffold the task breakdown document"),
	],
	PhaseId.PLAN_GENERATION: [
		("generate-requirements", "Generate the requirements document"),
		("generate-technical-spec", "Generate the technical specification"),
		("generate-task-breakdown", "Generate the task breakdown"),
	],
}


async def revise_session(
	store: SessionStore,
	project_root: str | Path,
	target: PhaseId,
	reason: str = "",
) -> SessionEvent:
	"""
	Append a revision event re-entering target, under the step lock.

	Raises:
		ValidationError: If there is no session to revise
		PhaseTransitionError: If target is not earlier than the current state
	"""
	async with store.step_lock(project_root):
		context = await store.load(project_root)
		if context is None:
			raise ValidationError(f"No session to revise for {project_root}")
		machine = PhaseStateMachine(context.session_history)
		event = machine.revise(target, reason)
		await store.append_event(project_root, event)
	return event


@dataclass
class ResumePoint:
	"""Where a run picks up."""
	state: MachineState
	context: Optional[ProjectContext] = None
	corrupt: Optional[CorruptStateError] = None

	@property
	def phase(self) -> Optional[PhaseId]:
		return self.state.phase

	@property
	def is_fresh(self) -> bool:
		return self.context is None

	@property
	def is_complete(self) -> bool:
		return self.state is MachineState.COMPLETE


@dataclass
class StepOutcome:
	"""Result of one phase step, including its retries."""
	phase: PhaseId
	success: bool
	attempts: int
	event: Optional[SessionEvent] = None
	next_state: Optional[MachineState] = None
	tasks: list[Task] = field(default_factory=list)
	dispatch: Optional[DispatchSummary] = None
	error: Optional[PlanningError] = None


@dataclass
class _PhaseWork:
	context: ProjectContext
	tasks: list[Task]
	decisions: list[str]
	dispatch: Optional[DispatchSummary] = None


class OrchestrationDriver:
	"""
	Drives a project's planning run through its phases.

	Usage:
		driver = OrchestrationDriver(root, store, dialogue, executor)
		point = await driver.resume_or_start()
		if point.corrupt:
			point = await driver.start_fresh()
		outcomes = await driver.run()
	"""

	def __init__(
		self,
		project_root: str | Path,
		store: SessionStore,
		dialogue: DialogueCollaborator,
		executor: ExecutionCollaborator,
		config: Optional[Config] = None,
		dispatcher: Optional[Dispatcher] = None,
		budget: Optional[ContextBudget] = None,
	):
		self.project_root = project_root
		self.store = store
		self.dialogue = dialogue
		self.executor = executor
		self.config = config or get_config()
		self.dispatcher = dispatcher or Dispatcher(AgentCapacity(self.config.max_agents))
		self.budget = budget or ContextBudget(self.config.context_token_budget)

	# ==================== Resume ====================

	async def resume_or_start(self) -> ResumePoint:
		"""
		Find where the run stands.

		A missing record starts fresh at CONTEXT. A corrupt record is
		reported on the ResumePoint rather than raised, so the caller can
		offer start_fresh().
		"""
		try:
			context = await self.store.load(self.project_root)
		except CorruptStateError as e:
			logger.error(f"Cannot resume: {e}")
			return ResumePoint(state=MachineState.CONTEXT, corrupt=e)

		if context is None:
			logger.info(f"No session for {self.project_root}; starting at CONTEXT")
			return ResumePoint(state=MachineState.CONTEXT)

		machine = PhaseStateMachine(context.session_history)
		logger.info(f"Resuming {self.project_root} at {machine.state.value}")
		return ResumePoint(state=machine.state, context=context)

	async def start_fresh(self, reason: str = "fresh start requested") -> ResumePoint:
		"""Quarantine any stored record and start over at CONTEXT."""
		async with self.store.step_lock(self.project_root):
			await self.store.quarantine(self.project_root, reason)
		return ResumePoint(state=MachineState.CONTEXT)

	# ==================== Steps ====================

	async def run(self, max_steps: Optional[int] = None) -> list[StepOutcome]:
		"""
		Run steps until the run completes, a step fails, or max_steps is hit.

		Raises:
			CorruptStateError: If the stored record is corrupt
		"""
		outcomes: list[StepOutcome] = []
		while max_steps is None or len(outcomes) < max_steps:
			point = await self.resume_or_start()
			if point.corrupt:
				raise point.corrupt
			if point.is_complete:
				break
			outcome = await self.run_step()
			outcomes.append(outcome)
			if not outcome.success:
				break
		return outcomes

	async def run_step(self) -> StepOutcome:
		"""
		Run the current phase, retrying collaborator failures.

		Returns:
			StepOutcome; on exhausted retries success is False and error is set

		Raises:
			CorruptStateError: If the stored record is corrupt
			PhaseTransitionError: If the run is already complete
		"""
		attempts = 0
		while True:
			attempts += 1
			async with self.store.step_lock(self.project_root):
				context = await self.store.load(self.project_root)
				machine = PhaseStateMachine(context.session_history if context else ())
				phase = machine.current_phase
				if phase is None:
					raise PhaseTransitionError("Run is complete; revise to ADAPTATION to continue")

				logger.info(f"Running {phase.value} (attempt {attempts})")
				try:
					work = await self._run_phase(phase, context)
				except (CollaboratorFailure, ValidationError) as e:
					logger.warning(f"{phase.value} step failed: {e}")
					await self._record_failure(phase, e, attempts)
					if attempts >= self.config.max_step_attempts:
						return StepOutcome(phase=phase, success=False, attempts=attempts, error=e)
					continue

				event = SessionEvent(phase=phase, decisions=work.decisions)
				await self.store.save(self.project_root, work.context.record(event))
				next_state = machine.advance(event)

			return StepOutcome(
				phase=phase,
				success=True,
				attempts=attempts,
				event=event,
				next_state=next_state,
				tasks=work.tasks,
				dispatch=work.dispatch,
			)

	async def revise(self, target: PhaseId, reason: str = "") -> SessionEvent:
		"""
		Re-enter an earlier phase. History is kept; a revision event is appended.

		Raises:
			ValidationError: If there is no session to revise
			PhaseTransitionError: If target is not earlier than the current state
		"""
		return await revise_session(self.store, self.project_root, target, reason)

	async def _record_failure(self, phase: PhaseId, error: PlanningError, attempt: int) -> None:
		if await self.store.load(self.project_root) is None:
			logger.warning(f"No session record yet; {phase.value} failure not persisted")
			return
		event = SessionEvent(
			phase=phase,
			decisions=[f"attempt {attempt} failed: {error}"],
			kind=EventKind.FAILED,
		)
		await self.store.append_event(self.project_root, event)

	# ==================== Phases ====================

	async def _run_phase(self, phase: PhaseId, context: Optional[ProjectContext]) -> _PhaseWork:
		if phase == PhaseId.CONTEXT:
			return await self._context_phase(context)
		if context is None:
			raise ValidationError(f"{phase.value} needs a project context")

		decisions: list[str] = []
		if phase in _FIXED_TASKS:
			tasks = [Task.create(id=tid, description=desc) for tid, desc in _FIXED_TASKS[phase]]
			intake = False
		elif phase in (PhaseId.ORCHESTRATION_SETUP, PhaseId.IMPLEMENTATION_PLANNING):
			prefix = "feature" if phase == PhaseId.ORCHESTRATION_SETUP else "implement"
			tasks = [
				Task.create(id=f"{prefix}-{i}", description=feature)
				for i, feature in enumerate(context.must_have_features, 1)
			]
			intake = True
		elif phase == PhaseId.RESEARCH:
			tasks = [
				Task.create(id=f"research-{i}", description=f"Research the {name} integration")
				for i, name in enumerate(sorted(context.integrations), 1)
			]
			tasks.append(Task.create(
				id="research-domain",
				description=f"Research the {context.project_type} domain",
			))
			intake = True
		else:
			tasks = await self._adaptation_tasks(decisions)
			intake = True

		if not tasks:
			decisions.append("no tasks")
			return _PhaseWork(context=context, tasks=[], decisions=decisions)

		if intake:
			await self._intake(tasks)
		await self._plan(tasks, context, depth=0, decisions=decisions)
		summary = await self._dispatch(phase, tasks, context, decisions)
		return _PhaseWork(context=context, tasks=tasks, decisions=decisions, dispatch=summary)

	async def _context_phase(self, current: Optional[ProjectContext]) -> _PhaseWork:
		answers = await self._ask(self._context_prompts(current))
		values = {
			"project_type": answers["project_type"],
			"primary_goal": answers["primary_goal"],
			"target_audience": answers["target_audience"],
			"must_have_features": tuple(answers["must_have_features"]),
			"constraints": Constraints(
				technical=frozenset(answers["technical_constraints"]),
				timeline=answers["timeline"],
				budget=answers["budget"],
			),
			"complexity_preference": ComplexityPreference(answers["complexity_preference"]),
			"integrations": frozenset(answers["integrations"]),
		}

		if current is None:
			try:
				context = ProjectContext.model_validate(values)
			except PydanticValidationError as e:
				raise ValidationError(f"Invalid project context: {e}") from e
			decisions = [
				f"project type: {context.project_type}",
				f"goal: {context.primary_goal}",
				f"features: {len(context.must_have_features)}",
				f"integrations: {len(context.integrations)}",
				f"preference: {context.complexity_preference.value}",
			]
			return _PhaseWork(context=context, tasks=[], decisions=decisions)

		changes = {k: v for k, v in values.items() if getattr(current, k) != v}
		if not changes:
			return _PhaseWork(context=current, tasks=[], decisions=["context unchanged"])

		confirm = Prompt(
			id="confirm_update",
			text=f"Apply changes to {', '.join(sorted(changes))}?",
			kind=PromptKind.CONFIRM,
		)
		confirmed = (await self._ask([confirm]))["confirm_update"]
		if not confirmed:
			return _PhaseWork(context=current, tasks=[], decisions=["context update declined"])

		return _PhaseWork(
			context=current.apply_update(changes, confirmed=True),
			tasks=[],
			decisions=[f"context updated: {', '.join(sorted(changes))}"],
		)

	def _context_prompts(self, current: Optional[ProjectContext]) -> list[Prompt]:
		def joined(values) -> Optional[str]:
			return ", ".join(values) if current and values else None

		preferences = [p.value for p in ComplexityPreference]
		return [
			Prompt("project_type", "What kind of project is this?",
				default=current.project_type if current else None),
			Prompt("primary_goal", "What is the primary goal?",
				default=current.primary_goal if current else None),
			Prompt("target_audience", "Who is the target audience?",
				default=current.target_audience if current else ""),
			Prompt("must_have_features", "List the must-have features.", PromptKind.LIST,
				default=joined(current.must_have_features) if current else None),
			Prompt("technical_constraints", "Any technical constraints?", PromptKind.LIST,
				default=joined(sorted(current.constraints.technical)) if current else None),
			Prompt("timeline", "What is the timeline?",
				default=current.constraints.timeline if current else ""),
			Prompt("budget", "What is the budget?",
				default=current.constraints.budget if current else ""),
			Prompt("complexity_preference", "How should mid-complexity tasks be handled?",
				PromptKind.CHOICE, options=preferences,
				default=(current.complexity_preference if current else ComplexityPreference.ASK_EACH_TIME).value),
			Prompt("integrations", "Which third-party integrations are needed?", PromptKind.LIST,
				default=joined(sorted(current.integrations)) if current else None),
		]

	async def _adaptation_tasks(self, decisions: list[str]) -> list[Task]:
		prompt = Prompt("changes", "What changed since the plan was written?", PromptKind.LIST)
		changes = (await self._ask([prompt]))["changes"]
		decisions.append(f"changes reported: {len(changes)}")
		return [
			Task.create(id=f"change-{i}", description=change)
			for i, change in enumerate(changes, 1)
		]

	# ==================== Decision pipeline ====================

	async def _ask(self, prompts: list[Prompt]) -> dict[str, Any]:
		"""Ask prompts in one batch and parse the answers by prompt id."""
		if not prompts:
			return {}
		try:
			raw = await self.dialogue.ask(prompts)
		except PlanningError:
			raise
		except Exception as e:
			raise CollaboratorFailure("dialogue", str(e) or type(e).__name__) from e
		if raw is None or len(raw) != len(prompts):
			got = 0 if raw is None else len(raw)
			raise CollaboratorFailure("dialogue", f"expected {len(prompts)} answers, got {got}")
		return {p.id: parse_answer(p, answer) for p, answer in zip(prompts, raw)}

	async def _intake(self, tasks: list[Task]) -> None:
		"""Ask for each task's complexity factors and file impact."""
		flag_options = [tag.value for tag in FactorTag]
		prompts: list[Prompt] = []
		for task in tasks:
			prompts.append(Prompt(
				f"{task.id}.flags",
				f"Which complexity factors apply to '{task.description}'?",
				PromptKind.MULTI_CHOICE,
				options=flag_options,
			))
			prompts.append(Prompt(
				f"{task.id}.files",
				f"Roughly how many files will '{task.description}' touch?",
				PromptKind.INTEGER,
				default="0",
			))
		answers = await self._ask(prompts)
		for task in tasks:
			try:
				task.feature_flags = frozenset(FactorTag(v) for v in answers[f"{task.id}.flags"])
				task.file_impact_count = answers[f"{task.id}.files"]
			except PydanticValidationError as e:
				raise ValidationError(f"Invalid intake for {task.id}: {e}") from e

	async def _plan(
		self,
		tasks: list[Task],
		context: ProjectContext,
		depth: int,
		decisions: list[str],
	) -> None:
		"""Decide breakdown for each task, recursing into new subtasks."""
		pending: list[Task] = []
		for task in tasks:
			decision = requires_breakdown(task.score, context.complexity_preference)
			if isinstance(decision, AskUser):
				pending.append(task)
			else:
				task.breakdown_required = decision.required
			decisions.append(f"{task.id}: score {task.score:.2f}, breakdown {describe(decision)}")

		if pending:
			answers = await self._ask([
				Prompt(
					f"{task.id}.breakdown",
					f"'{task.description}' scored {task.score:.2f}. Break it into subtasks?",
					PromptKind.CONFIRM,
				)
				for task in pending
			])
			for task in pending:
				task.breakdown_required = answers[f"{task.id}.breakdown"]
				verdict = "accepted" if task.breakdown_required else "declined"
				decisions.append(f"{task.id}: user {verdict} breakdown")

		to_split = [t for t in tasks if t.breakdown_required]
		if not to_split:
			return
		if depth >= self.config.max_breakdown_depth:
			for task in to_split:
				decisions.append(f"{task.id}: depth limit {depth} reached, dispatching undivided")
			return

		answers = await self._ask([
			Prompt(f"{task.id}.subtasks", f"Break '{task.description}' into subtasks.", PromptKind.LIST)
			for task in to_split
		])
		children: list[Task] = []
		for task in to_split:
			items = answers[f"{task.id}.subtasks"]
			if not items:
				raise ValidationError(f"Task {task.id} requires a breakdown but no subtasks were given")
			subtasks = [
				Task.create(id=f"{task.id}.{n}", description=item)
				for n, item in enumerate(items, 1)
			]
			task.set_subtasks(subtasks)
			children.extend(subtasks)
			decisions.append(f"{task.id}: split into {len(subtasks)} subtasks")

		await self._intake(children)
		await self._plan(children, context, depth + 1, decisions)

	async def _dispatch(
		self,
		phase: PhaseId,
		tasks: list[Task],
		context: ProjectContext,
		decisions: list[str],
	) -> DispatchSummary:
		wants_detail = context.complexity_preference == ComplexityPreference.FULL_BREAKDOWN
		allocate_leaves(tasks, self.budget.remaining_fraction, wants_detail)
		instructions = self._instructions(phase, tasks)
		for instruction in instructions:
			decisions.append(f"{instruction.task_id}: {instruction.agent_count} agent(s)")

		async def track(outcome: DispatchOutcome) -> None:
			self.budget.track(outcome.task_id, outcome.result.tokens_used)

		summary = await self.dispatcher.execute(instructions, self.executor, on_result=track)
		if summary.failed:
			first = summary.failures[0]
			raise CollaboratorFailure(
				"execution",
				f"{summary.failed} of {summary.total} dispatched tasks failed: {first.result.error}",
				task_id=first.task_id,
			)
		decisions.append(f"dispatched {summary.total} task(s), {summary.tokens_used} tokens")
		return summary

	def _instructions(self, phase: PhaseId, tasks: list[Task]) -> list[DispatchInstruction]:
		instructions: list[DispatchInstruction] = []
		# Never tell the executor to run more agents than the dispatcher can hold
		max_agents = min(self.config.max_agents, self.dispatcher.capacity.slots)

		def visit(task: Task, parent: Optional[Task]) -> None:
			if task.is_leaf:
				instructions.append(DispatchInstruction.for_leaf(task, phase, parent, max_agents))
				return
			for sub in task.subtasks:
				visit(sub, task)

		for task in tasks:
			visit(task, None)
		return instructions
