"""
Tests for the orchestration driver.

Tests:
- Fresh runs through every phase
- Resume from stored history and corrupt records
- Breakdown decisions, user confirmation, and depth limits
- Failure recording and retries
- Revisions, including confirmed context updates
"""

from pathlib import Path

import pytest

from planning_orchestrator.errors import (
	CollaboratorFailure,
	CorruptStateError,
	PhaseTransitionError,
	ValidationError,
)
from planning_orchestrator.orchestrator.driver import OrchestrationDriver
from planning_orchestrator.orchestrator.phases import MachineState
from planning_orchestrator.session.models import (
	ComplexityPreference,
	EventKind,
	PhaseId,
)

from .helpers import (
	RecordingExecutor,
	ScriptedDialogue,
	completed_through,
	make_config,
	make_context,
	open_store,
	write_raw,
)


def make_driver(tmp_path, store, dialogue=None, executor=None, **config_overrides) -> OrchestrationDriver:
	return OrchestrationDriver(
		tmp_path / "project",
		store,
		dialogue or ScriptedDialogue(),
		executor or RecordingExecutor(),
		config=make_config(tmp_path, **config_overrides),
	)


class TestFreshRun:
	"""A new project runs every phase in order."""

	@pytest.mark.asyncio
	async def test_full_run_completes(self, tmp_path: Path):
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			driver = make_driver(tmp_path, store, executor=executor)
			outcomes = await driver.run()
			context = await store.load(tmp_path / "project")

		assert [o.phase for o in outcomes] == list(PhaseId)
		assert all(o.success for o in outcomes)
		assert outcomes[-1].next_state is MachineState.COMPLETE
		assert [e.phase for e in context.session_history] == list(PhaseId)
		assert all(e.kind is EventKind.COMPLETED for e in context.session_history)
		assert context.primary_goal == "Sell handmade goods online"
		assert context.must_have_features == ("checkout", "product catalog")

		dispatched = executor.task_ids()
		assert "feature-1" in dispatched
		assert "scaffold-requirements" in dispatched
		assert "research-1" in dispatched
		assert "research-domain" in dispatched
		assert "generate-task-breakdown" in dispatched
		assert "implement-2" in dispatched

	@pytest.mark.asyncio
	async def test_context_phase_dispatches_nothing(self, tmp_path: Path):
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			outcome = await make_driver(tmp_path, store, executor=executor).run_step()

		assert outcome.success
		assert outcome.phase is PhaseId.CONTEXT
		assert outcome.next_state is MachineState.ORCHESTRATION_SETUP
		assert executor.instructions == []
		assert "project type: web app" in outcome.event.decisions

	@pytest.mark.asyncio
	async def test_run_stops_after_max_steps(self, tmp_path: Path):
		async with open_store(tmp_path) as store:
			outcomes = await make_driver(tmp_path, store).run(max_steps=2)
			point = await make_driver(tmp_path, store).resume_or_start()

		assert len(outcomes) == 2
		assert point.phase is PhaseId.DOC_SCAFFOLD

	@pytest.mark.asyncio
	async def test_complete_run_rejects_another_step(self, tmp_path: Path):
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.ADAPTATION)))
			driver = make_driver(tmp_path, store)
			assert await driver.run() == []
			with pytest.raises(PhaseTransitionError):
				await driver.run_step()


class TestResume:
	"""Runs pick up at the first phase without a completed event."""

	@pytest.mark.asyncio
	async def test_missing_record_starts_fresh(self, tmp_path: Path):
		async with open_store(tmp_path) as store:
			point = await make_driver(tmp_path, store).resume_or_start()
		assert point.is_fresh
		assert point.phase is PhaseId.CONTEXT

	@pytest.mark.asyncio
	async def test_resume_at_doc_scaffold(self, tmp_path: Path):
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			await store.save(
				tmp_path / "project",
				make_context(history=completed_through(PhaseId.ORCHESTRATION_SETUP)),
			)
			driver = make_driver(tmp_path, store, executor=executor)
			point = await driver.resume_or_start()
			outcome = await driver.run_step()

		assert point.phase is PhaseId.DOC_SCAFFOLD
		assert outcome.phase is PhaseId.DOC_SCAFFOLD
		assert executor.task_ids() == [
			"scaffold-requirements",
			"scaffold-technical-spec",
			"scaffold-task-breakdown",
		]

	@pytest.mark.asyncio
	async def test_corrupt_record_is_reported(self, tmp_path: Path):
		root = tmp_path / "project"
		async with open_store(tmp_path) as store:
			await write_raw(store.db_path, root, 99, "{}")
			driver = make_driver(tmp_path, store)
			point = await driver.resume_or_start()
			with pytest.raises(CorruptStateError):
				await driver.run()

		assert isinstance(point.corrupt, CorruptStateError)

	@pytest.mark.asyncio
	async def test_start_fresh_quarantines(self, tmp_path: Path):
		root = tmp_path / "project"
		async with open_store(tmp_path) as store:
			await write_raw(store.db_path, root, 99, "{}")
			driver = make_driver(tmp_path, store)
			point = await driver.start_fresh()
			outcome = await driver.run_step()
			quarantined = await store.list_quarantined(root)

		assert point.phase is PhaseId.CONTEXT
		assert outcome.success
		assert len(quarantined) == 1


class TestBreakdown:
	"""Scores drive breakdown, with the user deciding mid-band tasks."""

	async def _at_setup(self, tmp_path, store, preference, **driver_kwargs) -> OrchestrationDriver:
		await store.save(
			tmp_path / "project",
			make_context(preference=preference, history=completed_through(PhaseId.CONTEXT)),
		)
		return make_driver(tmp_path, store, **driver_kwargs)

	@pytest.mark.asyncio
	async def test_user_accepts_breakdown(self, tmp_path: Path):
		dialogue = ScriptedDialogue({
			"feature-1.flags": "REAL_TIME, AUTH_SECURITY",
			"feature-1.breakdown": "yes",
			"feature-1.subtasks": "design ledger, build api",
		})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			driver = await self._at_setup(
				tmp_path, store, ComplexityPreference.ASK_EACH_TIME,
				dialogue=dialogue, executor=executor,
			)
			outcome = await driver.run_step()

		assert outcome.success
		assert executor.task_ids() == ["feature-1.1", "feature-1.2", "feature-2"]
		first = executor.instructions[0]
		assert first.parent_id == "feature-1"
		assert first.subtasks == ("feature-1.1", "feature-1.2")
		parent = outcome.tasks[0]
		assert parent.agent_count is None
		assert parent.breakdown_required is True
		assert "feature-1: user accepted breakdown" in outcome.event.decisions
		assert "feature-1.1.flags" in dialogue.prompt_ids()

	@pytest.mark.asyncio
	async def test_user_declines_breakdown(self, tmp_path: Path):
		dialogue = ScriptedDialogue({
			"feature-1.flags": "REAL_TIME, AUTH_SECURITY",
			"feature-1.breakdown": "no",
		})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			driver = await self._at_setup(
				tmp_path, store, ComplexityPreference.ASK_EACH_TIME,
				dialogue=dialogue, executor=executor,
			)
			await driver.run_step()

		assert executor.task_ids() == ["feature-1", "feature-2"]
		# score 0.4: base 2
		assert executor.instructions[0].agent_count == 2

	@pytest.mark.asyncio
	async def test_high_level_preference_skips_question(self, tmp_path: Path):
		dialogue = ScriptedDialogue({"feature-1.flags": "REAL_TIME, AUTH_SECURITY"})
		async with open_store(tmp_path) as store:
			driver = await self._at_setup(tmp_path, store, ComplexityPreference.HIGH_LEVEL, dialogue=dialogue)
			await driver.run_step()

		assert "feature-1.breakdown" not in dialogue.prompt_ids()

	@pytest.mark.asyncio
	async def test_full_breakdown_wants_detail(self, tmp_path: Path):
		dialogue = ScriptedDialogue({
			"feature-1.flags": "REAL_TIME, AUTH_SECURITY",
			"feature-1.subtasks": "one, two",
		})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			driver = await self._at_setup(
				tmp_path, store, ComplexityPreference.FULL_BREAKDOWN,
				dialogue=dialogue, executor=executor,
			)
			await driver.run_step()

		assert "feature-1.breakdown" not in dialogue.prompt_ids()
		counts = {i.task_id: i.agent_count for i in executor.instructions}
		# base 1, detail adds 1
		assert counts == {"feature-1.1": 2, "feature-1.2": 2, "feature-2": 2}

	@pytest.mark.asyncio
	async def test_mandatory_breakdown_without_subtasks_fails(self, tmp_path: Path):
		dialogue = ScriptedDialogue({"feature-1.flags": "NEW_FRAMEWORK, NEW_ARCHITECTURE"})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			driver = await self._at_setup(
				tmp_path, store, ComplexityPreference.HIGH_LEVEL,
				dialogue=dialogue, executor=executor,
			)
			outcome = await driver.run_step()

		assert not outcome.success
		assert isinstance(outcome.error, ValidationError)
		assert executor.instructions == []

	@pytest.mark.asyncio
	async def test_depth_limit_dispatches_undivided(self, tmp_path: Path):
		dialogue = ScriptedDialogue({"feature-1.flags": "NEW_FRAMEWORK, NEW_ARCHITECTURE"})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			driver = await self._at_setup(
				tmp_path, store, ComplexityPreference.HIGH_LEVEL,
				dialogue=dialogue, executor=executor, max_breakdown_depth=0,
			)
			outcome = await driver.run_step()

		assert outcome.success
		assert executor.task_ids() == ["feature-1", "feature-2"]
		assert executor.instructions[0].agent_count == 2
		assert any("depth limit" in d for d in outcome.event.decisions)

	@pytest.mark.asyncio
	async def test_nested_breakdown(self, tmp_path: Path):
		dialogue = ScriptedDialogue({
			"feature-1.flags": "NEW_FRAMEWORK, NEW_ARCHITECTURE",
			"feature-1.subtasks": "backend, frontend",
			"feature-1.1.flags": "NEW_FRAMEWORK, CROSS_SYSTEM_INTEGRATION",
			"feature-1.1.subtasks": "queue, worker",
		})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			driver = await self._at_setup(
				tmp_path, store, ComplexityPreference.HIGH_LEVEL,
				dialogue=dialogue, executor=executor,
			)
			outcome = await driver.run_step()

		assert outcome.success
		assert executor.task_ids() == ["feature-1.1.1", "feature-1.1.2", "feature-1.2", "feature-2"]
		assert executor.instructions[0].parent_id == "feature-1.1"

	@pytest.mark.asyncio
	async def test_agent_count_capped_at_configured_pool(self, tmp_path: Path):
		dialogue = ScriptedDialogue({"feature-1.flags": "NEW_FRAMEWORK, NEW_ARCHITECTURE, REGULATORY_COMPLIANCE"})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			driver = await self._at_setup(
				tmp_path, store, ComplexityPreference.HIGH_LEVEL,
				dialogue=dialogue, executor=executor, max_breakdown_depth=0, max_agents=2,
			)
			outcome = await driver.run_step()

		assert outcome.success
		# score 0.9 allocates 3, but only 2 slots exist
		assert outcome.tasks[0].agent_count == 3
		assert executor.instructions[0].agent_count == 2
		assert executor.peak_agents <= 2
		assert "feature-1: 2 agent(s)" in outcome.event.decisions


class TestTaskIds:
	"""Every task in a step gets its own id."""

	@pytest.mark.asyncio
	async def test_research_ids_unique_for_similar_integrations(self, tmp_path: Path):
		dialogue = ScriptedDialogue({"research-2.flags": "REAL_TIME"})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			await store.save(
				tmp_path / "project",
				make_context(
					integrations=frozenset({"Stripe", "stripe", "domain"}),
					history=completed_through(PhaseId.DOC_SCAFFOLD),
				),
			)
			driver = make_driver(tmp_path, store, dialogue=dialogue, executor=executor)
			outcome = await driver.run_step()

		assert outcome.phase is PhaseId.RESEARCH
		ids = executor.task_ids()
		assert len(ids) == len(set(ids)) == 4
		assert sorted(ids) == ["research-1", "research-2", "research-3", "research-domain"]
		flag_prompts = [p for p in dialogue.prompt_ids() if p.endswith(".flags")]
		assert len(flag_prompts) == len(set(flag_prompts)) == 4
		scores = {t.id: t.score for t in outcome.tasks}
		assert scores["research-2"] == 0.2
		assert scores["research-1"] == scores["research-3"] == 0.0


class TestFailures:
	"""Collaborator failures are recorded and retried."""

	@pytest.mark.asyncio
	async def test_failure_then_success(self, tmp_path: Path):
		executor = RecordingExecutor(fail_times=1)
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.CONTEXT)))
			outcome = await make_driver(tmp_path, store, executor=executor).run_step()
			context = await store.load(tmp_path / "project")

		assert outcome.success
		assert outcome.attempts == 2
		kinds = [(e.phase, e.kind) for e in context.session_history]
		assert kinds[-2:] == [
			(PhaseId.ORCHESTRATION_SETUP, EventKind.FAILED),
			(PhaseId.ORCHESTRATION_SETUP, EventKind.COMPLETED),
		]

	@pytest.mark.asyncio
	async def test_exhausted_retries_surface_error(self, tmp_path: Path):
		executor = RecordingExecutor(fail_ids={"feature-1"})
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.CONTEXT)))
			driver = make_driver(tmp_path, store, executor=executor, max_step_attempts=3)
			outcomes = await driver.run()
			point = await driver.resume_or_start()
			context = await store.load(tmp_path / "project")

		assert len(outcomes) == 1
		outcome = outcomes[0]
		assert not outcome.success
		assert outcome.attempts == 3
		assert isinstance(outcome.error, CollaboratorFailure)
		assert outcome.error.task_id == "feature-1"
		failed = [e for e in context.session_history if e.kind is EventKind.FAILED]
		assert len(failed) == 3
		assert point.phase is PhaseId.ORCHESTRATION_SETUP

	@pytest.mark.asyncio
	async def test_dialogue_failure_on_fresh_run(self, tmp_path: Path):
		async with open_store(tmp_path) as store:
			driver = make_driver(tmp_path, store, dialogue=ScriptedDialogue(fail_times=5))
			outcome = await driver.run_step()
			stored = await store.load(tmp_path / "project")

		assert not outcome.success
		assert isinstance(outcome.error, CollaboratorFailure)
		assert outcome.error.collaborator == "dialogue"
		assert stored is None

	@pytest.mark.asyncio
	async def test_malformed_answer_is_retried(self, tmp_path: Path):
		dialogue = ScriptedDialogue({"feature-1.files": "lots"})
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.CONTEXT)))
			outcome = await make_driver(tmp_path, store, dialogue=dialogue).run_step()

		assert not outcome.success
		assert outcome.attempts == 2
		assert isinstance(outcome.error, ValidationError)

	@pytest.mark.asyncio
	async def test_context_budget_tracks_tokens(self, tmp_path: Path):
		executor = RecordingExecutor(tokens=1000)
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.ORCHESTRATION_SETUP)))
			driver = make_driver(tmp_path, store, executor=executor, context_token_budget=10_000)
			await driver.run_step()

		assert driver.budget.used_tokens == 3000
		assert driver.budget.remaining_fraction == 0.7


class TestRevise:
	"""Revisits append events and never rewrite history."""

	@pytest.mark.asyncio
	async def test_revise_reenters_phase(self, tmp_path: Path):
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.ADAPTATION)))
			driver = make_driver(tmp_path, store, executor=executor)
			event = await driver.revise(PhaseId.RESEARCH, "added Shippo")
			point = await driver.resume_or_start()
			outcome = await driver.run_step()
			context = await store.load(tmp_path / "project")

		assert event.kind is EventKind.REVISION
		assert point.phase is PhaseId.RESEARCH
		assert outcome.next_state is MachineState.PLAN_GENERATION
		assert len(context.session_history) == 9
		assert [e.phase for e in context.session_history[:7]] == list(PhaseId)

	@pytest.mark.asyncio
	async def test_revise_forward_rejected(self, tmp_path: Path):
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.CONTEXT)))
			with pytest.raises(PhaseTransitionError):
				await make_driver(tmp_path, store).revise(PhaseId.RESEARCH)

	@pytest.mark.asyncio
	async def test_revise_without_session(self, tmp_path: Path):
		async with open_store(tmp_path) as store:
			with pytest.raises(ValidationError):
				await make_driver(tmp_path, store).revise(PhaseId.CONTEXT)

	@pytest.mark.asyncio
	async def test_context_revisit_applies_confirmed_update(self, tmp_path: Path):
		dialogue = ScriptedDialogue({
			"primary_goal": "Sell vintage goods",
			"confirm_update": "yes",
		})
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.RESEARCH)))
			driver = make_driver(tmp_path, store, dialogue=dialogue)
			await driver.revise(PhaseId.CONTEXT)
			outcome = await driver.run_step()
			context = await store.load(tmp_path / "project")

		assert outcome.success
		assert context.primary_goal == "Sell vintage goods"
		assert any(d.startswith("context updated") for d in outcome.event.decisions)

	@pytest.mark.asyncio
	async def test_context_revisit_declined_keeps_context(self, tmp_path: Path):
		dialogue = ScriptedDialogue({
			"primary_goal": "Sell vintage goods",
			"confirm_update": "no",
		})
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.RESEARCH)))
			driver = make_driver(tmp_path, store, dialogue=dialogue)
			await driver.revise(PhaseId.CONTEXT)
			outcome = await driver.run_step()
			context = await store.load(tmp_path / "project")

		assert outcome.success
		assert context.primary_goal == "Sell handmade goods online"
		assert "context update declined" in outcome.event.decisions

	@pytest.mark.asyncio
	async def test_adaptation_tasks_from_changes(self, tmp_path: Path):
		dialogue = ScriptedDialogue({"changes": "switch to Postgres, add admin panel"})
		executor = RecordingExecutor()
		async with open_store(tmp_path) as store:
			await store.save(tmp_path / "project", make_context(history=completed_through(PhaseId.ADAPTATION)))
			driver = make_driver(tmp_path, store, dialogue=dialogue, executor=executor)
			await driver.revise(PhaseId.ADAPTATION, "user feedback")
			outcome = await driver.run_step()

		assert outcome.next_state is MachineState.COMPLETE
		assert executor.task_ids() == ["change-1", "change-2"]
