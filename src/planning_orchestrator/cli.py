"""CLI for planning-orchestrator: run, status, revise, score, reset, and serve commands."""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.prompt import Confirm

from .config import Config, load_config
from .engine.allocation import allocate
from .engine.breakdown import AskUser, describe, requires_breakdown
from .engine.complexity import FactorTag, score, score_breakdown
from .errors import CorruptStateError, PhaseTransitionError, ValidationError
from .logging_config import setup_logging
from .session.models import ComplexityPreference, PhaseId
from .session.store import SessionStore


def _root(args: argparse.Namespace) -> Path:
	return Path(getattr(args, "root", None) or Path.cwd()).expanduser().resolve()


async def _open_store(config: Config) -> SessionStore:
	store = SessionStore(config.state_db_path)
	await store.init()
	return store


async def _run(args: argparse.Namespace, config: Config, console: Console) -> int:
	from .console import ConsoleDialogue, ConsoleExecutor
	from .orchestrator.driver import OrchestrationDriver
	from .visualizer import render_phase_progress, render_task_tree

	store = await _open_store(config)
	try:
		driver = OrchestrationDriver(
			_root(args),
			store,
			ConsoleDialogue(console),
			ConsoleExecutor(console),
			config=config,
		)
		point = await driver.resume_or_start()
		if point.corrupt:
			console.print(f"[red]{point.corrupt}[/red]")
			if not (args.fresh or Confirm.ask("Quarantine the record and start fresh?", console=console)):
				return 1
			point = await driver.start_fresh()
		elif args.fresh and not point.is_fresh:
			point = await driver.start_fresh()

		if point.is_complete:
			console.print("[green]Planning run is complete.[/green] Use `revise ADAPTATION` to continue.")
			return 0

		console.print(f"Starting at [cyan]{point.phase.value}[/cyan]")
		outcomes = await driver.run(max_steps=args.steps)
		for outcome in outcomes:
			if outcome.success:
				console.print(f"[green]OK[/green] {outcome.phase.value} -> {outcome.next_state.value}")
				if outcome.tasks:
					render_task_tree(outcome.tasks, console=console, title=outcome.phase.value)
			else:
				console.print(
					f"[red]FAIL[/red] {outcome.phase.value} after {outcome.attempts} attempt(s): {outcome.error}"
				)
				return 1

		render_phase_progress(await store.load(_root(args)), console=console)
		return 0
	finally:
		await store.close()


def cmd_run(args: argparse.Namespace) -> None:
	"""Resume or start a planning run with a terminal dialogue."""
	config = load_config()
	setup_logging(config.log_level, config.log_dir, console=args.verbose)
	console = Console()
	sys.exit(asyncio.run(_run(args, config, console)))


async def _status(args: argparse.Namespace, config: Config, console: Console) -> int:
	from .visualizer import render_phase_progress, render_quarantined, render_session_history

	store = await _open_store(config)
	try:
		quarantined = await store.list_quarantined(_root(args))
		try:
			context = await store.load(_root(args))
		except CorruptStateError as e:
			console.print(f"[red]{e}[/red]")
			console.print("Run `planning-orchestrator reset` to quarantine it.")
			return 1
	finally:
		await store.close()

	if context is None:
		console.print(f"No planning session for {_root(args)}.")
	else:
		render_phase_progress(context, console=console)
		render_session_history(context, console=console)
	render_quarantined(quarantined, console=console)
	return 0


def cmd_status(args: argparse.Namespace) -> None:
	"""Show the current phase and session history."""
	config = load_config()
	sys.exit(asyncio.run(_status(args, config, Console())))


async def _revise(args: argparse.Namespace, config: Config, console: Console) -> int:
	from .orchestrator.driver import revise_session

	try:
		target = PhaseId(args.phase.upper())
	except ValueError:
		console.print(f"[red]Invalid phase: {args.phase}[/red]")
		console.print(f"Valid phases: {', '.join(p.value for p in PhaseId)}")
		return 1

	store = await _open_store(config)
	try:
		event = await revise_session(store, _root(args), target, args.reason)
	except (CorruptStateError, PhaseTransitionError, ValidationError) as e:
		console.print(f"[red]{e}[/red]")
		return 1
	finally:
		await store.close()

	console.print(f"Re-entering [cyan]{event.phase.value}[/cyan]")
	return 0


def cmd_revise(args: argparse.Namespace) -> None:
	"""Re-enter an earlier phase."""
	config = load_config()
	setup_logging(config.log_level, config.log_dir, console=False)
	sys.exit(asyncio.run(_revise(args, config, Console())))


def cmd_score(args: argparse.Namespace) -> None:
	"""Score a task and show the breakdown decision and allocation."""
	console = Console()
	try:
		tags = [FactorTag(f.strip().upper()) for f in args.flags.split(",") if f.strip()]
		preference = ComplexityPreference(args.preference.upper())
	except ValueError as e:
		console.print(f"[red]{e}[/red]")
		console.print(f"Valid flags: {', '.join(t.value for t in FactorTag)}")
		sys.exit(1)
	if args.files < 0 or args.subtasks < 0:
		console.print("[red]Counts cannot be negative[/red]")
		sys.exit(1)

	value = score(tags, args.files)
	decision = requires_breakdown(value, preference)
	wants_detail = preference == ComplexityPreference.FULL_BREAKDOWN
	agents = allocate(value, args.subtasks, args.context_remaining, wants_detail)

	console.print(f"[bold]Score:[/bold] {value:.2f}")
	for part, weight in score_breakdown(tags, args.files).items():
		if weight:
			console.print(f"  {part}: {weight:.2f}")
	console.print(f"[bold]Breakdown:[/bold] {describe(decision)}")
	if isinstance(decision, AskUser):
		console.print("  [dim]The user decides; set a preference to skip the question.[/dim]")
	console.print(f"[bold]Agents:[/bold] {agents}")


async def _reset(args: argparse.Namespace, config: Config, console: Console) -> int:
	store = await _open_store(config)
	try:
		async with store.step_lock(_root(args)):
			moved = await store.quarantine(_root(args), reason="reset from cli")
	finally:
		await store.close()

	if moved:
		console.print("Session record quarantined. The next run starts at CONTEXT.")
	else:
		console.print(f"No planning session for {_root(args)}.")
	return 0


def cmd_reset(args: argparse.Namespace) -> None:
	"""Quarantine the stored session so the next run starts fresh."""
	config = load_config()
	setup_logging(config.log_level, config.log_dir, console=False)
	sys.exit(asyncio.run(_reset(args, config, Console())))


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import mcp
	mcp.run()


def main() -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="planning-orchestrator",
		description="Phase-driven project planning with complexity-based agent allocation",
	)
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Resume or start a planning run")
	run_parser.add_argument("--root", type=str, default=None, help="Project root (default: cwd)")
	run_parser.add_argument("--steps", type=int, default=None, help="Stop after this many phase steps")
	run_parser.add_argument("--fresh", action="store_true", help="Quarantine any stored session first")
	run_parser.add_argument("--verbose", "-v", action="store_true", help="Log to the console")
	run_parser.set_defaults(func=cmd_run)

	# status
	status_parser = subparsers.add_parser("status", help="Show phase progress and history")
	status_parser.add_argument("--root", type=str, default=None, help="Project root (default: cwd)")
	status_parser.set_defaults(func=cmd_status)

	# revise
	revise_parser = subparsers.add_parser("revise", help="Re-enter an earlier phase")
	revise_parser.add_argument("phase", help="Phase to re-enter (e.g. RESEARCH)")
	revise_parser.add_argument("--reason", type=str, default="", help="Why the phase is revisited")
	revise_parser.add_argument("--root", type=str, default=None, help="Project root (default: cwd)")
	revise_parser.set_defaults(func=cmd_revise)

	# score
	score_parser = subparsers.add_parser("score", help="Score a task and show its allocation")
	score_parser.add_argument("--flags", type=str, default="", help="Comma-separated complexity factors")
	score_parser.add_argument("--files", type=int, default=0, help="Number of files touched")
	score_parser.add_argument(
		"--preference",
		type=str,
		default=ComplexityPreference.ASK_EACH_TIME.value,
		help="FULL_BREAKDOWN, HIGH_LEVEL, or ASK_EACH_TIME",
	)
	score_parser.add_argument("--subtasks", type=int, default=0, help="Size of the enclosing breakdown")
	score_parser.add_argument(
		"--context-remaining",
		type=float,
		default=1.0,
		help="Fraction of the context budget left (default: 1.0)",
	)
	score_parser.set_defaults(func=cmd_score)

	# reset
	reset_parser = subparsers.add_parser("reset", help="Quarantine the stored session")
	reset_parser.add_argument("--root", type=str, default=None, help="Project root (default: cwd)")
	reset_parser.set_defaults(func=cmd_reset)

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
