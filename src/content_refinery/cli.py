"""CLI for content-refinery: start, show, list, review, cancel, versions, resume and serve."""

import argparse
import asyncio
import sys
from typing import Awaitable, Callable, TypeVar

from dotenv import load_dotenv
from rich.console import Console

from .config import Config, load_config
from .errors import RefineryError
from .logging_config import setup_logging
from .orchestrator.engine import RefinementOrchestrator
from .runs.models import EDITABLE_FIELDS, RunStatus
from .views import render_executions, render_run_detail, render_run_list, render_versions

T = TypeVar("T")

console = Console()


def _with_orchestrator(config: Config, fn: Callable[[RefinementOrchestrator], Awaitable[T]]) -> T:
	"""Run fn against a started orchestrator and shut it down afterwards."""

	async def runner() -> T:
		async with RefinementOrchestrator.from_config(config) as orchestrator:
			return await fn(orchestrator)

	return asyncio.run(runner())


def _parse_overrides(pairs: list[str]) -> dict[str, str]:
	"""Turn ['definition=...', 'social_post=...'] into a dict."""
	overrides = {}
	for pair in pairs or []:
		key, sep, value = pair.partition("=")
		if not sep:
			raise argparse.ArgumentTypeError(f"Override must look like field=value, got '{pair}'")
		overrides[key.strip()] = value
	return overrides


def cmd_start(args: argparse.Namespace, config: Config) -> None:
	"""Start a run and drive it until it completes, fails or needs review."""

	async def run(orchestrator: RefinementOrchestrator):
		started = await orchestrator.start_run(
			args.topic, max_cycles=args.max_cycles, quality_threshold=args.threshold,
		)
		console.print(f"Started run [cyan]{started.id}[/cyan]")
		with console.status(f"Refining '{started.topic}'..."):
			return await orchestrator.wait_for_run(started.id)

	run = _with_orchestrator(config, run)
	render_run_detail(run, console=console)
	if run.status == RunStatus.HUMAN_REVIEW:
		console.print(f"Submit a decision with: content-refinery review {run.id} --decision accept|improve|reject")


def cmd_show(args: argparse.Namespace, config: Config) -> None:
	async def show(orchestrator: RefinementOrchestrator):
		run = await orchestrator.get_run(args.run_id)
		executions = await orchestrator.list_stage_executions(args.run_id) if args.executions else []
		return run, executions

	run, executions = _with_orchestrator(config, show)
	render_run_detail(run, console=console)
	if args.executions:
		render_executions(executions, console=console)


def cmd_list(args: argparse.Namespace, config: Config) -> None:
	runs, total = _with_orchestrator(
		config,
		lambda o: o.list_runs(status=args.status, limit=args.limit, offset=args.offset),
	)
	render_run_list(runs, total, console=console)


def cmd_review(args: argparse.Namespace, config: Config) -> None:
	"""Submit a human review; IMPROVE keeps driving the run in this process."""
	overrides = _parse_overrides(args.set)

	async def review(orchestrator: RefinementOrchestrator):
		run = await orchestrator.submit_human_review(
			args.run_id, args.decision, feedback=args.feedback, field_overrides=overrides,
		)
		if run.is_terminal:
			return run
		with console.status(f"Running cycle {run.current_cycle} of {run.max_cycles}..."):
			return await orchestrator.wait_for_run(run.id)

	render_run_detail(_with_orchestrator(config, review), console=console)


def cmd_cancel(args: argparse.Namespace, config: Config) -> None:
	run = _with_orchestrator(config, lambda o: o.cancel_run(args.run_id))
	console.print(f"Run [cyan]{run.id}[/cyan] is {run.status.value}")


def cmd_versions(args: argparse.Namespace, config: Config) -> None:
	versions = _with_orchestrator(config, lambda o: o.list_artifact_versions(args.run_id))
	render_versions(versions, console=console)


def cmd_resume(args: argparse.Namespace, config: Config) -> None:
	"""Resume runs left unfinished by an earlier process."""

	async def resume(orchestrator: RefinementOrchestrator):
		run_ids = await orchestrator.recover_runs()
		if not run_ids:
			return []
		with console.status(f"Resuming {len(run_ids)} run(s)..."):
			return [await orchestrator.wait_for_run(run_id) for run_id in run_ids]

	runs = _with_orchestrator(config, resume)
	if not runs:
		console.print("[dim]No interrupted runs to resume.[/dim]")
		return
	render_run_list(runs, len(runs), console=console)


def cmd_serve(args: argparse.Namespace, config: Config) -> None:
	from .web import run_web_server

	run_web_server(config, host=args.host, port=args.port)


def main() -> None:
	"""CLI entry point."""
	load_dotenv()

	parser = argparse.ArgumentParser(
		prog="content-refinery",
		description="Iterative content generation with fact-checking, critique and human review",
	)
	subparsers = parser.add_subparsers(dest="command")

	# start
	start_parser = subparsers.add_parser("start", help="Start a run for a topic")
	start_parser.add_argument("topic", help="Topic to generate content about")
	start_parser.add_argument("--max-cycles", type=int, default=None, help="Cycle budget (1-10)")
	start_parser.add_argument("--threshold", type=float, default=None, help="Quality threshold (1-10)")
	start_parser.set_defaults(func=cmd_start)

	# show
	show_parser = subparsers.add_parser("show", help="Show a run")
	show_parser.add_argument("run_id")
	show_parser.add_argument("--executions", action="store_true", help="Include stage execution log")
	show_parser.set_defaults(func=cmd_show)

	# list
	list_parser = subparsers.add_parser("list", help="List runs")
	list_parser.add_argument("--status", type=str, default=None, help="Filter by status")
	list_parser.add_argument("--limit", type=int, default=20, help="Max results")
	list_parser.add_argument("--offset", type=int, default=0)
	list_parser.set_defaults(func=cmd_list)

	# review
	review_parser = subparsers.add_parser("review", help="Submit a human review decision")
	review_parser.add_argument("run_id")
	review_parser.add_argument(
		"--decision", required=True, type=str.upper, choices=["ACCEPT", "IMPROVE", "REJECT"],
	)
	review_parser.add_argument("--feedback", type=str, default=None, help="Guidance for the next cycle")
	review_parser.add_argument(
		"--set", action="append", default=[], metavar="FIELD=VALUE",
		help=f"Override an artifact field ({', '.join(EDITABLE_FIELDS)})",
	)
	review_parser.set_defaults(func=cmd_review)

	# cancel
	cancel_parser = subparsers.add_parser("cancel", help="Cancel a run")
	cancel_parser.add_argument("run_id")
	cancel_parser.set_defaults(func=cmd_cancel)

	# versions
	versions_parser = subparsers.add_parser("versions", help="List stored artifact versions")
	versions_parser.add_argument("run_id")
	versions_parser.set_defaults(func=cmd_versions)

	# resume
	resume_parser = subparsers.add_parser("resume", help="Resume interrupted runs")
	resume_parser.set_defaults(func=cmd_resume)

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run the web API")
	serve_parser.add_argument("--host", type=str, default="127.0.0.1")
	serve_parser.add_argument("--port", type=int, default=8420, help="Server port (default: 8420)")
	serve_parser.set_defaults(func=cmd_serve)

	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	config = load_config()
	setup_logging(config.log_level, config.log_dir)

	try:
		args.func(args, config)
	except (RefineryError, argparse.ArgumentTypeError) as e:
		console.print(f"[red]Error:[/red] {e}")
		sys.exit(1)


if __name__ == "__main__":
	main()
