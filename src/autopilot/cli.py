"""CLI commands for running the issue autopilot against a repository."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from .automation import (
    AutomationOutcome,
    FeedbackOutcome,
    IssueAutomation,
    build_automation,
    should_process_comment,
    should_process_issue_event,
)
from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    PipelineSettings,
    copy_config_template,
    load_config,
    resolve_settings,
    write_config,
)
from .hosting.base import HostingError
from .models import ClaudeClient, LLMClient, LLMClientError
from .orchestrator import PipelineResult
from .publisher import PublishError
from .schema import ReviewFeedback
from .tools.validation import ValidationAdapter, ValidationResult
from .tools.vcs import GitError

APP_HELP = "Issue autopilot: turn tracker issues into validated pull requests."

app = typer.Typer(help=APP_HELP)

_CONFIG_OPTION_HELP = "Path to the autopilot configuration file."


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline progress to stderr."),
) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_settings(config: str) -> PipelineSettings:
    config_path = Path(config)
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}", param_hint="--config")
    try:
        return resolve_settings(load_config(config_path), config_path)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _build_client(settings: PipelineSettings) -> LLMClient:
    """Construct the Claude client named in ``models.default``."""
    typer.echo(f"Using Claude client ({settings.model}).")
    client_kwargs: Dict[str, Any] = {"model": settings.model}
    if settings.model_base_url:
        client_kwargs["base_url"] = settings.model_base_url
    if settings.model_timeout:
        client_kwargs["timeout"] = settings.model_timeout
    try:
        return ClaudeClient(**client_kwargs)
    except ValueError as error:
        if "api_key" in str(error).lower():
            typer.echo("No API key given. Set ANTHROPIC_API_KEY.")
        else:
            typer.echo(f"Failed to initialise Claude client: {error}")
        raise typer.Exit(code=1) from error


def _build_automation(settings: PipelineSettings) -> IssueAutomation:
    client = _build_client(settings)
    try:
        return build_automation(settings, client=client)
    except (HostingError, ValueError) as error:
        typer.echo(f"Failed to configure automation: {error}")
        raise typer.Exit(code=1) from error


def _render_result(result: PipelineResult) -> None:
    typer.echo(f"Outcome: {result.outcome} after {len(result.attempts)} attempt(s)")
    for attempt in result.attempts:
        status = attempt.validation.status if attempt.validation is not None else "not run"
        files = ", ".join(attempt.paths) or "no files"
        typer.echo(f"- Attempt {attempt.attempt_number} [{attempt.mode}]: {files} -> {status}")
    if result.accepted:
        typer.echo(f"Verified: {'yes' if result.verified else 'no'}")
    if result.final_change_set:
        typer.echo("Change set:")
        for operation in result.final_change_set:
            typer.echo(f"  - {operation.action} {operation.path}")
    if result.errors:
        typer.echo("Remaining errors:")
        for issue in result.errors:
            typer.echo(f"  - {issue.render()}")
    if result.summary:
        typer.echo(f"Summary: {result.summary}")


def _render_outcome(outcome: AutomationOutcome) -> None:
    typer.echo(f"Issue: {outcome.issue.identifier} {outcome.issue.title}")
    typer.echo(f"Branch: {outcome.branch}")
    _render_result(outcome.result)
    if outcome.pull_request is not None:
        typer.echo(f"Pull request: {outcome.pull_request.url}")


def _render_feedback(outcome: FeedbackOutcome) -> None:
    typer.echo(f"PR #{outcome.pull_request.number}: {outcome.pull_request.title}")
    _render_result(outcome.result)
    if outcome.commit_sha:
        typer.echo(f"Commit: {outcome.commit_sha[:7]} on {outcome.pull_request.head_ref}")


def _render_validation(result: ValidationResult) -> None:
    typer.echo(f"Validation: {result.status}")
    if result.command:
        typer.echo(f"Command: {' '.join(result.command)}")
    if result.exit_code is not None:
        typer.echo(f"Exit code: {result.exit_code}")
    for issue in result.errors:
        typer.echo(f"  error: {issue.render()}")
    for issue in result.warnings:
        typer.echo(f"  warning: {issue.render()}")
    if result.unavailable:
        typer.echo(result.short_message())


_PIPELINE_ERRORS = (HostingError, LLMClientError, GitError, PublishError)


@app.command()
def init(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration template."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Config already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    config_data = copy_config_template()
    config_data["project"]["name"] = config_path.resolve().parent.name
    write_config(config_path, config_data)
    typer.echo(f"Wrote configuration to {config_path}.")


@app.command()
def run(
    issue_id: str = typer.Argument(..., help="Tracker issue identifier, e.g. ENG-42."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
    dry_run: bool = typer.Option(False, "--dry-run", help="Run the pipeline without publishing anything."),
) -> None:
    """Generate, validate, and publish a change for one issue."""
    settings = _load_settings(config)
    automation = _build_automation(settings)
    try:
        outcome = automation.process_issue(issue_id, publish=not dry_run)
    except _PIPELINE_ERRORS as error:
        typer.echo(f"Run failed: {error}")
        raise typer.Exit(code=1) from error
    _render_outcome(outcome)
    if not outcome.result.accepted:
        raise typer.Exit(code=2)


@app.command()
def event(
    payload_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Tracker webhook payload (JSON)."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
) -> None:
    """Run the pipeline when a webhook payload moves an issue to In Progress."""
    try:
        payload = json.loads(payload_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        typer.echo(f"Invalid payload: {error}")
        raise typer.Exit(code=1) from error
    if not isinstance(payload, dict) or not should_process_issue_event(payload):
        typer.echo("Event ignored.")
        return
    issue_id = str(payload["data"].get("id") or "")
    if not issue_id:
        typer.echo("Event has no issue id.")
        raise typer.Exit(code=1)
    run(issue_id, config=config, dry_run=False)


@app.command()
def feedback(
    pr_number: int = typer.Argument(..., help="Pull request number to update."),
    comment: str = typer.Option(..., "--comment", help="Reviewer comment text."),
    author: str = typer.Option(..., "--author", help="Login of the comment author."),
    comment_id: Optional[int] = typer.Option(None, "--comment-id", help="Identifier of the comment."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
    require_trigger: bool = typer.Option(
        False,
        "--require-trigger/--no-require-trigger",
        help="Ignore comments without a configured trigger token.",
    ),
) -> None:
    """Address one reviewer comment on an open pull request."""
    settings = _load_settings(config)
    if require_trigger and not should_process_comment(comment, author, settings.feedback_triggers):
        typer.echo("Comment ignored (no trigger token or bot author).")
        return
    automation = _build_automation(settings)
    request = ReviewFeedback(pr_number=pr_number, comment=comment, author=author, comment_id=comment_id)
    try:
        outcome = automation.process_feedback(request)
    except _PIPELINE_ERRORS as error:
        typer.echo(f"Feedback failed: {error}")
        raise typer.Exit(code=1) from error
    _render_feedback(outcome)


@app.command()
def validate(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_OPTION_HELP),
) -> None:
    """Run the configured validation command against the repository."""
    settings = _load_settings(config)
    adapter = ValidationAdapter(
        settings.validation_command,
        success_marker=settings.success_marker,
        timeout=settings.validation_timeout,
        max_errors=settings.max_errors,
        max_warnings=settings.max_warnings,
    )
    result = adapter.validate(settings.repo_root)
    _render_validation(result)
    if result.status == "failed":
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
