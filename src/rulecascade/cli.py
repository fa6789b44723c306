"""rulecascade CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from rulecascade import __version__
from rulecascade.rules.models import SCOPE_LADDER

if TYPE_CHECKING:
    from rulecascade.rules.engine import RuleEngine

_SCOPE_CHOICES = [s.value for s in SCOPE_LADDER]

_project_option = click.option(
    "--project",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project root holding .rulecascade/ (default: current directory).",
)


class _EchoHandler(logging.Handler):
    """Send log records to stderr through ``click.echo``."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    pkg_logger = logging.getLogger("rulecascade")
    if not any(isinstance(h, _EchoHandler) for h in pkg_logger.handlers):
        handler = _EchoHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        pkg_logger.addHandler(handler)
    pkg_logger.setLevel(level)


def _open_engine(project: Path | None) -> RuleEngine:
    """Open the engine for *project*, exiting with code 2 on config/store errors."""
    from rulecascade.rules.engine import RuleEngine
    from rulecascade.rules.errors import RuleEngineError

    project_root = project or Path.cwd()
    try:
        return RuleEngine.open(project_root)
    except RuleEngineError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


@click.group()
@click.version_option(version=__version__, prog_name="rulecascade")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """rulecascade - scoped validation rules that learn from errors."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


@main.command()
@_project_option
def init(*, project: Path | None) -> None:
    """Create .rulecascade/ with a default config, database and seed rules."""
    from rulecascade.infrastructure.config import CONFIG_DIR, config_path, default_config_yaml

    project_root = project or Path.cwd()
    (project_root / CONFIG_DIR).mkdir(parents=True, exist_ok=True)

    cfg_file = config_path(project_root)
    if cfg_file.exists():
        click.echo(f"Config: {cfg_file} (kept)")
    else:
        cfg_file.write_text(default_config_yaml(), encoding="utf-8")
        click.echo(f"Config: {cfg_file}")

    engine = _open_engine(project_root)
    try:
        seeded = engine.store.seed_defaults()
        db_path = engine.config.resolve_db_path(project_root)
    finally:
        engine.close()
    click.echo(f"Database: {db_path}")
    click.echo(f"Seeded {seeded} built-in rule(s)")


@main.command()
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, path_type=Path),
)
@click.option("--client", "client_name", default=None, help="Client the code belongs to.")
@click.option("--project-path", default=None, help="Project identifier for project-scoped rules.")
@click.option("--tech", "technologies", multiple=True, help="Technology tag (repeatable).")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["rich", "json", "porcelain"]),
    default=None,
    help="Output format (default: rich if TTY, porcelain if piped).",
)
@click.option("--strict", is_flag=True, help="Exit 1 if any error-level finding.")
@_project_option
def validate(
    *,
    paths: tuple[Path, ...],
    client_name: str | None,
    project_path: str | None,
    technologies: tuple[str, ...],
    fmt: str | None,
    strict: bool,
    project: Path | None,
) -> None:
    """Validate files or directories against the rules for client/project.

    Exit codes: 0 = clean or findings without --strict,
    1 = errors found with --strict, 2 = configuration or store error.
    """
    from rulecascade.rules.report import format_json, format_porcelain, format_rich

    if fmt is None:
        fmt = "rich" if sys.stdout.isatty() else "porcelain"

    engine = _open_engine(project)
    try:
        result = engine.validate_paths(
            paths, client_name, project_path, technologies or None
        )
    finally:
        engine.close()

    formatters = {
        "rich": format_rich,
        "json": format_json,
        "porcelain": format_porcelain,
    }
    output = formatters[fmt](result)
    if output:
        click.echo(output)

    if strict and result.errors:
        sys.exit(1)


@main.command()
@click.option("--message", "-m", "error_message", required=True, help="Observed error message.")
@click.option("--snippet", "-s", "code_snippet", required=True, help="Offending code.")
@click.option("--file", "file_path", default=None, help="File the error came from.")
@click.option("--line", "line_number", type=int, default=None, help="Line of the error.")
@click.option("--client", "client_name", default=None, help="Client the code belongs to.")
@click.option("--project-path", default=None, help="Project identifier.")
@click.option("--fix", default=None, help="Replacement that fixed the error.")
@click.option("--tech", "technology", default=None, help="Override technology detection.")
@_project_option
def learn(
    *,
    error_message: str,
    code_snippet: str,
    file_path: str | None,
    line_number: int | None,
    client_name: str | None,
    project_path: str | None,
    fix: str | None,
    technology: str | None,
    project: Path | None,
) -> None:
    """Learn a rule from an observed error."""
    from rulecascade.rules.errors import StoreError
    from rulecascade.rules.extractor import ErrorReport

    report = ErrorReport(
        error_message=error_message,
        code_snippet=code_snippet,
        file_path=file_path,
        line_number=line_number,
        project_path=project_path,
        client_name=client_name,
        fix=fix,
    )
    context = {"technology": technology} if technology else None

    engine = _open_engine(project)
    try:
        rule_id = engine.learn_from_error(report, context)
    except StoreError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    finally:
        engine.close()

    if rule_id is None:
        click.echo("No pattern extracted")
    else:
        click.echo(rule_id)


@main.command()
@click.option(
    "--every",
    "interval",
    type=click.FloatRange(min=1.0),
    default=None,
    help="Keep running, one cycle every N seconds.",
)
@_project_option
def propagate(*, interval: float | None, project: Path | None) -> None:
    """Promote effective rules (one cycle, or periodically with --every)."""
    from rulecascade.infrastructure.scheduler import PropagationScheduler
    from rulecascade.rules.errors import StoreError
    from rulecascade.rules.report import format_propagation

    engine = _open_engine(project)
    try:
        if interval is None:
            try:
                stats = engine.run_propagation_cycle()
            except StoreError as exc:
                click.echo(f"Error: {exc}", err=True)
                sys.exit(2)
            click.echo(format_propagation(stats))
            return

        scheduler = PropagationScheduler(engine, interval)
        scheduler.start()
        click.echo(f"Propagating every {interval:.0f}s (Ctrl+C to stop)")
        try:
            scheduler.wait()
        except KeyboardInterrupt:
            pass
        finally:
            scheduler.stop()
        click.echo(f"Stopped after {scheduler.cycles_run} cycle(s)")
    finally:
        engine.close()


@main.command("rules")
@click.option("--scope", "scopes", multiple=True, type=click.Choice(_SCOPE_CHOICES))
@click.option("--tech", "technologies", multiple=True, help="Technology tag (repeatable).")
@click.option("--json", "output_json", is_flag=True, help="Structured JSON output.")
@_project_option
def rules_cmd(
    *,
    scopes: tuple[str, ...],
    technologies: tuple[str, ...],
    output_json: bool,
    project: Path | None,
) -> None:
    """List active rules."""
    from rulecascade.rules.report import render_rules_table, rules_to_json

    engine = _open_engine(project)
    try:
        rules = engine.list_rules(scopes or None, technologies or None)
    finally:
        engine.close()

    if output_json:
        click.echo(rules_to_json(rules))
    else:
        click.echo(render_rules_table(rules), nl=False)


@main.command()
@click.argument("rule_id")
@_project_option
def deactivate(*, rule_id: str, project: Path | None) -> None:
    """Switch a rule off."""
    engine = _open_engine(project)
    try:
        found = engine.deactivate_rule(rule_id)
    finally:
        engine.close()
    if not found:
        click.echo(f"Error: unknown rule '{rule_id}'", err=True)
        sys.exit(1)
    click.echo(f"Deactivated {rule_id}")


@main.command()
@click.argument("rule_id")
@_project_option
def demote(*, rule_id: str, project: Path | None) -> None:
    """Move a rule one scope narrower."""
    engine = _open_engine(project)
    try:
        new_scope = engine.demote_rule(rule_id)
    finally:
        engine.close()
    if new_scope is None:
        click.echo(f"Error: '{rule_id}' is unknown or already project-scoped", err=True)
        sys.exit(1)
    click.echo(f"Demoted {rule_id} to {new_scope.value}")


@main.command()
@click.argument("rule_id")
@click.option("--file", "file_path", default=None, help="File the finding was reported in.")
@click.option("--line", "line_number", type=int, required=True, help="Line of the finding.")
@click.option("--false-positive", is_flag=True, help="The finding was wrong.")
@click.option("--fixed", "fix_applied", is_flag=True, help="The suggested fix was applied.")
@click.option("--note", default=None, help="Free-form feedback text.")
@_project_option
def feedback(
    *,
    rule_id: str,
    file_path: str | None,
    line_number: int,
    false_positive: bool,
    fix_applied: bool,
    note: str | None,
    project: Path | None,
) -> None:
    """Record feedback on a reported finding.

    Feedback feeds the effectiveness score on the next rescore or
    propagation cycle.
    """
    if not (false_positive or fix_applied or note):
        msg = "give at least one of --false-positive, --fixed or --note"
        raise click.UsageError(msg)

    engine = _open_engine(project)
    try:
        found = engine.record_feedback(
            rule_id,
            file_path,
            line_number,
            false_positive=false_positive,
            fix_applied=fix_applied,
            note=note,
        )
    finally:
        engine.close()
    if not found:
        location = f"{file_path or '<input>'}:{line_number}"
        click.echo(f"Error: no application of '{rule_id}' at {location}", err=True)
        sys.exit(1)
    click.echo(f"Recorded feedback for {rule_id}")


@main.command()
@_project_option
def rescore(*, project: Path | None) -> None:
    """Recompute effectiveness scores from recorded applications."""
    engine = _open_engine(project)
    try:
        count = engine.rescore()
    finally:
        engine.close()
    click.echo(f"Rescored {count} rule(s)")


@main.command()
@click.option("--days", type=click.IntRange(min=1), default=None, help="Retention window.")
@_project_option
def prune(*, days: int | None, project: Path | None) -> None:
    """Delete old low-severity application records."""
    engine = _open_engine(project)
    try:
        deleted = engine.prune(days)
    finally:
        engine.close()
    click.echo(f"Deleted {deleted} application record(s)")


@main.command()
@click.option("--json", "output_json", is_flag=True, help="Structured JSON output.")
@_project_option
def stats(*, output_json: bool, project: Path | None) -> None:
    """Show rule engine metrics."""
    from rulecascade.rules.report import render_summary, summary_to_json

    engine = _open_engine(project)
    try:
        summary = engine.summary()
    finally:
        engine.close()

    if output_json:
        click.echo(summary_to_json(summary))
    else:
        click.echo(render_summary(summary), nl=False)


@main.command()
@click.option("--limit", type=click.IntRange(min=1), default=50, help="Rows to show.")
@click.option("--json", "output_json", is_flag=True, help="Structured JSON output.")
@_project_option
def promotions(*, limit: int, output_json: bool, project: Path | None) -> None:
    """Show the most recent scope promotions."""
    from rulecascade.rules.report import promotions_to_json, render_promotions_table

    engine = _open_engine(project)
    try:
        records = engine.list_promotions(limit)
    finally:
        engine.close()

    if output_json:
        click.echo(promotions_to_json(records))
    else:
        click.echo(render_promotions_table(records), nl=False)


@main.command("export-eslint")
@click.option("--client", "client_name", default=None, help="Client the project belongs to.")
@click.option("--project-path", default=None, help="Project identifier.")
@click.option("--tech", "technologies", multiple=True, help="Technology tag (repeatable).")
@_project_option
def export_eslint(
    *,
    client_name: str | None,
    project_path: str | None,
    technologies: tuple[str, ...],
    project: Path | None,
) -> None:
    """Print an ESLint config for the rules that apply to client/project."""
    from rulecascade.rules.eslint_export import build_eslint_config
    from rulecascade.rules.scopes import resolve_scopes

    project_root = project or Path.cwd()
    engine = _open_engine(project_root)
    try:
        scopes = resolve_scopes(client_name, project_path)
        rule_set = engine.get_rules_for_scope(
            scopes, technologies or None, client_name, project_path
        )
        db_path = engine.config.resolve_db_path(project_root)
    finally:
        engine.close()

    config = build_eslint_config(
        (compiled.rule for compiled in rule_set),
        project_path,
        client_name,
        db_path=str(db_path),
    )
    click.echo(json.dumps(config, indent=2))
