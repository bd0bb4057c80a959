"""Command-line interface for contractflags."""

import asyncio
import sys

import click
from loguru import logger

from contractflags import __version__, io_utils
from contractflags.analyzers import build_analyzers
from contractflags.config import AnalysisConfig, get_settings
from contractflags.errors import ContractFlagsError
from contractflags.models import Category, Severity, Source
from contractflags.orchestrator import Orchestrator
from contractflags.query import ALL, SORT_KEYS, ResultView
from contractflags.report import (
    TOOL_ANALYZE,
    TOOL_QUERY,
    file_entry,
    load_results,
    render_finding,
    render_table,
    severity_counts,
)
from contractflags.rules import DEFAULT_RULES
from contractflags.session import AnalysisSession
from contractflags.utils import build_envelope, dump_json_line, hash_file

BLOCKING_SEVERITIES = {Severity.HIGH, Severity.CRITICAL}


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Minimum level for diagnostic log messages on stderr.",
)
@click.pass_context
def main(ctx, log_level):
    """Find legal and financial red flags in contracts with a rule engine and LLM analyzers."""
    ctx.ensure_object(dict)
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())


def _view_options(func):
    func = click.option(
        "--output",
        "-o",
        type=click.Path(),
        default=None,
        show_default="stdout",
        help="Output file path or '-' for stdout.",
    )(func)
    func = click.option(
        "--format",
        "output_format",
        type=click.Choice(["json", "table"]),
        default="json",
        show_default=True,
        help="Emit a JSON envelope or a plain-text table.",
    )(func)
    func = click.option(
        "--fail-on-findings",
        "-f",
        is_flag=True,
        help="Exit with status 1 if HIGH or CRITICAL findings are in the output.",
    )(func)
    func = click.option(
        "--sort",
        "sort_keys",
        type=click.Choice(SORT_KEYS),
        multiple=True,
        help="Sort by a column. Repeat the same key to flip between descending and ascending.",
    )(func)
    func = click.option(
        "--search",
        default="",
        help="Case-insensitive text to look for in finding titles and descriptions.",
    )(func)
    func = click.option(
        "--source",
        type=click.Choice([ALL] + [src.value for src in Source]),
        default=ALL,
        show_default=True,
        help="Only include findings from this analyzer.",
    )(func)
    func = click.option(
        "--category",
        type=click.Choice([ALL] + [category.value for category in Category]),
        default=ALL,
        show_default=True,
        help="Only include findings in this category.",
    )(func)
    func = click.option(
        "--severity",
        type=click.Choice([ALL] + [severity.value for severity in Severity], case_sensitive=False),
        default=ALL,
        show_default=True,
        help="Only include findings with this severity.",
    )(func)
    return func


def _build_view(result, severity, category, source, search, sort_keys):
    view = ResultView(result).filter_by(
        severity=severity,
        category=category,
        source=source,
        search=search,
    )
    for key in sort_keys:
        view.sort_by(key)
    return view


def _write(entries, tables, tool, output, output_format):
    output_handle, should_close = io_utils.resolve_output_handle(output, mode="w")
    try:
        if output_format == "table":
            output_handle.write("\n\n".join(tables) + "\n")
        else:
            dump_json_line(build_envelope(tool=tool, files=entries), output_handle)
    finally:
        if should_close:
            output_handle.close()


def _check_blocking(rows, fail_on_findings):
    if fail_on_findings and any(finding.severity in BLOCKING_SEVERITIES for finding in rows):
        raise SystemExit(1)


async def _analyze_document(orchestrator, document, config, conflict, progress):
    session = AnalysisSession(orchestrator, conflict=conflict, progress=progress)
    try:
        handle = session.start_analysis(document, config)
        result = await session.wait(handle)
        return result, session.get_partial_failures(handle)
    finally:
        await orchestrator.aclose()


@main.command()
@click.argument("paths", nargs=-1, required=True)
@click.option(
    "--analyzer",
    "-a",
    "analyzers",
    type=click.Choice([src.value for src in Source]),
    multiple=True,
    help="Analyzer to run (may be repeated). Defaults to the configured analyzers.",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-analyzer timeout in seconds.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Show progress and a summary of findings.",
)
@_view_options
def analyze(
    paths,
    analyzers,
    timeout,
    verbose,
    severity,
    category,
    source,
    search,
    sort_keys,
    fail_on_findings,
    output_format,
    output,
):
    """Analyze contracts and report merged red flags."""

    settings = get_settings()
    config = AnalysisConfig.from_settings(settings, enabled=analyzers or None, timeout=timeout)
    documents = io_utils.resolve_documents(paths)

    def progress(event):
        click.echo(f"  [{event.stage.percent:>3}%] {event.stage.name.lower()}", err=True)

    if verbose:
        click.echo(f"Processing {len(documents)} file(s)...", err=True)

    entries, tables, all_rows = [], [], []
    for document in documents:
        if verbose:
            click.echo(f"  - {document}", err=True)
        # LLM clients are bound to the event loop that first uses them.
        orchestrator = Orchestrator(build_analyzers(settings))
        try:
            result, failures = asyncio.run(
                _analyze_document(
                    orchestrator,
                    document,
                    config,
                    settings.conflict_policy,
                    progress if verbose else None,
                )
            )
        except ContractFlagsError as exc:
            raise click.ClickException(str(exc)) from exc

        rows = _build_view(result, severity, category, source, search, sort_keys).rows()
        all_rows.extend(rows)
        entries.append(
            file_entry(result, rows, sha256=hash_file(document), partial_failures=failures)
        )
        tables.append(render_table(result, rows))

        if verbose:
            for run in failures:
                click.echo(f"  ! {run.source.value} {run.status.value}: {run.error}", err=True)

    _write(entries, tables, TOOL_ANALYZE, output, output_format)

    if verbose:
        counts = severity_counts(all_rows)
        click.echo(
            "Summary: " + " ".join(f"{name}={count}" for name, count in counts.items()),
            err=True,
        )

    _check_blocking(all_rows, fail_on_findings)


@main.command("query")
@click.argument("report")
@_view_options
def query_command(
    report,
    severity,
    category,
    source,
    search,
    sort_keys,
    fail_on_findings,
    output_format,
    output,
):
    """Filter and sort findings from a saved analysis report ('-' for stdin)."""

    handle, should_close = io_utils.open_report(report)
    try:
        loaded = load_results(handle, get_settings().scoring_policy())
    except (ValueError, KeyError) as exc:
        raise click.ClickException(f"Invalid report: {exc}") from exc
    finally:
        if should_close:
            handle.close()

    entries, tables, all_rows = [], [], []
    for entry, result in loaded:
        rows = _build_view(result, severity, category, source, search, sort_keys).rows()
        all_rows.extend(rows)
        entries.append({**entry, "items": [finding.as_dict() for finding in rows]})
        tables.append(render_table(result, rows))

    _write(entries, tables, TOOL_QUERY, output, output_format)
    _check_blocking(all_rows, fail_on_findings)


@main.command()
@click.argument("report")
@click.argument("finding_id")
@click.option(
    "--path",
    "document_path",
    default=None,
    help="Document to look in when the report covers several files.",
)
def show(report, finding_id, document_path):
    """Show the full detail of one finding from a saved report."""

    handle, should_close = io_utils.open_report(report)
    try:
        loaded = load_results(handle, get_settings().scoring_policy())
    except (ValueError, KeyError) as exc:
        raise click.ClickException(f"Invalid report: {exc}") from exc
    finally:
        if should_close:
            handle.close()

    if document_path is not None:
        loaded = [(entry, result) for entry, result in loaded if entry.get("path") == document_path]
        if not loaded:
            raise click.ClickException(f"No document {document_path} in report")
    elif len(loaded) > 1:
        raise click.ClickException("Report covers several files; choose one with --path.")

    for _, result in loaded:
        try:
            finding = ResultView(result).get(finding_id)
        except KeyError:
            continue
        click.echo(render_finding(finding))
        return

    raise click.ClickException(f"No finding with id {finding_id}")


@main.command()
def rules():
    """List the rule engine's default rules."""

    for rule in DEFAULT_RULES:
        click.echo(
            f"{rule.name:<28}  {rule.severity.value:<8}  {rule.score:>2}  "
            f"{rule.category.value:<21}  {rule.title}"
        )


if __name__ == "__main__":
    main()
