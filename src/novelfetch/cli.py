from __future__ import annotations

import json
import logging
import os
import sys
from typing import Optional

import typer

from .consumer import load_chapter_manifest, run_analyze, run_batch
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.fetcher_config import DEFAULT_HOST, DEFAULT_PORT, load_fetch_config
from .workflows.validation import MalformedRequest

app = typer.Typer(add_help_option=False, no_args_is_help=False)


def _configure_logging() -> None:
    level = (os.getenv("NOVELFETCH_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _minimal_help() -> str:
    return """novelfetch (web novel TOC crawler)

Usage:
  novelfetch analyze <url> [--job-id <ID>] [--json] [--soft-fail]
  novelfetch batch <chapters.json|urls.txt|-> [--user-agent <UA>] [--json] [--soft-fail]
  novelfetch serve [--host <HOST>] [--port <PORT>]
  novelfetch doctor

Common options:
  --json          Print the JSON summary to stdout only.
  --soft-fail     Exit 0 even if some items fail.

Discoverability:
  --help-full     Expanded help + env vars + exit codes.
  --find <query>  Search commands, flags, env vars.
  --doctor        Run environment diagnostics and exit.
"""


def _help_full() -> str:
    return """novelfetch CLI

Commands:
  analyze   Crawl a table-of-contents URL and list every chapter found.
  batch     Download chapters (JSON array, novel-ready payload, or URL lines).
  serve     Run the HTTP + websocket service.
  doctor    Print environment and dependency diagnostics.

HTTP service (serve):
  POST /api/novel-info       {url, jobId} -> {"status": "queued"}; events on /ws.
  POST /api/chapters-batch   {chapters, jobId?, userAgent?} -> {"results": [...]}.
  GET  /api/proxy-image?url= Image bytes (private networks refused).
  GET  /ws                   Send {"type": "join-job", "jobId": ...} to receive events.

Exit codes:
  0  success
  1  partial failure (some chapters failed, or no chapters found)
  2  bad input (invalid URL or manifest)
  3  fatal (crawl failed or was cancelled)

Important env vars:
  NOVELFETCH_LOG_LEVEL
  NOVELFETCH_TIMEOUT
  NOVELFETCH_MAX_ATTEMPTS
  NOVELFETCH_BACKOFF_BASE
  NOVELFETCH_BACKOFF_JITTER
  NOVELFETCH_MAX_REDIRECTS
  NOVELFETCH_BATCH_CONCURRENCY
  NOVELFETCH_MAX_TOC_PAGES
  NOVELFETCH_POLITENESS_MIN
  NOVELFETCH_POLITENESS_MAX
  NOVELFETCH_ACCEPT_LANGUAGE
  NOVELFETCH_REFERER
  NOVELFETCH_USER_AGENT
  NOVELFETCH_HOST
  NOVELFETCH_PORT

Values are also read from a .env file in the working directory.
"""


_FIND_INDEX = [
    ("command", "analyze", "Crawl a TOC URL and list chapters."),
    ("command", "batch", "Download chapters from a manifest file or stdin."),
    ("command", "serve", "Run the HTTP + websocket service."),
    ("command", "doctor", "Print environment and dependency diagnostics."),
    ("flag", "--job-id", "Job id used for event routing (generated when omitted)."),
    ("flag", "--user-agent", "User-Agent to reuse from the crawl session."),
    ("flag", "--json", "Print summary JSON to stdout only."),
    ("flag", "--soft-fail", "Exit 0 even if some items fail."),
    ("flag", "--host", "Bind address for serve."),
    ("flag", "--port", "Port for serve."),
    ("flag", "--help-full", "Expanded help, env vars, exit codes."),
    ("flag", "--find", "Search commands, flags, env vars."),
    ("flag", "--doctor", "Run environment diagnostics and exit."),
    ("env", "NOVELFETCH_LOG_LEVEL", "Logging level (default INFO)."),
    ("env", "NOVELFETCH_TIMEOUT", "Per-request timeout in seconds."),
    ("env", "NOVELFETCH_MAX_ATTEMPTS", "Fetch attempts per page or chapter."),
    ("env", "NOVELFETCH_BACKOFF_BASE", "Retry delay multiplier in seconds."),
    ("env", "NOVELFETCH_BACKOFF_JITTER", "Random retry jitter ceiling in seconds."),
    ("env", "NOVELFETCH_MAX_REDIRECTS", "Redirect hops followed per request."),
    ("env", "NOVELFETCH_BATCH_CONCURRENCY", "Chapter downloads in flight per batch."),
    ("env", "NOVELFETCH_MAX_TOC_PAGES", "TOC pages scanned per job."),
    ("env", "NOVELFETCH_POLITENESS_MIN", "Minimum delay between TOC pages."),
    ("env", "NOVELFETCH_POLITENESS_MAX", "Maximum delay between TOC pages."),
    ("env", "NOVELFETCH_USER_AGENT", "Pin one User-Agent instead of rotating."),
    ("env", "NOVELFETCH_HOST", "Default bind address for serve."),
    ("env", "NOVELFETCH_PORT", "Default port for serve."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
) -> None:
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)
    _configure_logging()


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("analyze", add_help_option=True)
def analyze(
    url: str = typer.Argument(..., help="Table-of-contents URL to crawl."),
    job_id: Optional[str] = typer.Option(None, "--job-id", help="Job id used for event routing."),
    json_out: bool = typer.Option(False, "--json", help="Print summary JSON to stdout only."),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Exit 0 even if no chapters are found."),
) -> None:
    try:
        summary, exit_code = run_analyze(
            url,
            job_id=job_id,
            soft_fail=soft_fail,
            echo=None if json_out else sys.stdout,
        )
    except MalformedRequest as exc:
        if not json_out:
            typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    except Exception as exc:
        if not json_out:
            typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    if json_out:
        sys.stdout.write(json.dumps(summary, ensure_ascii=False) + "\n")
    raise typer.Exit(code=exit_code)


@app.command("batch", add_help_option=True)
def batch(
    path_or_dash: str = typer.Argument(..., help="Chapter manifest path or '-' for stdin."),
    job_id: Optional[str] = typer.Option(None, "--job-id", help="Job id used for event routing."),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", help="User-Agent to reuse from the crawl."),
    json_out: bool = typer.Option(False, "--json", help="Print summary JSON to stdout only."),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Exit 0 even if some chapters fail."),
) -> None:
    try:
        chapters = load_chapter_manifest(path_or_dash)
    except (OSError, ValueError) as exc:
        if not json_out:
            typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    try:
        summary, exit_code = run_batch(
            chapters,
            job_id=job_id,
            user_agent=user_agent,
            soft_fail=soft_fail,
            echo=None if json_out else sys.stderr,
        )
    except Exception as exc:
        if not json_out:
            typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    sys.stdout.write(json.dumps(summary, ensure_ascii=False) + "\n")
    raise typer.Exit(code=exit_code)


@app.command("serve", add_help_option=True)
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address."),
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on."),
) -> None:
    """Run the HTTP + websocket service."""
    from .server import run_server

    config = load_fetch_config()
    bind_host = host or os.getenv("NOVELFETCH_HOST") or DEFAULT_HOST
    try:
        bind_port = port or int(os.getenv("NOVELFETCH_PORT") or DEFAULT_PORT)
    except ValueError:
        typer.echo("error: NOVELFETCH_PORT must be an integer", err=True)
        raise typer.Exit(code=2)
    run_server(bind_host, bind_port, config)
