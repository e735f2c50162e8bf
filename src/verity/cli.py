"""Verity command-line interface."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from . import __version__
from .autoreply import build_rules, classify, return_path_only
from .config import Config, ConfigError, load_config, resolve_config_path
from .ingest import FactCheckIngester, IngestMetrics, IngestResult, MessageCallback
from .lockfile import IngestLock, LockError, lock_path
from .logging import configure_logging
from .maildir import MaildirError, MaildirMailSource, read_message, to_message
from .recipients import envelope_recipients, resolve
from .runtime import WatchRuntime
from .store import DryRunEditions, EditionStore, IngestLog, StoreError, ingest_log_path
from .types import Mailbox, Message
from .watcher import MailboxWatcher

app = typer.Typer(help="Verity fact-check reply ingestion.")
LOGGER = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None
    dry_run: bool = False


@app.callback()
def _verity(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to Verity config (env VERITY_CONFIG or ~/.config/verity/config.yaml).",
        ),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Log what would happen without saving editions or deleting mail.",
        ),
    ] = False,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved, dry_run=dry_run)


@app.command()
def ingest(
    ctx: typer.Context,
    mailbox: Annotated[
        list[str] | None,
        typer.Option(
            "-m",
            "--mailbox",
            help="Mailbox to process (repeatable; omit to process all mailboxes).",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Print the outcome of every message."),
    ] = False,
) -> None:
    """Run one ingestion pass over the configured mailboxes."""

    state = _state(ctx)
    config, store = _load_environment(state)
    targets = _select_mailboxes(config, mailbox)

    def _echo_result(message: Message, result: IngestResult) -> None:
        label = message.message_id or message.source_key or "<message>"
        detail = result.edition_id or "-"
        if result.reason:
            detail = f"{detail} ({result.reason})"
        typer.echo(f"  {result.outcome:<10} {label} {detail}")

    try:
        with IngestLock(lock_path(config.root_dir)):
            for target in targets:
                metrics = _run_mailbox(
                    config,
                    store,
                    target,
                    dry_run=state.dry_run,
                    on_each=_echo_result if verbose else None,
                )
                typer.echo(_format_metrics(target.name, metrics))
    except LockError as exc:
        _failure(str(exc))
    except (StoreError, MaildirError) as exc:
        _failure(f"Ingestion failed: {exc}")


@app.command()
def watch(ctx: typer.Context) -> None:
    """Process mail as it arrives, with a periodic full pass as fallback."""

    state = _state(ctx)
    config, store = _load_environment(state)

    def _run_pass(names: list[str] | None) -> None:
        targets = _select_mailboxes(config, names)
        totals = IngestMetrics()
        for target in targets:
            totals.add(_run_mailbox(config, store, target, dry_run=state.dry_run))
        if totals.processed:
            LOGGER.info(
                "Watch pass handled %s message(s) across %s mailbox(es)",
                totals.processed,
                len(targets),
            )

    runtime = WatchRuntime(
        _run_pass,
        MailboxWatcher(config.mailboxes),
        interval_seconds=config.watch.interval_seconds,
        debounce_seconds=config.watch.debounce_seconds,
    )
    try:
        with IngestLock(lock_path(config.root_dir)):
            LOGGER.info("Watching %s mailbox(es)", len(config.mailboxes))
            runtime.run()
    except LockError as exc:
        _failure(str(exc))


@app.command()
def check(
    ctx: typer.Context,
    message: Annotated[Path, typer.Argument(..., help="Path to an RFC822 message file.")],
) -> None:
    """Show how a single message would be handled, without changing anything."""

    state = _state(ctx)
    config, store = _load_environment(state)
    message_path = message.expanduser()
    try:
        parsed = read_message(message_path)
    except MaildirError as exc:
        _failure(str(exc))

    envelope = {header for mailbox in config.mailboxes for header in mailbox.envelope_headers}
    candidate = to_message(
        parsed,
        envelope_headers=sorted(envelope),
        source_key=str(message_path),
    )
    typer.echo(f"Message: {message_path}")
    typer.echo(f"Message-ID: {candidate.message_id or 'n/a'}")
    typer.echo(f"Subject: {candidate.subject or 'n/a'}")
    recipients = envelope_recipients(candidate)
    typer.echo(f"Recipients: {', '.join(recipients) if recipients else 'none'}")

    edition = resolve(candidate, store)
    if edition is None:
        typer.echo("Edition: none (message would be kept)")
        return
    typer.echo(f"Edition: {edition.edition_id} ({edition.state.value})")
    rules = build_rules(config.extra_rules)
    verdict = classify(candidate.headers, rules)
    if verdict.ignore:
        typer.echo(f"Decision: ignore automatic reply ({verdict.reason})")
        if return_path_only(candidate.headers, rules):
            typer.secho(
                "Warning: only Return-Path marks this message as automatic. If your delivery "
                "agent adds Return-Path to all mail, every reply in this mailbox is discarded.",
                fg=typer.colors.YELLOW,
                err=True,
            )
    else:
        typer.echo("Decision: record fact check and set state to fact_check_received")


@app.command()
def status(ctx: typer.Context) -> None:
    """Display configuration, waiting mail and edition states."""

    state = _state(ctx)
    config, store = _load_environment(state)

    typer.echo("→ Verity Status")
    typer.echo(f"Version: {__version__}")
    typer.echo(f"Config path: {resolve_config_path(state.config_path)}")
    typer.echo(f"Root dir: {config.root_dir}")
    typer.echo("")
    typer.echo("Mailboxes:")
    for mailbox in config.mailboxes:
        waiting = MaildirMailSource(mailbox).count() if mailbox.path.expanduser().is_dir() else 0
        typer.echo(f"  - {mailbox.name}: {mailbox.path} ({waiting} waiting)")
    typer.echo("")
    editions = store.all()
    typer.echo(f"Editions: {len(editions)}")
    for edition in editions:
        typer.echo(
            f"  - {edition.edition_id}: {edition.state.value} "
            f"actions={len(edition.actions)} <{edition.fact_check_email_address}>"
        )


def _run_mailbox(
    config: Config,
    store: EditionStore,
    mailbox: Mailbox,
    *,
    dry_run: bool,
    on_each: MessageCallback | None = None,
) -> IngestMetrics:
    ingest_log = IngestLog(ingest_log_path(config.root_dir)) if config.ingest_log else None
    ingester = FactCheckIngester(
        DryRunEditions(store) if dry_run else store,
        rules=build_rules(config.extra_rules),
        ingest_log=None if dry_run else ingest_log,
        mailbox=mailbox.name,
    )
    store.refresh()
    return ingester.process(MaildirMailSource(mailbox, dry_run=dry_run), on_each=on_each)


def _format_metrics(name: str, metrics: IngestMetrics) -> str:
    return (
        f"{name}: processed {metrics.processed} message(s), "
        f"recorded {metrics.recorded}, ignored {metrics.auto_replies} automatic repl(ies), "
        f"kept {metrics.unmatched} unmatched, deleted {metrics.deleted}."
    )


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _load_environment(state: CLIState) -> tuple[Config, EditionStore]:
    config = _load_config(state.config_path)
    try:
        configure_logging(config.logging, config.root_dir)
    except ConfigError as exc:
        _config_failure(exc)
    return config, EditionStore(config.root_dir)


def _load_config(path: Path | None) -> Config:
    try:
        return load_config(path)
    except ConfigError as exc:
        _config_failure(exc)


def _select_mailboxes(config: Config, requested: Iterable[str] | None) -> list[Mailbox]:
    if not requested:
        return list(config.mailboxes)
    known = {mailbox.name: mailbox for mailbox in config.mailboxes}
    selected: list[Mailbox] = []
    for name in requested:
        try:
            selected.append(known[name])
        except KeyError:
            _failure(f"Unknown mailbox '{name}'.")
    return selected


def _config_failure(exc: ConfigError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(2) from exc


def _failure(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main"]
