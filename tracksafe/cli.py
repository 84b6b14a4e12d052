"""tracksafe CLI -- operate the moderation pipeline from a shell or cron."""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tracksafe import __version__

console = Console()


def _service(ctx: click.Context):
    """Build the service lazily so ``--help`` never touches the data dir."""
    from tracksafe.service import ModerationService

    obj = ctx.ensure_object(dict)
    if "service" not in obj:
        obj["service"] = ModerationService.from_config(obj["config"])
    return obj["service"]


def _done(ctx: click.Context) -> None:
    service = ctx.obj.get("service")
    if service is not None:
        service.notifier.flush(timeout=30)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.pass_context
def main(ctx: click.Context, config_path: str | None):
    """tracksafe -- asynchronous moderation for uploaded audio.

    Uploads are validated at intake, checked in batches by `tracksafe run`,
    and resolved by moderators through the review queue.
    """
    from tracksafe.config import ConfigError, load_config
    from tracksafe.logging_config import setup_logging

    try:
        config = load_config(config_path)
    except ConfigError as exc:
        console.print(f"[red]Invalid configuration:[/] {exc}")
        sys.exit(2)
    setup_logging(config.log_level, config.log_json)
    ctx.ensure_object(dict)["config"] = config
    ctx.call_on_close(lambda: _done(ctx))


# ── Scheduler ────────────────────────────────────────────────────────


@main.command()
@click.pass_context
def run(ctx: click.Context):
    """Process one batch of pending uploads (point your cron trigger here)."""
    summary = _service(ctx).scheduler.run_once()

    table = Table(title=f"Batch {summary.run_id}")
    table.add_column("Processed", justify="right")
    table.add_column("Clean", justify="right", style="green")
    table.add_column("Flagged", justify="right", style="yellow")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Recovered", justify="right", style="dim")
    table.add_column("Seconds", justify="right")
    table.add_row(
        str(summary.processed),
        str(summary.clean),
        str(summary.flagged),
        str(summary.errors),
        str(summary.recovered),
        f"{summary.duration_seconds:.2f}",
    )
    console.print(table)


# ── Intake ───────────────────────────────────────────────────────────


@main.command()
@click.argument("owner_id")
@click.argument("audio_ref")
@click.option("--format", "audio_format", required=True, help="Extension or MIME type")
@click.option("--duration", type=float, required=True, help="Duration in seconds")
@click.option("--bitrate", type=int, required=True, help="Bitrate in kbps")
@click.option("--size", type=int, default=None, help="Size in bytes (read from --file if omitted)")
@click.option("--hash", "content_hash", default=None, help="sha256 of the raw bytes")
@click.option("--file", "file_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Read bytes from this file to compute size and hash")
@click.option("--category", type=click.Choice(["music", "spoken_word"]), default="music")
@click.option("--title", default="")
@click.pass_context
def intake(ctx, owner_id, audio_ref, audio_format, duration, bitrate, size, content_hash,
           file_path, category, title):
    """Validate an upload and queue it for moderation."""
    from tracksafe.moderation.errors import IntakeRejected
    from tracksafe.moderation.models import AudioDescriptor

    raw = None
    if file_path:
        with open(file_path, "rb") as f:
            raw = f.read()
    descriptor = AudioDescriptor(
        audio_ref=audio_ref,
        audio_format=audio_format,
        duration_seconds=duration,
        bitrate_kbps=bitrate,
        content_category=category,
        size_bytes=size,
        content_hash=content_hash,
        raw_bytes=raw,
        title=title,
    )
    try:
        item = _service(ctx).intake.submit(owner_id, descriptor)
    except IntakeRejected as exc:
        console.print(f"[red]Rejected[/] ({exc.code}): {exc.message}")
        sys.exit(1)
    console.print(f"[green]Accepted[/] {item.id} -> {item.status.value}")


# ── Review ───────────────────────────────────────────────────────────


@main.command()
@click.option("--appeals", is_flag=True, help="Show appealed items instead of flagged ones")
@click.pass_context
def queue(ctx: click.Context, appeals: bool):
    """List items waiting for a moderator."""
    review = _service(ctx).review
    entries = review.list_appeals() if appeals else review.list_flagged()
    if not entries:
        console.print("[green]Nothing to review.[/]")
        return

    table = Table(title=f"{'Appeals' if appeals else 'Flagged'} ({len(entries)})")
    table.add_column("Item", style="cyan")
    table.add_column("Owner")
    table.add_column("Confidence", justify="right")
    table.add_column("Reasons", style="yellow")
    table.add_column("Transcript" if not appeals else "Appeal")
    for entry in entries:
        item = entry.item
        text = item.appeal_text if appeals else item.transcript
        table.add_row(
            item.id,
            str(entry.owner.get("name", item.owner_id)),
            f"{item.confidence:.2f}" if item.confidence is not None else "-",
            ", ".join(item.flag_reasons),
            (text or "")[:60],
        )
    console.print(table)


@main.command()
@click.argument("item_id")
@click.option("--admin", "admin_id", required=True, help="Acting admin id")
@click.option("--note", default="", help="Optional note for the owner")
@click.pass_context
def approve(ctx: click.Context, item_id: str, admin_id: str, note: str):
    """Approve a flagged or appealed item."""
    from tracksafe.moderation.errors import ItemNotFound, TransitionConflict

    try:
        item = _service(ctx).review.approve(item_id, admin_id, note)
    except (ItemNotFound, TransitionConflict) as exc:
        console.print(f"[red]{exc}[/]")
        sys.exit(1)
    console.print(f"[green]Approved[/] {item.id}")


@main.command()
@click.argument("item_id")
@click.option("--admin", "admin_id", required=True, help="Acting admin id")
@click.option("--reason", required=True, help="Reason shown to the owner")
@click.pass_context
def reject(ctx: click.Context, item_id: str, admin_id: str, reason: str):
    """Reject a flagged or appealed item."""
    from tracksafe.moderation.errors import ItemNotFound, TransitionConflict

    try:
        item = _service(ctx).review.reject(item_id, admin_id, reason)
    except (ItemNotFound, TransitionConflict, ValueError) as exc:
        console.print(f"[red]{exc}[/]")
        sys.exit(1)
    console.print(f"[yellow]Rejected[/] {item.id}")


@main.command()
@click.argument("item_id")
@click.option("--owner", "owner_id", required=True, help="Id of the appealing owner")
@click.option("--text", required=True, help="Appeal text (20-500 characters)")
@click.pass_context
def appeal(ctx: click.Context, item_id: str, owner_id: str, text: str):
    """Submit the owner's single appeal against a rejection."""
    from tracksafe.moderation.errors import AppealError

    try:
        _service(ctx).appeals.submit(item_id, owner_id, text)
    except AppealError as exc:
        console.print(f"[red]Appeal refused[/] ({exc.code}): {exc}")
        sys.exit(1)
    console.print("[green]Appeal submitted.[/]")


# ── Inspection ───────────────────────────────────────────────────────


@main.command()
@click.argument("item_id")
@click.pass_context
def show(ctx: click.Context, item_id: str):
    """Show one item."""
    item = _service(ctx).store.get(item_id)
    if item is None:
        console.print(f"[red]Item {item_id} not found.[/]")
        sys.exit(1)

    visibility = "public" if item.is_public else "owner only"
    lines = [
        f"[bold]Status:[/] {item.status.value} ({item.badge_label}, {visibility})",
        f"[bold]Owner:[/] {item.owner_id}",
        f"[bold]Audio:[/] {item.audio_ref} ({item.audio_format}, {item.duration_seconds:g}s, "
        f"{item.bitrate_kbps} kbps)",
        f"[bold]Confidence:[/] {item.confidence if item.confidence is not None else '-'}",
        f"[bold]Flag reasons:[/] {', '.join(item.flag_reasons) or '-'}",
    ]
    if item.reviewed_by:
        lines.append(f"[bold]Reviewed:[/] {item.reviewed_by} at {item.reviewed_at}: {item.review_note}")
    if item.appeal_text:
        lines.append(f"[bold]Appeal:[/] {item.appeal_text}")
    if item.transcript:
        lines.append(f"[bold]Transcript:[/] {item.transcript[:400]}")
    console.print(Panel("\n".join(lines), title=item.title or item.id))


@main.command()
@click.argument("item_id")
@click.pass_context
def audit(ctx: click.Context, item_id: str):
    """Show the transition history of an item."""
    entries = _service(ctx).audit.entries_for_item(item_id)
    if not entries:
        console.print("[yellow]No audit entries.[/]")
        return

    table = Table(title=f"Audit trail for {item_id}")
    table.add_column("When", style="dim")
    table.add_column("From")
    table.add_column("To", style="cyan")
    table.add_column("Actor")
    table.add_column("Reasons")
    for e in entries:
        table.add_row(e.timestamp, e.prior_status or "-", e.new_status, e.actor,
                      ", ".join(e.reason_snapshot))
    console.print(table)


@main.command()
@click.pass_context
def stats(ctx: click.Context):
    """Count items per moderation status."""
    counts = _service(ctx).review.stats()
    table = Table(title="Moderation status")
    table.add_column("Status", style="cyan")
    table.add_column("Items", justify="right")
    for status, count in counts.items():
        table.add_row(status, str(count))
    console.print(table)


if __name__ == "__main__":
    main()
