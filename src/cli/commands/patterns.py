"""Pattern learning CLI commands."""

import json
import sys
from datetime import datetime, timedelta

import click
from rich.console import Console
from rich.table import Table

from cli.utils import get_components
from learning import LearningError, OutcomeEvent, ValidationError
from shared_types import Outcome, PatternType

console = Console()

STRENGTH_STYLE = {
    "strong": "[green]strong[/]",
    "moderate": "[yellow]moderate[/]",
    "weak": "[red]weak[/]",
}


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


@click.group()
def patterns():
    """Behavioral patterns — record outcomes, inspect aggregates and insights."""
    pass


@patterns.command("record")
@click.argument("user_id")
@click.argument("activity_id")
@click.option(
    "-o", "--outcome", required=True, type=click.Choice([o.value for o in Outcome])
)
@click.option("--xp", type=float, default=0, help="XP awarded")
@click.option("--source", help="Comma-separated activity source labels")
@click.option("--tags", help="Comma-separated domain tags")
@click.option("--feedback", help="Free-text feedback")
@click.option("--at", "timestamp", help="ISO timestamp (defaults to now)")
def record(user_id, activity_id, outcome, xp, source, tags, feedback, timestamp):
    """Record an activity outcome."""
    c = get_components()
    try:
        event = OutcomeEvent.from_dict(
            {
                "user_id": user_id,
                "activity_id": activity_id,
                "outcome": outcome,
                "timestamp": timestamp or datetime.now().isoformat(),
                "xp_awarded": xp,
                "feedback_text": feedback,
                "source_labels": _split(source),
                "domain_tags": _split(tags),
            }
        )
        updated = c["updater"].record_outcome(event)
    except ValidationError as e:
        console.print(f"[red]Invalid event:[/] {e}")
        sys.exit(1)
    except LearningError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    console.print(f"[green]Recorded[/] {outcome} — updated {len(updated)} patterns")


@patterns.command("list")
@click.argument("user_id")
@click.option("-t", "--type", "pattern_type", type=click.Choice([p.value for p in PatternType]))
def list_patterns(user_id, pattern_type):
    """List pattern aggregates for a user."""
    c = get_components()
    rows = c["store"].list_for_user(user_id, PatternType(pattern_type) if pattern_type else None)

    if not rows:
        console.print("[yellow]No patterns yet. Record outcomes to start learning.[/]")
        return

    table = Table(show_header=True, title=f"Patterns - {user_id}")
    table.add_column("Type", style="dim")
    table.add_column("Key")
    table.add_column("Seen", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Avg XP", justify="right")
    table.add_column("Sentiment", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Strength")
    table.add_column("Avoid")

    for a in rows:
        table.add_row(
            str(a.pattern_type),
            a.pattern_key,
            str(a.total_occurrences),
            f"{a.success_rate:.0%}",
            f"{a.average_xp:.1f}",
            f"{a.average_sentiment:+.2f}",
            f"{a.confidence:.1f}",
            STRENGTH_STYLE.get(str(a.strength), str(a.strength)),
            "yes" if a.should_avoid else "",
        )

    console.print(table)


@patterns.command("insights")
@click.argument("user_id")
def insights(user_id):
    """Show synthesized insights."""
    c = get_components()
    results = c["insight_cache"].get_or_synthesize(user_id)

    if not results:
        console.print("[yellow]Not enough data for insights yet.[/]")
        return

    for insight in results:
        console.print(
            f"[bold]{insight.title}[/] [dim]({insight.priority}, "
            f"confidence {insight.confidence_score:.2f}, {insight.evidence_count} observations)[/]"
        )
        console.print(f"  {insight.description}")


@patterns.command("context")
@click.argument("user_id")
@click.option("-d", "--days", default=None, type=int, help="History window in days")
def context(user_id, days):
    """Dump the learning context as JSON."""
    c = get_components()
    window = days or c["config"].get("learning", {}).get("history_window_days", 30)
    ctx = c["assembler"].assemble_context(user_id, history_window_days=window)
    click.echo(json.dumps(ctx.to_dict(), indent=2, default=str))


@patterns.command("avoid")
@click.argument("user_id")
@click.argument("pattern_type", type=click.Choice([p.value for p in PatternType]))
@click.argument("pattern_key")
@click.option("--on/--off", "should_avoid", default=True, help="Mark or unmark")
@click.option("--reason", help="Why this pattern should be avoided")
def avoid(user_id, pattern_type, pattern_key, should_avoid, reason):
    """Curate a pattern: mark it to be avoided (or clear the mark)."""
    c = get_components()
    updated = c["store"].set_curation(
        user_id,
        PatternType(pattern_type),
        pattern_key,
        should_avoid=should_avoid,
        recommendation=reason,
    )
    if updated is None:
        console.print(f"[red]Pattern not found:[/] {pattern_type}/{pattern_key}")
        sys.exit(1)
    c["insight_cache"].invalidate(user_id)

    state = "avoided" if updated.should_avoid else "allowed"
    console.print(f"[green]Updated[/] {pattern_type}/{pattern_key} — {state}")


@patterns.command("summary")
@click.argument("user_id")
def summary(user_id):
    """Show pattern counters for a user."""
    c = get_components()
    s = c["assembler"].pattern_summary(user_id)
    console.print(f"[bold]Patterns:[/] {s['total_patterns']}  |  Confident: {s['strong_patterns']}")
    console.print(
        f"[bold]Recent events:[/] {s['recent_events']}  |  Insights: {s['active_insights']}"
    )


@patterns.command("events")
@click.argument("user_id")
@click.option("-n", "--limit", default=20, help="Max events")
@click.option("-d", "--days", default=None, type=int, help="Lookback days")
def events(user_id, limit, days):
    """Show recently recorded outcome events."""
    c = get_components()
    records = c["event_log"].list_recent(user_id, limit=limit, days=days)

    if not records:
        console.print("[yellow]No events recorded.[/]")
        return

    table = Table(show_header=True, title=f"Recent events - {user_id}")
    table.add_column("When", style="dim")
    table.add_column("Activity")
    table.add_column("Outcome")
    table.add_column("XP", justify="right")
    table.add_column("Mood")
    table.add_column("Slot")

    for r in records:
        table.add_row(
            r.timestamp.strftime("%Y-%m-%d %H:%M"),
            r.activity_id[:30],
            str(r.outcome),
            f"{r.xp_awarded:g}",
            r.mood or "",
            f"{r.day_of_week} {r.time_of_day}",
        )

    console.print(table)


@patterns.command("prune")
@click.option("-d", "--days", default=None, type=int, help="Keep this many days of events")
def prune(days):
    """Delete outcome events older than the retention window."""
    c = get_components()
    keep = days or c["config"].get("learning", {}).get("event_retention_days", 365)
    removed = c["event_log"].prune_before(datetime.now() - timedelta(days=keep))
    console.print(f"Removed {removed} events older than {keep} days")
