"""CLI for the vitalscore sleep and recovery scoring pipeline."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from pathlib import Path

import click

from vitalscore.config import ScoringConfig

DATE_TYPE = click.DateTime(formats=["%Y-%m-%d"])


def _day(value: datetime | None) -> date | None:
    return value.date() if value is not None else None


def _orchestrator(ctx: click.Context, export: str):
    from vitalscore.analytics.pipeline import ScoreOrchestrator
    from vitalscore.replay import ReplayProvider
    from vitalscore.storage import StateStore

    config: ScoringConfig = ctx.obj["config"]
    provider = ReplayProvider.from_jsonl(export)
    return ScoreOrchestrator(provider, StateStore(config.state_dir), config)


def _run(coro):
    from vitalscore.errors import ScoreError

    try:
        return asyncio.run(coro)
    except ScoreError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("--state-dir", type=click.Path(file_okay=False), default=None,
              help="Directory for persisted baselines and scores.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, state_dir: str | None, verbose: bool) -> None:
    """vitalscore: sleep and recovery scores from exported health data."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = ScoringConfig.from_env()
    if state_dir is not None:
        config.state_dir = Path(state_dir)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command()
@click.argument("export", type=click.Path(exists=True, dir_okay=False))
@click.option("--date", "-d", "day", type=DATE_TYPE, default=None, help="Day to score (YYYY-MM-DD).")
@click.option("--json", "as_json", is_flag=True, help="Print the full bundle as JSON.")
@click.pass_context
def score(ctx: click.Context, export: str, day: datetime | None, as_json: bool) -> None:
    """Compute the full score bundle for a day."""
    orchestrator = _orchestrator(ctx, export)

    async def _score():
        await orchestrator.prepare()
        return await orchestrator.load_data(_day(day))

    bundle = _run(_score())
    if as_json:
        click.echo(bundle.to_json())
        return

    click.echo(f"{bundle.day}  [{bundle.status.value}]")
    if bundle.message:
        click.echo(f"  {bundle.message}")
    if bundle.recovery is not None:
        click.echo(f"\nRecovery {bundle.recovery_score}/100")
        for c in bundle.recovery_components:
            click.echo(f"  {c.name:<18} {c.score:5.1f}/{c.max_score:<4.0f} {c.description}")
        click.echo(f"  {bundle.directive}")
    if bundle.sleep is not None:
        click.echo(f"\nSleep {bundle.sleep_score}/100")
        for c in bundle.sleep_components:
            click.echo(f"  {c.name:<18} {c.score:5.0f}/{c.max_score:<4.0f} {c.description}")
    if bundle.trends:
        click.echo("\nTrends (7 days)")
        for t in bundle.trends.values():
            change = f"{t.percent_change:+.1f}%" if t.percent_change is not None else "n/a"
            click.echo(f"  {t.metric:<12} avg {t.average} {t.unit}  change {change}")


@main.command()
@click.argument("export", type=click.Path(exists=True, dir_okay=False))
@click.option("--date", "-d", "day", type=DATE_TYPE, default=None, help="Wake date (YYYY-MM-DD).")
@click.pass_context
def sleep(ctx: click.Context, export: str, day: datetime | None) -> None:
    """Compute the Sleep Score for one night."""
    orchestrator = _orchestrator(ctx, export)
    target = _day(day) or date.today()

    async def _sleep():
        orchestrator.baselines.load_baselines()
        return await orchestrator.sleep.calculate_sleep_score(target)

    result = _run(_sleep())
    click.echo(f"Sleep {result.final_score}/100 for {result.day}")
    for c in result.components:
        click.echo(f"  {c.name:<12} {c.points:>2}/{c.max_points:<2} {c.description}")
    for finding in result.key_findings:
        click.echo(f"  - {finding}")
    click.echo(result.directive)


@main.command()
@click.argument("export", type=click.Path(exists=True, dir_okay=False))
@click.option("--date", "-d", "day", type=DATE_TYPE, default=None, help="Day to score (YYYY-MM-DD).")
@click.pass_context
def recovery(ctx: click.Context, export: str, day: datetime | None) -> None:
    """Compute the Recovery Score for one day."""
    orchestrator = _orchestrator(ctx, export)
    target = _day(day) or date.today()

    async def _recovery():
        orchestrator.baselines.load_baselines()
        return await orchestrator.recovery.calculate_recovery_score(target)

    result = _run(_recovery())
    click.echo(f"Recovery {result.final_score}/100 for {result.day}")
    for c in result.components:
        click.echo(f"  {c.name:<18} {c.score:5.1f} x {c.weight:.2f}  {c.description}")
    click.echo(result.directive)


@main.command()
@click.argument("export", type=click.Path(exists=True, dir_okay=False))
@click.option("--force", is_flag=True, help="Discard stored baselines and recompute all windows.")
@click.option("--date", "-d", "day", type=DATE_TYPE, default=None, help="Reference day (YYYY-MM-DD).")
@click.pass_context
def baselines(ctx: click.Context, export: str, force: bool, day: datetime | None) -> None:
    """Update (or rebuild) the persisted personal baselines."""
    orchestrator = _orchestrator(ctx, export)
    engine = orchestrator.baselines

    async def _update():
        if force:
            return await engine.force_recalculate_baselines(_day(day))
        return await engine.update_baselines(_day(day))

    metrics = _run(_update())
    for name, value in metrics.to_dict().items():
        click.echo(f"  {name:<20} {value if value is not None else '-'}")
    if engine.calibrating:
        click.echo("Still calibrating: not enough history for every baseline.")


@main.command()
@click.argument("export", type=click.Path(exists=True, dir_okay=False))
@click.argument("new_samples", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def sync(ctx: click.Context, export: str, new_samples: str) -> None:
    """Push NEW_SAMPLES into EXPORT and recompute affected recovery scores."""
    from vitalscore.provider import SampleArrival
    from vitalscore.reactive import ReactiveRecalculationManager
    from vitalscore.replay import read_records

    orchestrator = _orchestrator(ctx, export)
    manager = ReactiveRecalculationManager(orchestrator)
    manager.add_listener(
        lambda u: click.echo(f"  {u.day}: {u.previous if u.previous is not None else '-'} -> {u.score}")
    )

    async def _sync():
        await orchestrator.prepare()
        added = orchestrator.provider.load(new_samples)
        kinds = {kind for kind, _ in read_records(new_samples) if kind is not None}
        now = orchestrator.clock()
        await asyncio.gather(
            *(
                manager.handle_arrival(SampleArrival(kind, now))
                for kind in kinds
                if kind in orchestrator.config.critical_metrics
            )
        )
        return added

    added = _run(_sync())
    status = manager.status()
    click.echo(f"Synced {added} records; last update {status.last_update or 'never'}.")
    if not status.complete_today:
        click.echo("Today's recovery score is still missing HRV or resting HR.")


if __name__ == "__main__":
    main()
