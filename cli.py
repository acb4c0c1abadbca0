#!/usr/bin/env python3
"""Command-line interface for the debate engine.

Usage examples:
    python cli.py create --topic "AI safety" --pro openai:gpt-4o:rational --con anthropic:claude-sonnet-4-5:aggressive --judge openai:gpt-4o
    python cli.py start --debate-id 1
    python cli.py debate --topic "UBI policy" --max-rounds 4 --audience openai:gpt-4o-mini:pragmatic
    python cli.py report --debate-id 1
    python cli.py list-debates
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click

from data.database import DebateDatabase
from data.models import AgentRecord, AgentRole, DebateRecord, DebateStatus, Stance
from evaluation.judgment import judge_totals, load_report
from evaluation.validators import AUDIENCE_TYPES, DEBATER_STYLES, DebateValidator
from evaluation.voting import calculate_weighted_result, generate_voting_analysis
from orchestration.errors import DebateError
from orchestration.events import DebateEvent, EventBroadcaster, EventType
from orchestration.registry import SessionRegistry
from orchestration.settings import DebateSettings, load_settings


# ---------------------------------------------------------------------------
# Live event display
# ---------------------------------------------------------------------------

# Labels and ANSI colour codes for terminal output
_SPEAKER_STYLES: dict[str, tuple[str, str]] = {
    # stance / role -> (label, ANSI colour code)
    "pro":      ("PRO",      "\033[1;34m"),   # bold blue
    "con":      ("CON",      "\033[1;31m"),   # bold red
    "judge":    ("JUDGE",    "\033[1;32m"),   # bold green
    "audience": ("AUDIENCE", "\033[1;33m"),   # bold yellow
}
_RESET = "\033[0m"
_DIM = "\033[2m"
_BOLD = "\033[1m"


def _print_event(event: DebateEvent) -> None:
    """Pretty-print one debate event to the terminal."""
    data = event.data
    kind = event.type

    if kind is EventType.DEBATE_START:
        click.echo(f"\n{_BOLD}{'=' * 60}")
        click.echo(f"  DEBATE #{data['debate_id']}: {data['topic']}")
        click.echo(f"  {data['max_rounds']} rounds")
        click.echo(f"{'=' * 60}{_RESET}")
    elif kind is EventType.ROUND_START:
        click.echo(f"\n{_BOLD}--- Round {data['sequence']} ({data['phase']}) ---{_RESET}")
    elif kind is EventType.AGENT_START:
        key = data.get("stance") if data["role"] == AgentRole.DEBATER.value else data["role"]
        label, colour = _SPEAKER_STYLES.get(key or "", (data["role"].upper(), _BOLD))
        if data["role"] == AgentRole.AUDIENCE.value and data.get("stance"):
            label = f"{label} for {data['stance'].upper()}"
        click.echo(f"\n{colour}[{label}] {data['agent_id']}{_RESET}")
        click.echo("  ", nl=False)
    elif kind is EventType.TOKEN:
        click.echo(data["token"].replace("\n", "\n  "), nl=False)
    elif kind is EventType.AGENT_END:
        click.echo()
    elif kind is EventType.SCORE_UPDATE:
        scores = data["scores"]
        label, colour = _SPEAKER_STYLES["judge"]
        click.echo(f"{colour}  [{label}] PRO {scores['pro']:g}  •  CON {scores['con']:g}{_RESET}")
    elif kind is EventType.AUDIENCE_REQUESTS:
        click.echo(f"{_DIM}  {data['requests_count']} audience request(s){_RESET}")
    elif kind is EventType.AUDIENCE_APPROVAL:
        verdict = "approved" if data["approved"] else "rejected"
        comment = f": {data['comment']}" if data.get("comment") else ""
        click.echo(f"{_DIM}  request from {data['agent_id']} {verdict}{comment}{_RESET}")
    elif kind is EventType.DEBATE_END:
        final = data["final_scores"]
        click.echo(f"\n{_BOLD}{'=' * 60}")
        click.echo(f"  WINNER: {data['winner'].upper()}")
        click.echo(f"  Final scores : PRO {final['pro']:.1f}  •  CON {final['con']:.1f}")
        judge = data["judge_scores"]
        click.echo(f"  Judge totals : PRO {judge['pro']:.1f}  •  CON {judge['con']:.1f}")
        click.echo(f"{'=' * 60}{_RESET}")
    elif kind is EventType.DEBATE_STOPPED:
        click.echo(f"\n{_BOLD}Debate #{data['debate_id']} stopped.{_RESET}")
    elif kind is EventType.ERROR:
        click.echo(f"\n\033[1;31mError: {data['error']}{_RESET}", err=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_agent_spec(value: str, option: str) -> tuple[str, str, str | None]:
    """Split ``provider:model[:tag]`` into its parts."""
    parts = value.split(":", 2)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise click.BadParameter(
            f"expected provider:model[:tag], got {value!r}", param_hint=option
        )
    tag = parts[2] if len(parts) == 3 and parts[2] else None
    return parts[0], parts[1], tag


def _roster_records(
    debate_id: int,
    pro: str,
    con: str,
    judge: str,
    audience: tuple[str, ...],
) -> list[AgentRecord]:
    records: list[AgentRecord] = []
    for stance, spec, option in ((Stance.PRO, pro, "--pro"), (Stance.CON, con, "--con")):
        provider, model, style = _parse_agent_spec(spec, option)
        if style is not None and style not in DEBATER_STYLES:
            raise click.BadParameter(
                f"unknown style {style!r}. Choose from: {list(DEBATER_STYLES)}",
                param_hint=option,
            )
        records.append(
            AgentRecord(
                id=f"debate{debate_id}-{stance.value}",
                debate_id=debate_id,
                role=AgentRole.DEBATER,
                stance=stance,
                model_provider=provider,
                model_name=model,
                style_tag=style or "rational",
            )
        )

    provider, model, _ = _parse_agent_spec(judge, "--judge")
    records.append(
        AgentRecord(
            id=f"debate{debate_id}-judge",
            debate_id=debate_id,
            role=AgentRole.JUDGE,
            model_provider=provider,
            model_name=model,
        )
    )

    for n, spec in enumerate(audience, start=1):
        provider, model, audience_type = _parse_agent_spec(spec, "--audience")
        if audience_type is not None and audience_type not in AUDIENCE_TYPES:
            raise click.BadParameter(
                f"unknown audience type {audience_type!r}. Choose from: {list(AUDIENCE_TYPES)}",
                param_hint="--audience",
            )
        records.append(
            AgentRecord(
                id=f"debate{debate_id}-audience{n}",
                debate_id=debate_id,
                role=AgentRole.AUDIENCE,
                model_provider=provider,
                model_name=model,
                audience_type=audience_type or "rational",
            )
        )
    return records


async def _create_debate(db: DebateDatabase, options: dict[str, Any]) -> int:
    """Validate and persist a debate together with its roster."""
    check = DebateValidator().validate_debate_config(
        options["topic"], options["max_rounds"], options["judge_weight"]
    )
    if not check:
        raise click.UsageError(check.describe())

    # parse the roster up front so a bad spec never leaves a half-built debate
    _roster_records(0, options["pro"], options["con"], options["judge"], options["audience"])

    debate_id = await db.create_debate(
        DebateRecord(
            topic=options["topic"],
            pro_definition=options["pro_definition"],
            con_definition=options["con_definition"],
            max_rounds=options["max_rounds"],
            judge_weight=options["judge_weight"],
        )
    )
    for record in _roster_records(
        debate_id, options["pro"], options["con"], options["judge"], options["audience"]
    ):
        await db.save_agent(record)
    return debate_id


async def _run_debate(db: DebateDatabase, settings: DebateSettings, debate_id: int) -> DebateStatus:
    """Start *debate_id*, print its events live and wait for it to finish."""
    broadcaster = EventBroadcaster()
    registry = SessionRegistry(db, broadcaster, settings)
    unsubscribe = broadcaster.subscribe(debate_id, _print_event)
    try:
        await registry.start(debate_id)
        try:
            await registry.join(debate_id)
        except asyncio.CancelledError:
            await registry.stop(debate_id)
            raise
    finally:
        unsubscribe()
        await registry.shutdown()

    debate = await db.get_debate(debate_id)
    assert debate is not None
    return debate.status


def _agent_options(func: Any) -> Any:
    """Shared options describing a debate and its roster."""
    options = [
        click.option("--topic", required=True, help="Debate motion"),
        click.option("--pro-definition", default=None, help="What the PRO side argues"),
        click.option("--con-definition", default=None, help="What the CON side argues"),
        click.option("--max-rounds", default=10, type=int, show_default=True, help="Rounds (1-20)"),
        click.option(
            "--judge-weight", default=0.5, type=float, show_default=True,
            help="Weight of judge scores (0-1)",
        ),
        click.option("--pro", default="openai:gpt-4o:rational", show_default=True,
                     help="PRO debater as provider:model[:style]"),
        click.option("--con", default="openai:gpt-4o:rational", show_default=True,
                     help="CON debater as provider:model[:style]"),
        click.option("--judge", default="openai:gpt-4o", show_default=True,
                     help="Judge as provider:model"),
        click.option("--audience", multiple=True,
                     help="Audience member as provider:model[:type]; repeatable"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", default="config/default.yaml", help="Path to YAML config")
@click.option("--log-level", default="INFO", help="Logging level")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str) -> None:
    """Debate Engine – run judged LLM debates from the command line."""
    _setup_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = load_settings(config)


# ---- create ---------------------------------------------------------------

@cli.command()
@_agent_options
@click.pass_context
def create(ctx: click.Context, **options: Any) -> None:
    """Create a debate and its roster without starting it."""
    settings: DebateSettings = ctx.obj["settings"]

    async def _run() -> int:
        db = DebateDatabase(settings.database_path)
        await db.connect()
        try:
            return await _create_debate(db, options)
        finally:
            await db.close()

    debate_id = asyncio.run(_run())
    click.echo(f"Created debate #{debate_id}: {options['topic']}")


# ---- start ----------------------------------------------------------------

def _start_and_report(
    settings: DebateSettings, resolve_id: Callable[[DebateDatabase], Awaitable[int]]
) -> None:
    async def _run() -> DebateStatus:
        db = DebateDatabase(settings.database_path)
        await db.connect()
        try:
            debate_id = await resolve_id(db)
            return await _run_debate(db, settings, debate_id)
        finally:
            await db.close()

    try:
        status = asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("\nInterrupted; debate stopped.", err=True)
        sys.exit(130)
    except DebateError as exc:
        raise click.ClickException(f"{exc.message} [{exc.code}]") from exc

    if status is not DebateStatus.COMPLETED:
        click.echo(f"Debate finished with status: {status.value}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--debate-id", required=True, type=int, help="Debate ID to run")
@click.pass_context
def start(ctx: click.Context, debate_id: int) -> None:
    """Run a stored debate, printing its events live. Ctrl-C stops it."""
    async def _stored(db: DebateDatabase) -> int:
        return debate_id

    _start_and_report(ctx.obj["settings"], _stored)


# ---- debate ---------------------------------------------------------------

@cli.command()
@_agent_options
@click.pass_context
def debate(ctx: click.Context, **options: Any) -> None:
    """Create a debate and run it straight away."""

    async def _setup(db: DebateDatabase) -> int:
        debate_id = await _create_debate(db, options)
        click.echo(f"Created debate #{debate_id}")
        return debate_id

    _start_and_report(ctx.obj["settings"], _setup)


# ---- report ---------------------------------------------------------------

@cli.command()
@click.option("--debate-id", required=True, type=int, help="Debate ID to report on")
@click.option("--as-json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def report(ctx: click.Context, debate_id: int, as_json: bool) -> None:
    """Show the judgment report and voting analysis of a debate."""
    settings: DebateSettings = ctx.obj["settings"]

    async def _run() -> None:
        db = DebateDatabase(settings.database_path)
        await db.connect()
        try:
            judgment = await load_report(db, debate_id, settings.draw_threshold)
            if judgment is None:
                click.echo(f"Debate #{debate_id} not found.", err=True)
                return
            debate_rec = await db.get_debate(debate_id)
            assert debate_rec is not None
            analysis = await generate_voting_analysis(db, debate_id)
            rows = await db.get_round_scores(debate_id)
            blended = calculate_weighted_result(
                judge_totals(rows),
                analysis.aggregation,
                debate_rec.judge_weight,
                debate_rec.audience_weight,
            )

            if as_json:
                payload = {
                    "judgment": judgment.to_dict(),
                    "voting": analysis.to_dict(),
                    "blended": {
                        "pro": blended.pro,
                        "con": blended.con,
                        "winner": blended.winner.value,
                    },
                }
                click.echo(json.dumps(payload, indent=2, default=str))
                return

            click.echo(f"\n{'=' * 60}")
            click.echo(f"  REPORT – #{debate_id}: {debate_rec.topic}")
            click.echo(f"{'=' * 60}")
            click.echo(f"  Status    : {debate_rec.status.value}")
            click.echo(f"  Winner    : {judgment.verdict.winner.value}")
            click.echo(f"  Summary   : {judgment.summary}")
            if judgment.key_turning_round is not None:
                click.echo(f"  Turning   : round {judgment.key_turning_round}")
            click.echo()

            click.echo("  Rounds:")
            for r in judgment.rounds:
                fouls = len(r.pro_fouls) + len(r.con_fouls)
                foul_note = f"  ({fouls} foul(s))" if fouls else ""
                click.echo(
                    f"    {r.sequence:>3}  PRO {r.pro_score:5.1f}  CON {r.con_score:5.1f}{foul_note}"
                )

            for side, args in judgment.winning_arguments.items():
                if args:
                    click.echo(f"\n  Winning {side.upper()} arguments:")
                    for arg in args:
                        click.echo(f"    - {arg}")

            agg = analysis.aggregation
            click.echo()
            click.echo("  Audience votes:")
            click.echo(f"    {'pro':25s}: {agg.pro_votes} ({agg.pro_percentage:.0%})")
            click.echo(f"    {'con':25s}: {agg.con_votes} ({agg.con_percentage:.0%})")
            click.echo(f"    {'draw':25s}: {agg.draw_votes} ({agg.draw_percentage:.0%})")
            click.echo(f"    {'divergence':25s}: {analysis.divergence.overall_divergence:.3f}")
            click.echo(
                f"    {'blended result':25s}: {blended.winner.value} "
                f"({blended.pro:.1f} : {blended.con:.1f})"
            )

            spots = analysis.blind_spots.to_dict()
            if any(spots.values()):
                click.echo()
                click.echo("  Blind spots:")
                for name, items in spots.items():
                    for item in items:
                        click.echo(f"    {name:25s}: {item}")
        finally:
            await db.close()

    asyncio.run(_run())


# ---- list-debates ---------------------------------------------------------

@cli.command("list-debates")
@click.option("--limit", default=20, type=int, help="Number of debates to list")
@click.pass_context
def list_debates(ctx: click.Context, limit: int) -> None:
    """List recent debates stored in the database."""
    settings: DebateSettings = ctx.obj["settings"]

    async def _run() -> None:
        db = DebateDatabase(settings.database_path)
        await db.connect()

        try:
            debates = await db.list_debates(limit=limit)
            if not debates:
                click.echo("No debates found.")
                return

            click.echo(f"{'ID':>5}  {'Status':<10} {'Winner':<7} {'Rounds':>6}  {'Topic'}")
            click.echo(f"{'─' * 5}  {'─' * 10} {'─' * 7} {'─' * 6}  {'─' * 40}")
            for d in debates:
                winner = d.winner.value if d.winner else "-"
                click.echo(
                    f"{d.id:>5}  {d.status.value:<10} {winner:<7} {d.max_rounds:>6}  {d.topic[:40]}"
                )
        finally:
            await db.close()

    asyncio.run(_run())


# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
