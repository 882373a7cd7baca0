"""
Command-line interface for the rule evolution engine.

Each command builds an engine seeded with the default rule catalog.

Usage:
    leakrules rules
    leakrules mutate underbilling-v1
    leakrules evolve --seed 7 --cycles 3
    leakrules stats
"""

import json
import random
import sys
from typing import Optional

import click

from leakrules import __version__
from leakrules.config import Config, EvolutionConfig
from leakrules.evolution import RuleEvolutionEngine, RuleEvolutionError
from leakrules.logging import initialize_logging


def _build_engine(seed: Optional[int] = None, mutation_rate: Optional[float] = None) -> RuleEvolutionEngine:
    settings = Config.from_env()
    evolution: EvolutionConfig = settings.evolution
    if mutation_rate is not None:
        evolution = evolution.model_copy(update={"mutation_rate": mutation_rate})
    return RuleEvolutionEngine.with_default_rules(config=evolution, rng=random.Random(seed))


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
def cli(log_level: str) -> None:
    """Rule Evolution Engine.

    Inspect, mutate and auto-evolve revenue leak detection rules.
    """
    log_config = Config.from_env().logging.model_copy(update={"level": log_level})
    initialize_logging(log_config)


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Include deprecated versions")
def rules(show_all: bool) -> None:
    """List rules with status and F1 score."""
    engine = _build_engine()
    listed = engine.get_all_rules() if show_all else engine.get_active_rules()

    for rule in listed:
        click.echo(
            f"{rule.id:<22} {rule.status.value:<10} f1={rule.performance.f1_score:.2f} "
            f"n={rule.performance.total_applications:<5} {rule.name}"
        )


@cli.command()
@click.argument("rule_id")
def mutate(rule_id: str) -> None:
    """Show the mutations generated for RULE_ID."""
    engine = _build_engine()
    try:
        mutations = engine.generate_mutations(rule_id)
    except RuleEvolutionError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not mutations:
        click.echo(f"No mutations for {rule_id}")
        return

    for mutation in mutations:
        click.echo(f"{mutation.id}  {mutation.mutation_type.value:<17} {mutation.hypothesis}")
        click.echo(f"    {json.dumps(mutation.changes.to_dict())}")


@cli.command()
@click.option("--seed", type=int, default=None, help="Seed for the random source")
@click.option("--cycles", default=1, type=int, help="Number of auto-evolution cycles")
@click.option(
    "--mutation-rate",
    type=float,
    default=None,
    help="Override the configured mutation rate (0.0-1.0)",
)
def evolve(seed: Optional[int], cycles: int, mutation_rate: Optional[float]) -> None:
    """Run auto-evolution cycles and report candidates created."""
    engine = _build_engine(seed=seed, mutation_rate=mutation_rate)

    for cycle in range(1, cycles + 1):
        result = engine.auto_evolve()
        evolved = ", ".join(result.evolved_rules) or "none"
        click.echo(f"Cycle {cycle}: {len(result.mutations)} mutations, evolved: {evolved}")

    click.echo(json.dumps(engine.get_stats().to_dict(), indent=2))


@cli.command()
def stats() -> None:
    """Print population statistics as JSON."""
    engine = _build_engine()
    click.echo(json.dumps(engine.get_stats().to_dict(), indent=2))


@cli.command()
@click.argument("rule_id")
def history(rule_id: str) -> None:
    """Print the lifecycle history of RULE_ID."""
    engine = _build_engine()
    entries = engine.get_rule_history(rule_id)
    if entries is None:
        click.echo(f"Error: Rule {rule_id} not found", err=True)
        sys.exit(1)

    for event in entries.events:
        click.echo(f"{event.timestamp.isoformat()}  {event.event_type.value:<10} {event.details}")


if __name__ == "__main__":
    cli()
