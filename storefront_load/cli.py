"""
🛒 Storefront Load Generator
============================
Open-model synthetic traffic against an Online Boutique style storefront.

Usage:
    storefront-load smoke --base-url http://localhost:8080
    storefront-load load --rate 20 --duration 10m
    storefront-load stress --seed 42 --output results/stress.json
    storefront-load smoke --iterations 100 --journey add_to_cart --no-think-time
    storefront-load --list-profiles

Exit codes: 0 thresholds passed, 1 a threshold failed, 2 run aborted.
"""

import argparse
import asyncio
import logging
import random
import sys
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from storefront_load.config import Settings, parse_duration
from storefront_load.exceptions import LoadError
from storefront_load.executor import ThinkTime
from storefront_load.profiles import PROFILES, ScenarioProfile, build_profile
from storefront_load.report import VERDICT_ABORTED, VERDICT_PASS, RunReport, print_summary, write_report
from storefront_load.run import Runner
from storefront_load.transport import AiohttpExecutor

console = Console()

EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_ABORTED = 2


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
    )
    # aiohttp access noise
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def print_profiles():
    console.print("\n[bold]Available profiles:[/bold]\n")
    for name, profile in PROFILES.items():
        console.print(f"  [cyan]{name:<8}[/cyan] {profile['name']:<12} - {profile['description']}")
    console.print("")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storefront-load",
        description="🛒 Storefront load generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("profile", nargs="?", choices=list(PROFILES), help="Scenario profile to run")
    parser.add_argument("--base-url", "-u", help="Storefront URL (env BASE_URL)")
    parser.add_argument("--rate", "-r", type=float, help="Iterations per second (env RATE)")
    parser.add_argument("--duration", "-d", help="Run duration, e.g. 30s, 5m, 1h (env DURATION)")
    parser.add_argument("--max-vus", type=int, help="VU pool cap (env MAX_VUS)")
    parser.add_argument("--iterations", "-n", type=int, help="Run a fixed number of iterations instead")
    parser.add_argument("--journey", "-j", help="Only run this journey")
    parser.add_argument("--no-think-time", action="store_true", help="Disable pauses between steps")
    parser.add_argument("--seed", type=int, help="Seed for journey selection and test data (env SEED)")
    parser.add_argument("--output", "-o", help="JSON report path (default results/<profile>-summary.json)")
    parser.add_argument("--list-profiles", action="store_true", help="List profiles and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def settings_from_args(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    settings = base or Settings.from_env()
    overrides = {
        "base_url": args.base_url.rstrip("/") if args.base_url else None,
        "max_vus": args.max_vus,
        "seed": args.seed,
        "think_time": False if args.no_think_time else None,
    }
    # --rate/--duration apply to whichever profile is selected
    if args.rate is not None:
        overrides.update(rate=args.rate, smoke_rate=args.rate, soak_rate=args.rate, stress_max_rate=args.rate)
    if args.duration is not None:
        seconds = parse_duration(args.duration)
        overrides.update(duration=seconds, smoke_duration=seconds, soak_duration=seconds)
    return settings.replace(**overrides)


def profile_from_args(args: argparse.Namespace, settings: Settings) -> ScenarioProfile:
    profile = build_profile(args.profile, settings)
    if args.journey:
        profile = profile.only_journey(args.journey)
    if args.iterations:
        profile = profile.with_iterations(args.iterations)
    return profile


async def run_profile(profile: ScenarioProfile, settings: Settings) -> RunReport:
    think_time = ThinkTime(
        enabled=settings.think_time,
        min_seconds=settings.think_time_min,
        max_seconds=settings.think_time_max,
        rng=random.Random(settings.seed),
    )
    async with AiohttpExecutor(
        settings.base_url,
        concurrency=profile.scheduler.vus_cap,
        connect_timeout=settings.timeout_connect,
        read_timeout=settings.timeout_read,
    ) as executor:
        runner = Runner(
            profile,
            executor,
            seed=settings.seed,
            think_time=think_time,
            graceful_stop=settings.graceful_stop,
            fallback_ids=settings.fallback_ids or None,
        )
        return await runner.run()


def exit_code(report: RunReport) -> int:
    if report.verdict == VERDICT_PASS:
        return EXIT_PASS
    if report.verdict == VERDICT_ABORTED:
        return EXIT_ABORTED
    return EXIT_FAIL


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_profiles:
        print_profiles()
        return EXIT_PASS
    if not args.profile:
        parser.error("a profile is required (see --list-profiles)")

    setup_logging(args.verbose)

    try:
        settings = settings_from_args(args)
        profile = profile_from_args(args, settings)
    except LoadError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return EXIT_FAIL

    console.print(Panel(
        f"[bold]Target:[/bold] {settings.base_url}\n"
        f"[bold]Profile:[/bold] {PROFILES[profile.name]['name']} - {profile.description}\n"
        f"[bold]Schedule:[/bold] {profile.scheduler.describe()}\n"
        f"[bold]Journeys:[/bold] "
        + ", ".join(f"{name} {p:.0%}" for name, p in profile.catalog.probabilities().items() if p > 0)
        + "\n[bold]Think time:[/bold] "
        + (f"{settings.think_time_min:g}-{settings.think_time_max:g}s" if settings.think_time else "off"),
        title="🛒 Storefront Load Test",
        border_style="cyan",
    ))

    try:
        report = asyncio.run(run_profile(profile, settings))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return EXIT_ABORTED
    except LoadError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return EXIT_FAIL

    print_summary(report, console)
    output = args.output or f"results/{profile.name}-summary.json"
    write_report(report, output)
    console.print(f"[green]Report saved to {output}[/green]")
    return exit_code(report)


if __name__ == "__main__":
    sys.exit(main())
