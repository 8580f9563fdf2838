"""CLI entrypoint: resolve location, build the provider chain and run the polling loop."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import uuid
from collections.abc import Sequence
from datetime import UTC

from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .decision import DecisionEngine
from .exceptions import ConfigError, JournalError
from .journal import JournalWriter
from .location import LocationResolver
from .log_setup import setup_logger
from .models import OutputState, ResolvedLocation
from .scheduler import Scheduler
from .weather.chain import ProviderChain, build_provider_chain


def parse_args() -> argparse.Namespace:
    """Parse rain switch CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Poll weather providers and drive rain/snow switch outputs."
    )
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit.")
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="Stop after this many ticks.",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="Print the resolved location and provider order, then exit.",
    )
    return parser.parse_args()


def _print_outputs(console: Console, states: Sequence[OutputState], provider_order: str) -> None:
    table = Table(title=f"Rain Switch Outputs ({provider_order})")
    table.add_column("Name", overflow="fold")
    table.add_column("Kind")
    table.add_column("State")
    table.add_column("Fault")
    table.add_column("Provider", overflow="fold")
    table.add_column("mm/h")
    table.add_column("PoP %")
    table.add_column("Last Update (UTC)")

    for state in states:
        meta = state.metadata
        table.add_row(
            state.name,
            state.kind,
            "ON" if state.is_on else "OFF",
            "yes" if state.faulted else "-",
            meta.provider_name or "-",
            f"{meta.precip_mm_hr:g}",
            f"{meta.probability:g}",
            meta.last_update.astimezone(UTC).isoformat() if meta.last_update else "-",
        )
    console.print(table)


def _print_description(
    console: Console, location: ResolvedLocation | None, chain: ProviderChain
) -> None:
    if location is None:
        console.print("Location: unresolved")
    else:
        console.print(
            f"Location: {location.latitude:.4f}, {location.longitude:.4f} "
            f"(source={location.source})"
        )
    console.print(f"Providers: {chain.describe()}")


def _build_engines(
    settings: Settings, chain: ProviderChain, logger: logging.Logger
) -> list[DecisionEngine]:
    quiet_window = settings.quiet_window()
    return [
        DecisionEngine(
            output,
            chain.get_forecast,
            logger,
            min_on_seconds=settings.min_on_duration_seconds,
            min_off_seconds=settings.min_off_duration_seconds,
            override_minutes=settings.override_minutes,
            quiet_window=quiet_window,
        )
        for output in settings.enabled_outputs()
    ]


def main() -> int:
    """Run the rain switch poller."""
    args = parse_args()
    logger = setup_logger()
    console = Console()
    session_id = uuid.uuid4().hex[:12]
    journal: JournalWriter | None = None

    if args.max_ticks is not None and args.max_ticks <= 0:
        logger.error("--max-ticks must be > 0 when provided.")
        return 2

    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("Configuration failure: %s", exc)
        return 2
    logger = setup_logger(level=settings.log_level)

    if settings.journal_enabled:
        try:
            journal = JournalWriter(journal_dir=settings.journal_dir, session_id=session_id)
            journal.write_event(
                event_type="startup",
                payload=settings.safe_summary(),
                metadata={"session_id": session_id},
            )
        except JournalError as exc:
            logger.error("Failed to initialize journal: %s", exc)
            return 3

    if not settings.enabled_outputs() and not args.describe:
        logger.warning("No outputs enabled; skipping provider initialization.")
        _write_shutdown(journal, logger, session_id, exit_code=0)
        return 0

    with LocationResolver(
        logger,
        storage_path=settings.storage_path,
        timeout_seconds=settings.provider_timeout_seconds,
        user_agent=settings.nws_user_agent,
    ) as resolver:
        location = resolver.resolve(settings.location_config())
    if location is None:
        logger.warning("No location resolved; location-based providers are unavailable.")
    else:
        logger.info(
            "Using location %.4f, %.4f (source=%s)",
            location.latitude,
            location.longitude,
            location.source,
        )

    try:
        chain = build_provider_chain(settings, location, logger)
    except ConfigError as exc:
        logger.error("Provider initialization failure: %s", exc)
        _write_shutdown(journal, logger, session_id, exit_code=4)
        return 4

    exit_code = 0
    try:
        if args.describe:
            _print_description(console, location, chain)
            return exit_code

        engines = _build_engines(settings, chain, logger)
        scheduler = Scheduler(
            chain,
            engines,
            logger,
            interval_seconds=settings.poll_interval_seconds,
            journal=journal,
        )
        stop_event = threading.Event()
        max_ticks = 1 if args.once else args.max_ticks
        try:
            scheduler.run(
                stop_event,
                max_ticks=max_ticks,
                on_tick=lambda _ok: _print_outputs(
                    console, scheduler.snapshots(), chain.describe()
                ),
            )
        except KeyboardInterrupt:
            logger.info("Interrupted; stopping polling loop.")
            stop_event.set()
    except Exception as exc:  # pragma: no cover - defensive catch for CLI runtime
        exit_code = 99
        logger.exception("Unexpected rain switch failure: %s", exc)
    finally:
        chain.close()
        _write_shutdown(journal, logger, session_id, exit_code=exit_code)

    return exit_code


def _write_shutdown(
    journal: JournalWriter | None, logger: logging.Logger, session_id: str, *, exit_code: int
) -> None:
    if journal is None:
        return
    try:
        journal.write_event(
            "shutdown",
            payload={"exit_code": exit_code},
            metadata={"session_id": session_id},
        )
    except JournalError:
        logger.error("Failed to write shutdown event.")


if __name__ == "__main__":
    sys.exit(main())
