"""Click entry point for nextbus-geofence.

Registered in ``pyproject.toml`` as ``nextbus-geofence``::

    nextbus-geofence                      # run both jobs until SIGTERM/SIGINT
    nextbus-geofence --once               # one ingest tick, one alert tick, exit
    nextbus-geofence --validate-config    # check config + fences, exit
    nextbus-geofence --store memory       # keep everything in process (dry run)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiohttp
import click
import orjson
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from nextbus_geofence import __version__
from nextbus_geofence.config import AppConfig, LogFileConfig, load_config
from nextbus_geofence.feed import FeedClient
from nextbus_geofence.fences import load_fences
from nextbus_geofence.fetcher import CursorFetcher
from nextbus_geofence.geofence import GeofenceMatcher
from nextbus_geofence.hits import HitRegister
from nextbus_geofence.jobs import AlertJob, IngestJob
from nextbus_geofence.models import Fence
from nextbus_geofence.redactor import (
    SecretRedactingFilter,
    collect_secret_values,
    redact_uri_credentials,
)
from nextbus_geofence.store import ensure_collections, open_store
from nextbus_geofence.writer import LocationWriter

logger = logging.getLogger("nextbus_geofence")

DEFAULT_CONFIG = "/etc/nextbus-geofence/config.json"


# ── structured JSON log formatter ───────────────────────────────────


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        obj = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode()


def _setup_logging(
    level: str,
    secret_values: list[str] | None = None,
    log_file_config: Optional[LogFileConfig] = None,
) -> None:
    """Configure the root logger: JSON on stderr, optional file, redaction."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    redactor = SecretRedactingFilter(secret_values)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_JsonFormatter())
    stderr_handler.addFilter(redactor)
    root.addHandler(stderr_handler)

    if log_file_config and log_file_config.enabled:
        from logging.handlers import RotatingFileHandler

        Path(log_file_config.path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_file_config.path,
            maxBytes=log_file_config.max_size_bytes,
            backupCount=log_file_config.backup_count,
        )
        file_handler.setFormatter(_JsonFormatter())
        file_handler.addFilter(redactor)
        root.addHandler(file_handler)


# ── CLI ─────────────────────────────────────────────────────────────


@click.command()
@click.option("-c", "--config", "config_path", default=None, help="Config file path.")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--store", "store_backend", default=None,
              type=click.Choice(["mongo", "memory"]),
              help="Override the store backend.")
@click.option("--once", is_flag=True, help="Run one ingest and one alert tick, then exit.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and fences, then exit.")
@click.option("--mongo-uri", default=None, help="Override NEXTBUS_GEOFENCE_MONGO_URI.")
@click.version_option(__version__)
def main(
    config_path: Optional[str],
    log_level: Optional[str],
    store_backend: Optional[str],
    once: bool,
    validate_only: bool,
    mongo_uri: Optional[str],
) -> None:
    """Ingest NextBus vehicle locations and track geofence hits."""
    cfg_path = config_path or os.environ.get("NEXTBUS_GEOFENCE_CONFIG", DEFAULT_CONFIG)

    overrides: dict[str, str] = {}
    if mongo_uri:
        overrides["NEXTBUS_GEOFENCE_MONGO_URI"] = mongo_uri

    try:
        cfg = load_config(cfg_path, overrides=overrides)
        fences = load_fences(cfg.fences.path)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    if store_backend:
        cfg.store.backend = store_backend

    effective_level = (
        log_level
        or os.environ.get("NEXTBUS_GEOFENCE_LOG_LEVEL")
        or cfg.logging.level
    )
    secret_values = collect_secret_values(asdict(cfg), cfg.logging.redact_patterns)
    _setup_logging(effective_level, secret_values, cfg.logging.file)

    if validate_only:
        click.echo(f"Configuration is valid ({len(fences)} fences).", err=True)
        raise SystemExit(0)

    logger.info(
        "Starting nextbus-geofence %s (instance=%s, agency=%s, route=%s, store=%s %s)",
        __version__,
        cfg.instance_id,
        cfg.feed.agency,
        cfg.feed.route or "*",
        cfg.store.backend,
        redact_uri_credentials(cfg.store.uri) if cfg.store.backend == "mongo" else "",
    )

    asyncio.run(_run_service(cfg, fences, once))


# ── async service ───────────────────────────────────────────────────


async def _run_service(cfg: AppConfig, fences: list[Fence], once: bool) -> None:
    """Wire both jobs over one store and run them until shutdown."""
    loop = asyncio.get_running_loop()
    store = open_store(cfg.store)
    sc = cfg.store

    async with aiohttp.ClientSession() as http:
        ingest = IngestJob(
            CursorFetcher(FeedClient(cfg.feed, http)),
            LocationWriter(store, sc.locations_collection, sc.timeout_seconds),
        )
        alert = AlertJob(
            GeofenceMatcher(store, sc.locations_collection, sc.timeout_seconds),
            HitRegister(store, sc.hits_collection, sc.timeout_seconds),
            fences,
        )

        try:
            await asyncio.wait_for(
                ensure_collections(store, sc.locations_collection, sc.hits_collection),
                timeout=sc.timeout_seconds,
            )
        except Exception as exc:
            logger.error("Collection bootstrap failed, continuing: %s", exc)

        try:
            if once:
                await ingest.run_once()
                await alert.run_once()
                return

            await _run_scheduled(loop, cfg, ingest, alert)
        finally:
            store.close()
            logger.info("Service shut down (cursor=%d)", ingest.state.last_time_millis)


async def _run_scheduled(loop, cfg: AppConfig, ingest: IngestJob, alert: AlertJob) -> None:
    """Fire both jobs on their intervals until SIGTERM/SIGINT."""
    shutdown = asyncio.Event()

    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        shutdown.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    sched = cfg.schedule
    now = datetime.now(timezone.utc)
    inflight: set[asyncio.Task] = set()
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _tracked(ingest, inflight), "interval", id="ingest",
        seconds=sched.ingest_interval_seconds,
        max_instances=sched.max_overlapping_runs,
        coalesce=False, next_run_time=now,
    )
    scheduler.add_job(
        _tracked(alert, inflight), "interval", id="alert",
        seconds=sched.alert_interval_seconds,
        max_instances=sched.max_overlapping_runs,
        coalesce=False, next_run_time=now,
    )
    scheduler.start()
    logger.info(
        "Scheduled ingest every %ss and alert every %ss",
        sched.ingest_interval_seconds,
        sched.alert_interval_seconds,
    )

    try:
        await shutdown.wait()
    finally:
        # stop new ticks, let running ones finish before the store closes
        scheduler.pause()
        await _drain(inflight)
        scheduler.shutdown(wait=False)


def _tracked(job, inflight: set[asyncio.Task]):
    """Wrap *job*.run_once so each running tick is held in *inflight*."""

    async def tick() -> None:
        task = asyncio.current_task()
        inflight.add(task)
        try:
            await job.run_once()
        finally:
            inflight.discard(task)

    tick.__name__ = tick.__qualname__ = f"{type(job).__name__}.run_once"
    return tick


async def _drain(inflight: set[asyncio.Task]) -> None:
    if not inflight:
        return
    logger.info("Waiting for %d running job(s) to finish", len(inflight))
    await asyncio.gather(*inflight, return_exceptions=True)
