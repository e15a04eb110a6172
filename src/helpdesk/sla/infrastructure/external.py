"""
SLA External Service Integrations
==================================

External services for the SLA engine:
- YAML rules catalogue with watchdog hot-reload
- APScheduler for the background SLA sweep
- Event publisher that writes SLA events to the structured log
"""

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Sequence, Tuple

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from helpdesk.config import SlaEventType
from helpdesk.core import ConfigurationException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.sla.application import (
    ISlaEventPublisher,
    ISlaRuleProvider,
    SlaRulesCatalogue,
)
from helpdesk.sla.domain import RuleMatcher, SlaDomainEvent, SlaRule

logger = get_logger(__name__)


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable view of one catalogue load."""
    active: Tuple[SlaRule, ...] = ()
    by_id: Dict[str, SlaRule] = field(default_factory=dict)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for rules catalogue changes."""

    def __init__(self, rules_manager: "SlaRulesManager", config_path: Path):
        self.rules_manager = rules_manager
        self.config_path = config_path
        super().__init__()

    def _is_catalogue(self, path: str) -> bool:
        return Path(path).resolve() == self.config_path.resolve()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if self._is_catalogue(event.src_path):
            logger.info("SLA rules file changed", extra={"path": event.src_path})
            self.rules_manager.reload()

    def on_created(self, event):
        """Editors often replace the file instead of writing in place."""
        self.on_modified(event)

    def on_moved(self, event):
        if not event.is_directory and self._is_catalogue(event.dest_path):
            logger.info("SLA rules file replaced", extra={"path": event.dest_path})
            self.rules_manager.reload()


class SlaRulesManager(ISlaRuleProvider):
    """
    Thread-safe SLA rules catalogue with hot-reload support.

    Uses watchdog to monitor file changes and swap in a new snapshot
    without restarting the service. Readers always see one complete
    snapshot; a reload that fails validation leaves the current one in place.
    """

    def __init__(self):
        self._snapshot: Optional[RuleSnapshot] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> RuleSnapshot:
        """
        Initial catalogue load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        snapshot = self._load_from_file(self._path)
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "SLA rules loaded",
            extra={"path": str(self._path), "active_rules": len(snapshot.active)}
        )
        return snapshot

    def load_rules(self, rules: Sequence[SlaRule]) -> RuleSnapshot:
        """Install rules built in code instead of read from a file."""
        snapshot = self._build_snapshot(list(rules))
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    @staticmethod
    def _build_snapshot(rules) -> RuleSnapshot:
        return RuleSnapshot(
            active=tuple(RuleMatcher.active_in_order(rules)),
            by_id={rule.id: rule for rule in rules},
        )

    def _load_from_file(self, path: Path) -> RuleSnapshot:
        """Load and validate the YAML catalogue."""
        if not path.exists():
            logger.warning(
                "SLA rules file not found, no SLA rules active",
                extra={"path": str(path)}
            )
            return RuleSnapshot()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            catalogue = SlaRulesCatalogue.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(
                f"Invalid SLA rules file {path}: {e}",
                {"path": str(path)}
            ) from e

        return self._build_snapshot(catalogue.to_rules())

    def reload(self) -> bool:
        """Reload the catalogue from file, keeping the old one on failure."""
        if self._path is None:
            return False

        try:
            snapshot = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error(
                "Failed to reload SLA rules, keeping previous rules",
                extra={"path": str(self._path), "error": e.message}
            )
            return False

        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "SLA rules reloaded successfully",
            extra={"active_rules": len(snapshot.active)}
        )
        return True

    def start_watching(self) -> None:
        """
        Start watching the catalogue for changes.

        Skips watching if the file doesn't exist or the platform offers no
        file system notifications (e.g. some container runtimes).
        """
        if self._path is None:
            raise RuntimeError("Rules not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "SLA rules file doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(
                handler,
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Started watching SLA rules file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning(
                "File watching not available, using static SLA rules",
                extra={"error": str(e)}
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the catalogue (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def snapshot(self) -> RuleSnapshot:
        """Get the current snapshot."""
        with self._lock:
            if self._snapshot is None:
                raise RuntimeError("SLA rules not loaded")
            return self._snapshot

    def get_active_rules(self) -> Sequence[SlaRule]:
        return self.snapshot.active

    def get_rule(self, rule_id: str) -> Optional[SlaRule]:
        return self.snapshot.by_id.get(rule_id)


class LoggingEventPublisher(ISlaEventPublisher):
    """
    Publishes SLA events to the structured log.

    Breaches are logged at WARNING so log-based alerting can pick them up.
    """

    async def publish(self, events: Sequence[SlaDomainEvent]) -> None:
        for event in events:
            if event.event_type == SlaEventType.BREACHED:
                logger.warning("SLA breached", extra=event.to_dict())
            else:
                logger.info("SLA approaching breach", extra=event.to_dict())


class SlaSweepScheduler:
    """
    Wrapper for APScheduler for the background SLA sweep.

    Manages the lifecycle of the scheduler and its single interval job.
    An interval of 0 disables scheduling.
    """

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        """Start the scheduler with the given job function."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        if self.interval_seconds <= 0:
            logger.info("SLA scheduler disabled")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="sla_sweep",
            name="SLA Sweep Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
