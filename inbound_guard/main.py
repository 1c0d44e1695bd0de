import signal
import time
from typing import Any

from inbound_guard.config.config import GuardConfig
from inbound_guard.config.defaults import DEFAULT_CONFIG_FILE
from inbound_guard.db.engine import dispose_session_factory, get_session_factory, init_schema
from inbound_guard.enforcement.job import CheckClientIpJob, RunReport
from inbound_guard.enforcement.scheduler import EnforcementScheduler
from inbound_guard.enforcement.snapshots import IPSnapshotStore
from inbound_guard.proxy.service import ProxyService
from inbound_guard.utils.logger import configure, get_logger

logger = get_logger(__name__)


class GuardManager:
    """Wires configuration, database, proxy service and the enforcement job."""

    def __init__(
        self,
        config_file: str = DEFAULT_CONFIG_FILE,
        *,
        proxy_service: ProxyService | None = None,
    ):
        self.config = GuardConfig(config_file)
        configure(level=self.config.get_log_level())
        self.session_factory = get_session_factory(
            self.config.get_database_path(),
            busy_timeout_ms=self.config.get_database_config().busy_timeout_ms,
        )
        init_schema(self.session_factory)
        self.proxy_service = proxy_service or ProxyService()
        self.job = CheckClientIpJob.from_config(
            self.config, self.session_factory, self.proxy_service
        )
        enforcement = self.config.get_enforcement_config()
        self.scheduler = EnforcementScheduler(
            self.job,
            interval_seconds=enforcement.interval_seconds,
            shutdown_timeout=enforcement.shutdown_timeout_seconds,
        )
        self.snapshots = IPSnapshotStore(self.session_factory)
        self.running = False

    def run_once(self) -> RunReport:
        return self.job.run()

    def start(self) -> bool:
        """Run the scheduler until SIGINT/SIGTERM."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        try:
            self.running = True
            logger.info(
                "Inbound guard starting",
                event="guard.starting",
                config=self.config.get_config_summary(),
            )
            self.scheduler.start()
            self.scheduler.trigger_now()
            while self.running:
                time.sleep(0.2)
        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        finally:
            self.stop()
        return True

    def stop(self) -> None:
        self.running = False
        self.scheduler.stop()
        dispose_session_factory(self.session_factory)
        if self.proxy_service.is_need_restart():
            logger.info(
                "Proxy restart still pending at shutdown",
                event="guard.restart_pending",
            )

    def _signal_handler(self, signum: int, frame: Any) -> None:
        logger.info("Received signal %s, shutting down", signum)
        self.running = False
