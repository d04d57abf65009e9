import asyncio
import signal
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.containers import AppContainer
from core.config.settings import Settings
from core.logging import configure_logging, get_logger
from core.utils.exceptions import ConfigurationError


def validate_settings(settings: Settings) -> None:
    """Fail fast on configurations that can only break at trade time."""
    kiwoom = settings.kiwoom
    if not kiwoom.mock and (not kiwoom.app_key or not kiwoom.app_secret):
        raise ConfigurationError("KIWOOM__APP_KEY and KIWOOM__APP_SECRET are required when KIWOOM__MOCK=false")
    if settings.database.backend not in ("database", "memory"):
        raise ConfigurationError(f"Unknown DATABASE__BACKEND: {settings.database.backend}")


class ApplicationOrchestrator:
    """Wires the container, prepares storage and drives the cron-triggered cycles."""

    def __init__(self, container: AppContainer = None):
        self.container = container or AppContainer()
        self._shutdown_event = asyncio.Event()
        self.settings = self.container.settings()
        configure_logging(self.settings)
        self.logger = get_logger("kiwoom_agent.main", component="application")
        self.scheduler = AsyncIOScheduler(timezone=self.settings.scheduler.timezone)
        self._db_started = False

    async def startup(self):
        validate_settings(self.settings)

        if self.settings.database.backend == "database":
            db_manager = self.container.db_manager()
            await db_manager.init(create_schema=self.settings.database.create_schema)
            self._db_started = True
            if not await db_manager.verify_connection():
                raise ConfigurationError("Database connection could not be verified")
            self.logger.info("Database initialized and verified ready")

        agent = self.container.agent_scheduler()
        await agent.start()

    def schedule_jobs(self):
        agent = self.container.agent_scheduler()
        tz = self.settings.scheduler.timezone
        self.scheduler.add_job(
            agent.market_job,
            CronTrigger.from_crontab(self.settings.scheduler.market_poll_cron, timezone=tz),
            id="market_poll",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            agent.news_job,
            CronTrigger.from_crontab(self.settings.scheduler.news_scrape_cron, timezone=tz),
            id="news_scrape",
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("Cycles scheduled",
                         market_poll_cron=self.settings.scheduler.market_poll_cron,
                         news_scrape_cron=self.settings.scheduler.news_scrape_cron,
                         timezone=tz)

    async def shutdown(self):
        self.logger.info("Shutting down Kiwoom agent...")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        try:
            await self.container.kiwoom_service().close()
        except Exception as e:
            self.logger.error("Error closing Kiwoom connections", error=str(e))
        if self._db_started:
            await self.container.db_manager().shutdown()
        self.logger.info("Kiwoom agent shutdown complete")

    def _signal_handler(self, signum, frame):
        self.logger.info(f"Received shutdown signal: {signal.strsignal(signum)}")
        self._shutdown_event.set()

    async def run(self):
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            try:
                await self.startup()
            except ConfigurationError as e:
                self.logger.critical("Startup failed", error=str(e))
                sys.exit(1)
            self.schedule_jobs()
            self.scheduler.start()
            self.logger.info("Application is now running. Press Ctrl+C to exit.")
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()


async def main():
    """Application entry point"""
    app = ApplicationOrchestrator()
    await app.run()


if __name__ == "__main__":
    asyncio.run(main())
