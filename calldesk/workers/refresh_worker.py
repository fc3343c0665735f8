"""
Refresh Worker.

Periodically runs a reconciliation pass for every configured agent so
new calls get their transcripts analysed even when nobody has the
dashboard open. Runs as a long-lived background process.

Start with:
    python -m calldesk.workers.refresh_worker
"""

from __future__ import annotations

import asyncio
import signal

from dotenv import load_dotenv
load_dotenv(".env.local")

from calldesk.config import get_settings
from calldesk.logging_config import get_logger, setup_logging
from calldesk.services.reconciliation_session import RefreshError, SessionRegistry

setup_logging()
logger = get_logger(__name__)
settings = get_settings()


class RefreshWorker:
    """
    Polls each agent's call list on a fixed interval.

    A failing agent is logged and retried on the next tick; it never
    stops the loop or the other agents.
    """

    def __init__(
        self,
        agent_ids: list[str],
        registry: SessionRegistry | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._agent_ids = agent_ids
        self._registry = registry or SessionRegistry()
        self._poll_interval = poll_interval or settings.refresh_poll_interval_seconds
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Start the polling loop."""
        self._running = True
        logger.info(
            "refresh_worker_started",
            agents=len(self._agent_ids),
            poll_interval=self._poll_interval,
        )

        while self._running:
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> int:
        """Refresh every agent once. Returns how many passes ran."""
        ran = 0
        for agent_id in self._agent_ids:
            session = self._registry.get(agent_id)
            try:
                result = await session.refresh()
            except RefreshError as e:
                logger.error("worker_refresh_failed", agent_id=agent_id, error=str(e))
                continue
            except Exception as e:
                logger.error("worker_unexpected_error", agent_id=agent_id, error=str(e))
                continue
            if result.refreshed:
                ran += 1
        return ran

    async def stop(self) -> None:
        """Gracefully stop the polling loop and in-flight extraction batches."""
        self._running = False
        self._stopped.set()
        await self._registry.close_all()
        logger.info("refresh_worker_stopped")


async def main() -> None:
    agent_ids = settings.agent_ids
    if not agent_ids:
        logger.error("refresh_worker_no_agents", hint="set WORKER_AGENT_IDS")
        return

    worker = RefreshWorker(agent_ids)

    loop = asyncio.get_running_loop()

    def shutdown_handler() -> None:
        logger.info("shutdown_signal_received")
        asyncio.ensure_future(worker.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.start()
    except KeyboardInterrupt:
        await worker.stop()


if __name__ == "__main__":
    asyncio.run(main())
