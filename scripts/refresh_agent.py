"""
CLI tool to run one reconciliation pass for an agent.

Usage:
    python scripts/refresh_agent.py <agent_id> [--wait]

Examples:
    # Fetch, merge and print the unified call list
    python scripts/refresh_agent.py agent_00dd3c10297c91790778fc176e

    # Also wait for transcript extraction to finish and print notifications
    python scripts/refresh_agent.py agent_00dd3c10297c91790778fc176e --wait
"""

import argparse
import asyncio

from dotenv import load_dotenv
load_dotenv(".env.local")

from calldesk.logging_config import get_logger, setup_logging
from calldesk.services.reconciliation_session import RefreshError, SessionRegistry

setup_logging()
logger = get_logger(__name__)


async def refresh_agent(agent_id: str, wait: bool = False) -> int:
    registry = SessionRegistry()
    session = registry.get(agent_id)

    try:
        result = await session.refresh(force=True)
    except RefreshError as e:
        logger.error("refresh_failed", agent_id=agent_id, error=str(e))
        return 1

    if wait:
        for report in await session.wait_for_extractions():
            logger.info("extraction_report", **vars(report))

    for record in session.records:
        print(
            f"{record.call_id:<40} {record.status or '-':<12} "
            f"{record.appointment_status.value:<11} "
            f"{record.appointment_date or '':<10} {record.appointment_time or '':<5} "
            f"{record.client_email or ''}"
        )

    for notification in session.notifier.drain():
        print(f"[{notification.level.value}] {notification.message}")

    logger.info("refresh_done", records=len(result.records), new=len(result.new_call_ids))
    await registry.close_all()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one reconciliation pass for an agent")
    parser.add_argument("agent_id", help="Provider agent ID")
    parser.add_argument("--wait", action="store_true", help="Wait for transcript extraction to finish")
    args = parser.parse_args()

    raise SystemExit(asyncio.run(refresh_agent(args.agent_id, wait=args.wait)))


if __name__ == "__main__":
    main()
