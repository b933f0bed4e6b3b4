import asyncio
import sys

from src.engine.maintainer import ScoreMaintainer
from src.engine.models import ScoreUpdateReport
from src.logging import setup_logging
from src.observability import setup_tracing, shutdown_tracing
from src.store.database import create_db_engine, create_session_factory
from src.store.sql import SqlCatalogStore

logger = setup_logging("update_scores.log")


async def run() -> ScoreUpdateReport:
    db_engine = create_db_engine()
    try:
        store = SqlCatalogStore(create_session_factory(db_engine))
        return await ScoreMaintainer(store).update_all()
    finally:
        await db_engine.dispose()


def all_failed(report: ScoreUpdateReport) -> bool:
    return report.failed > 0 and report.updated == 0


def main():
    logger.info("Starting popularity score refresh...")
    setup_tracing(service_name="score-batch")
    try:
        report = asyncio.run(run())
    finally:
        shutdown_tracing()

    if report.failed_ids:
        logger.warning(f"Products left with a stale score: {report.failed_ids}")

    if all_failed(report):
        logger.error("Every product failed to update!")
        sys.exit(1)

    logger.info(
        f"Score refresh complete: {report.updated} updated, {report.failed} failed "
        f"in {report.duration_s:.1f}s"
    )


if __name__ == "__main__":
    main()
