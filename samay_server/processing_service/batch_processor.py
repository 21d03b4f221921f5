import argparse
import asyncio
import logging
import sys

from samay_server.api_service.core.database import check_db_connection_async, engine, init_db
from samay_server.processing_service.runner import JOB_NAMES, JobRunner

# --- Configure Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - [%(name)s] - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_job(name: str) -> int:
    if not await check_db_connection_async():
        logger.error("Database connection failed. Aborting.")
        return 1
    await init_db()
    try:
        result = await JobRunner().run(name)
    except Exception:
        return 1
    finally:
        await engine.dispose()
    logger.info(f"{name} finished: {result}")
    return 0


def main(argv=None) -> int:
    """Command-line entry point: run one background job and exit."""
    parser = argparse.ArgumentParser(description="Run a Samay background job once.")
    parser.add_argument("--job", required=True, choices=JOB_NAMES, help="The job to run.")
    args = parser.parse_args(argv)
    return asyncio.run(run_job(args.job))


if __name__ == "__main__":
    sys.exit(main())
