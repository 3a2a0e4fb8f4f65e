"""Worker runner entry point.

Boots the pipeline and runs the embedding worker pool until interrupted.
Several runners may share one database; the atomic claim keeps them apart.

Usage:
    python -m worker.worker_runner           # run until SIGINT / SIGTERM
    python -m worker.worker_runner --once    # process due jobs, then exit
"""

import argparse
import asyncio
import signal

from services.pipeline.PipelineContext import PipelineContext
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging


async def drain(context: PipelineContext) -> int:
    """Process due jobs until none is left. Returns the number of processed jobs."""
    processed = 0
    while await context.pool.run_once() is not None:
        processed += 1
    return processed


async def main(once: bool = False) -> None:
    """Run the embedding workers."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    context = PipelineContext(helper_config=config)

    try:
        # embed and vector clients are required, without them no job can succeed
        try:
            await context.boot()
        except Exception as e:
            logger.error(f"Error booting pipeline: {e}. Aborting.")
            return

        if once:
            processed = await drain(context)
            logger.info("Processed %d jobs. Queue state: %s", processed, context.job_queue.count_by_status())
            return

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        context.pool.start()
        await stop_event.wait()
        logger.info("Shutdown requested, stopping workers...")
    finally:
        await context.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the embedding worker pool.")
    parser.add_argument("--once", action="store_true", help="process all due jobs and exit")
    args = parser.parse_args()
    asyncio.run(main(once=args.once))
