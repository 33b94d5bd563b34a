from __future__ import annotations

import logging
import multiprocessing

from rq import Worker

from cutout.config import settings
from cutout.infrastructure.jobs import get_redis_connection

logger = logging.getLogger("cutout.worker")


def run_worker_instance(index: int) -> None:
    connection = get_redis_connection()
    worker = Worker([settings.queue_name], connection=connection, name=f"cutout-worker-{index}")
    worker.work()


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    worker_count = max(1, settings.worker_concurrency)
    logger.info("starting %d worker(s) on queue %s", worker_count, settings.queue_name)
    if worker_count == 1:
        run_worker_instance(1)
    else:
        processes: list[multiprocessing.Process] = []
        for idx in range(worker_count):
            process = multiprocessing.Process(target=run_worker_instance, args=(idx + 1,))
            process.start()
            processes.append(process)
        for process in processes:
            process.join()
