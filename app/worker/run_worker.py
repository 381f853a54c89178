"""Run ARQ worker. Usage: python -m app.worker.run_worker"""

from arq import run_worker

from app.worker.cron import cron_jobs
from app.worker.tasks import get_redis_settings, shutdown, startup


class WorkerSettings:
    functions: list = []
    cron_jobs = cron_jobs()
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
