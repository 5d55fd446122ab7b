"""Run ARQ worker. Usage: python -m coinpay.worker.run_worker (or: arq coinpay.worker.run_worker.WorkerSettings)"""

from arq import run_worker
from arq.cron import cron

from coinpay.worker.tasks import expire_pending_orders, get_redis_settings, repair_recharge_ledger, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    cron_jobs = [
        cron(expire_pending_orders, second=0),  # every minute at :00
        cron(repair_recharge_ledger, second=30),
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
