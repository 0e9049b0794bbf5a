from fastapi import BackgroundTasks, Request

from trade_ledger.logger import logger


def schedule_sync(background_tasks: BackgroundTasks, request: Request, user_id: int):
    """Drain the acting user's outbox after the response has been sent."""
    worker = getattr(request.app.state, 'sync_worker', None)
    if worker is None:
        logger.debug(f'[schedule_sync] No sync worker configured, user_id={user_id} left for the retry loop')
        return
    background_tasks.add_task(worker.drain_safely, user_id)
