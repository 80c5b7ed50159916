import asyncio
from typing import Any, Dict, List, Optional
from kmerch.notifications.constants import DEFAULT_QUEUE_SIZE, ORDER_CONFIRMATION, logger
from kmerch.notifications.email import EmailSender

SENTINEL = None  # queue sentinel


class NotificationDispatcher:
    """Fire-and-forget notification worker pool.

    `enqueue` never blocks and never raises; handler failures are logged and dropped.
    """

    def __init__(self, email_sender: EmailSender, workers_count: int = 2, max_queue_size: int = DEFAULT_QUEUE_SIZE):
        self.email_sender = email_sender
        self.queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue(maxsize=max_queue_size)
        self.workers_count = workers_count
        self.worker_loops: List[asyncio.Task] = []
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return bool(self.worker_loops)

    def start(self) -> None:
        if self.worker_loops:
            return
        for i in range(self.workers_count):
            name = f"notifier:{i + 1}"
            self.worker_loops.append(asyncio.create_task(self._worker_loop(name), name=name))
            logger.info("[%s] started", name)

    def enqueue(self, event: str, data: Dict[str, Any]) -> bool:
        try:
            self.queue.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logger.warning("notification.dropped_queue_full", extra={"event": event})
            return False
        return True

    async def shutdown(self, *, drain_timeout: float = 10.0, wait_timeout: float = 5.0) -> None:
        """Drain what is queued, then stop every worker with a sentinel."""
        if not self.worker_loops:
            return
        try:
            await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("notification.drain_timeout", extra={"pending": self.queue.qsize()})

        for _ in self.worker_loops:
            await self.queue.put(SENTINEL)

        for task in self.worker_loops:
            try:
                await asyncio.wait_for(task, timeout=wait_timeout)
            except asyncio.TimeoutError:
                logger.warning("[%s] worker did not finish; cancelled", task.get_name())
        self.worker_loops = []

    async def _worker_loop(self, name: str) -> None:
        while True:
            qitem = await self.queue.get()
            try:
                if qitem is SENTINEL:
                    logger.info("[%s] sentinel received; exiting loop", name)
                    break
                try:
                    await self.task_executor(qitem)
                    self.processed += 1
                except Exception:
                    self.failed += 1
                    logger.exception("[%s] notification handler failed", name, extra={"event": qitem["event"]})
            finally:
                self.queue.task_done()

    async def task_executor(self, task: Dict[str, Any]) -> None:
        if task["event"] == ORDER_CONFIRMATION:
            await self.email_sender.send_order_confirmation(task["data"])
        else:
            logger.warning("notification.unknown_event", extra={"event": task["event"]})
