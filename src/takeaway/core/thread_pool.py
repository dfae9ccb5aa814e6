"""
=============================================================================
WORKER POOL IMPLEMENTATION
=============================================================================

A fixed set of worker threads pulling work items from one shared FIFO
queue. The service runs two of them: readers that parse requests off
accepted connections, and workers for everything that touches the
database.

=============================================================================
WHY A WORKER POOL?
=============================================================================

    BAD APPROACH (handle the request on the accepting thread):
    ──────────────────────────────────────────────────────────

    while True:
        conn = accept()
        handle(conn)            ← a 200ms query stalls every client

    GOOD APPROACH (hand off to a pool):
    ───────────────────────────────────

    pool = WorkerPool(num_workers=8)
    pool.start()

    while True:
        conn = accept()
        pool.submit(handle, conn)   ← returns immediately

submit() never runs the item on the calling thread. That is the whole
point: request acceptance latency is decoupled from database latency.

=============================================================================
POOL ARCHITECTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         Worker Pool                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   ┌─────────────────────────────────────────────────────────────┐   │
    │   │                      WORK QUEUE                              │   │
    │   │  [Task 1] [Task 2] [Task 3] ... [None] [None]               │   │
    │   │                                   ▲                          │   │
    │   │  • Unbounded queue.Queue (FIFO)   └─ poison pills, queued    │   │
    │   │  • Workers block on get()            behind accepted work    │   │
    │   └──────────────────────┬──────────────────────────────────────┘   │
    │                          │ get()                                     │
    │                          ▼                                           │
    │   ┌──────────┐ ┌──────────┐ ┌──────────┐ ┌──────────┐               │
    │   │ Worker 0 │ │ Worker 1 │ │ Worker 2 │ │ Worker 3 │               │
    │   │ (idle)   │ │ (busy)   │ │ (busy)   │ │ (idle)   │               │
    │   └──────────┘ └──────────┘ └──────────┘ └──────────┘               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The pool size is fixed. There is no scaling and dead workers are not
restarted: a worker can only exit by taking a poison pill.

=============================================================================
SHUTDOWN PROTOCOL
=============================================================================

    pool.shutdown()
        └─ under the submit lock: mark shut down, enqueue one None per worker
        └─ every item accepted before that is ahead of the pills (FIFO)
        └─ each worker finishes its items, takes a pill, exits
        └─ join all workers

Because the flag flip and the pill enqueue happen under the same lock
that submit() holds while enqueueing, no accepted item can ever land
behind the pills and be left unexecuted.

=============================================================================
INTERVIEW QUESTIONS
=============================================================================

Q: What happens when a work item raises?
A: The work item is expected to turn its own errors into an HTTP
   response. If one slips through anyway, the worker logs it and takes
   the next item. One bad request never kills a worker.

Q: Why an unbounded queue?
A: submit() must never block the listener. Backpressure belongs at the
   edges (the accept backlog, the optional database pool cap), not in
   the hand-off.

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any, List
from dataclasses import dataclass, field
from enum import Enum

from ..errors import WorkRejectedError


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """
    Worker thread states.

    Used for monitoring the pool.
    """
    IDLE = "idle"      # Waiting for a work item
    BUSY = "busy"      # Executing a work item
    STOPPED = "stopped"  # Took a poison pill and exited


@dataclass
class Task:
    """
    A deferred function call: "call this function with these arguments later".

    Attributes:
        func: The function to execute.
        args: Positional arguments for the function.
        kwargs: Keyword arguments for the function.
        submitted_at: Time the task was submitted (for queue-wait metrics).
    """
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.monotonic)


class Worker(threading.Thread):
    """
    Worker thread that processes tasks from the queue.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Worker Loop                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Block on queue.get()                                           │
    │   2. None? → exit the loop                                          │
    │   3. Run the task; log anything it raises                           │
    │   4. task_done(), back to 1                                          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        task_queue: queue.Queue,
        worker_id: int,
        name: str = "worker",
        on_pill: Optional[Callable[[], None]] = None,
    ):
        # daemon=True: a wedged item cannot keep the process alive
        super().__init__(name=f"{name}-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id
        self.on_pill = on_pill

        self.state = WorkerState.IDLE

        # Metrics
        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while True:
            # No timeout: a worker only leaves the loop on a poison pill
            task = self.task_queue.get()
            try:
                if task is None:
                    if self.on_pill is not None:
                        self.on_pill()
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        """
        Execute a single task.

        Args:
            task: The task to execute.
        """
        self.state = WorkerState.BUSY
        start_time = time.monotonic()
        waited = start_time - task.submitted_at

        try:
            task.func(*task.args, **task.kwargs)

            elapsed = time.monotonic() - start_time
            logger.debug(
                f"Worker {self.worker_id} completed task in {elapsed:.3f}s "
                f"(queued {waited:.3f}s)"
            )
            self.tasks_completed += 1

        except Exception as e:
            # Last resort. Work items answer their own errors; reaching
            # here means one of them has a bug.
            elapsed = time.monotonic() - start_time
            logger.exception(
                f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}"
            )
            self.tasks_failed += 1

        finally:
            self.state = WorkerState.IDLE


class WorkerPool:
    """
    Fixed-size worker pool.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      WorkerPool Usage                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   pool = WorkerPool(num_workers=8)                                  │
    │   pool.start()                                                       │
    │                                                                      │
    │   pool.submit(handle_request, request, sink)                        │
    │                                                                      │
    │   print(pool.stats)                                                  │
    │                                                                      │
    │   pool.shutdown(wait=True)   # runs everything already submitted    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(self, num_workers: int = 4, name: str = "worker"):
        """
        Initialize the pool. Threads are created by start().

        Args:
            num_workers: Number of worker threads.
            name: Thread name prefix.
        """
        if num_workers < 1:
            raise ValueError("num_workers must be >= 1")

        self.num_workers = num_workers
        self.name = name

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue()

        self._workers: List[Worker] = []
        # Serializes submit() against shutdown() so pills go last
        self._lock = threading.Lock()
        self._started = False
        self._shutdown = False
        self._submitted = 0
        self._pills_queued = 0

    def start(self):
        """
        Start the worker threads.

        Calling start() twice is harmless.

        Raises:
            WorkRejectedError: If the pool has already been shut down.
        """
        with self._lock:
            if self._shutdown:
                raise WorkRejectedError("Worker pool has been shut down")
            if self._started:
                return

            logger.info(f"Starting worker pool with {self.num_workers} workers")

            for worker_id in range(self.num_workers):
                worker = Worker(self._task_queue, worker_id, self.name, on_pill=self._pill_taken)
                self._workers.append(worker)
                worker.start()

            self._started = True

    def submit(self, func: Callable[..., Any], *args, **kwargs) -> Task:
        """
        Queue a work item. Never runs it on the calling thread.

        Args:
            func: The function to execute.
            *args: Positional arguments for func.
            **kwargs: Keyword arguments for func.

        Returns:
            The queued Task.

        Raises:
            WorkRejectedError: If the pool is not started or is shutting down.
        """
        task = Task(func=func, args=args, kwargs=kwargs)

        with self._lock:
            if not self._started:
                raise WorkRejectedError("Worker pool not started")
            if self._shutdown:
                raise WorkRejectedError("Worker pool is shutting down")

            # Unbounded queue: put() never blocks while we hold the lock
            self._task_queue.put(task)
            self._submitted += 1

        return task

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Shut the pool down.

        ┌─────────────────────────────────────────────────────────────────┐
        │                    shutdown() Flow                               │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   1. Reject new submissions                                     │
        │   2. Enqueue one poison pill per worker                         │
        │   3. If wait: join the workers (bounded by timeout)             │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘

        Items submitted before shutdown() still run; an item already
        executing is never interrupted. Safe to call more than once.

        Args:
            wait: Block until every worker has exited.
            timeout: Upper bound on the wait, None for no bound.

        Returns:
            True if every worker has exited when shutdown() returns.
        """
        with self._lock:
            first_call = not self._shutdown
            self._shutdown = True
            pending = self._task_queue.qsize()

            if first_call and self._started:
                for _ in self._workers:
                    self._task_queue.put(None)
                    self._pills_queued += 1

        if not self._started:
            return True

        if first_call:
            logger.info(f"Shutting down worker pool ({pending} items still queued)")

        if wait:
            deadline = None if timeout is None else time.monotonic() + timeout
            for worker in self._workers:
                if deadline is None:
                    worker.join()
                else:
                    worker.join(max(0.0, deadline - time.monotonic()))

        alive = self.alive_workers
        if alive:
            if wait:
                logger.warning(f"Worker pool shutdown timed out with {alive} workers still running")
        else:
            logger.info("Worker pool shutdown complete")

        return alive == 0

    def _pill_taken(self) -> None:
        with self._lock:
            self._pills_queued -= 1

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    @property
    def alive_workers(self) -> int:
        """Count of worker threads that have not exited."""
        return sum(1 for w in self._workers if w.is_alive())

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.IDLE)

    @property
    def queue_size(self) -> int:
        """Pending items, excluding poison pills."""
        with self._lock:
            return max(0, self._task_queue.qsize() - self._pills_queued)

    @property
    def stats(self) -> dict:
        """
        Get worker pool statistics.

        Useful for monitoring dashboards and health checks.
        """
        return {
            "workers": {
                "total": self.num_workers,
                "alive": self.alive_workers,
                "busy": self.busy_workers,
                "idle": self.idle_workers,
            },
            "tasks": {
                "submitted": self._submitted,
                "queued": self.queue_size,
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }
