"""
Generic background task queue.

A processor owns its queue, its status and its ticker task. Every tick it
drains the queue one task at a time through the processing callback (plain
function or coroutine function), then goes back to waiting.

    processor = BackgroundTaskProcessor(make_thumbnail, TaskProcessorOptions(max_size=500))
    processor.add_listener("done", lambda task, result: ...)
    processor.start()
    processor.push_task(path)
    ...
    await processor.stop()
"""
import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Generic, List, Optional, TypeVar, Union

from . import config

T = TypeVar("T")
R = TypeVar("R")


class TaskProcessorStatus(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PROCESSING = "processing"


class TaskEvent(str, Enum):
    DONE = "done"          # listener(task, result)
    ERROR = "error"        # listener(task, exception)
    CANCELED = "canceled"  # listener(task)


class QueuePriority(str, Enum):
    FIFO = "fifo"
    LIFO = "lifo"


@dataclass
class TaskProcessorOptions:
    processing_priority: QueuePriority = QueuePriority.FIFO
    # Which end of the queue gives way when max_size is exceeded
    canceling_priority: QueuePriority = QueuePriority.FIFO
    max_size: int = -1  # <= 0 means unbounded
    interval_ms: int = config.TASK_LOOP_INTERVAL_MS


class BackgroundTaskProcessor(Generic[T, R]):
    def __init__(self,
                 callback: Callable[[T], Union[R, Awaitable[R]]],
                 options: Optional[TaskProcessorOptions] = None):
        self.callback = callback
        self.options = options or TaskProcessorOptions()
        self._status = TaskProcessorStatus.STOPPED
        self._tasks: Deque[T] = deque()
        self._ticker: Optional[asyncio.Task] = None
        self._in_flight: Optional[T] = None
        self._should_break = False
        self._listeners: Dict[TaskEvent, List[Callable[..., Any]]] = {event: [] for event in TaskEvent}

    @property
    def status(self) -> TaskProcessorStatus:
        return self._status

    def __len__(self) -> int:
        return len(self._tasks)

    # --- Lifecycle ---

    def start(self):
        """Begins polling the queue. Must be called from a running event loop."""
        if self._status != TaskProcessorStatus.STOPPED:
            return
        self._status = TaskProcessorStatus.RUNNING
        self._ticker = asyncio.get_running_loop().create_task(self._run())

    async def stop(self, timeout: Optional[float] = None):
        """
        Waits for the task in flight (if any) to settle, then stops.
        Tasks still queued stay queued.

        With a timeout (seconds) a task still running when it expires is
        cancelled and reported through the 'canceled' event. Without one,
        stop() waits as long as the callback takes.
        """
        if self._status == TaskProcessorStatus.STOPPED:
            return

        if self._status == TaskProcessorStatus.PROCESSING:
            loop = asyncio.get_running_loop()
            deadline = None if timeout is None else loop.time() + timeout
            self._should_break = True
            while self._status == TaskProcessorStatus.PROCESSING:
                if deadline is not None and loop.time() >= deadline:
                    logging.warning(f"Background task {self._in_flight!r} still running after {timeout}s, cancelling it")
                    break
                await asyncio.sleep(self._interval)
            self._should_break = False

        self._status = TaskProcessorStatus.STOPPED
        ticker, self._ticker = self._ticker, None
        if ticker is not None:
            ticker.cancel()
            try:
                await ticker
            except asyncio.CancelledError:
                pass

        abandoned, self._in_flight = self._in_flight, None
        if abandoned is not None:
            self._notify(TaskEvent.CANCELED, abandoned)

    async def __aenter__(self) -> "BackgroundTaskProcessor[T, R]":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    @property
    def _interval(self) -> float:
        return max(self.options.interval_ms, 1) / 1000

    async def _run(self):
        while True:
            await asyncio.sleep(self._interval)
            if self._tasks and not self._should_break:
                await self._drain()

    async def _drain(self):
        self._status = TaskProcessorStatus.PROCESSING
        pop_first_in = self.options.processing_priority == QueuePriority.FIFO
        try:
            while self._tasks and not self._should_break:
                task = self.pop_task(pop_first_in)
                self._in_flight = task
                try:
                    result = self.callback(task)
                    if inspect.isawaitable(result):
                        result = await result
                except Exception as e:
                    self._in_flight = None
                    logging.debug(f"Background task {task!r} failed: {e}")
                    self._notify(TaskEvent.ERROR, task, e)
                else:
                    self._in_flight = None
                    self._notify(TaskEvent.DONE, task, result)
        finally:
            if self._status == TaskProcessorStatus.PROCESSING:
                self._status = TaskProcessorStatus.RUNNING

    # --- Queue ---

    def push_task(self, task: T):
        max_size = self.options.max_size
        if max_size > 0 and len(self._tasks) >= max_size:
            evicted = self.pop_task(self.options.canceling_priority == QueuePriority.FIFO)
            self._notify(TaskEvent.CANCELED, evicted)
        self._tasks.append(task)

    def pop_task(self, pop_first_in: bool = False) -> T:
        return self._tasks.popleft() if pop_first_in else self._tasks.pop()

    def find_task(self, predicate: Callable[[T], bool]) -> Optional[T]:
        return next((task for task in self._tasks if predicate(task)), None)

    def cancel_task(self, task: T, from_last: bool = False) -> bool:
        """
        Removes the first (or last) queued task equal to `task`.
        No event is emitted; the caller decides how to report it.
        """
        indexes = range(len(self._tasks) - 1, -1, -1) if from_last else range(len(self._tasks))
        for i in indexes:
            if self._tasks[i] == task:
                del self._tasks[i]
                return True
        return False

    def cancel_all_tasks(self):
        tasks, self._tasks = self._tasks, deque()
        for task in tasks:
            self._notify(TaskEvent.CANCELED, task)

    # --- Listeners ---

    def add_listener(self, event: Union[TaskEvent, str], listener: Callable[..., Any]):
        listeners = self._listeners[TaskEvent(event)]
        if listener not in listeners:
            listeners.append(listener)

    def remove_listener(self, event: Union[TaskEvent, str], listener: Callable[..., Any]):
        listeners = self._listeners[TaskEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    def _notify(self, event: TaskEvent, *args):
        """
        Calls the listeners of `event` in registration order. A listener that
        raises is logged and skipped; the error never reaches the caller, so
        one bad listener cannot stop the queue or starve the others.
        """
        # Copy so a listener may unregister itself while being called
        for listener in list(self._listeners[event]):
            try:
                listener(*args)
            except Exception:
                logging.exception(f"Listener for '{event.value}' failed")
