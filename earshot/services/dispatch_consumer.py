"""Worker pool that runs dispatches and streams replies to a callback."""

import time
import asyncio
import logging
import threading
import queue
import uuid
from typing import Callable, NamedTuple, Optional, Union

from ..errors import EarshotError
from ..models.audio import AudioSegment
from ..models.dispatch import AudioPayload, ImagePayload, TaskCategory, TextPayload
from ..models.events import ReplyEvent
from .conversation import ConversationLog
from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)


class DispatchTask(NamedTuple):
    """A task to be processed by a worker thread."""
    request_id: str
    category: TaskCategory
    payload: Union[TextPayload, ImagePayload, AudioPayload]


class DispatchConsumer:
    """Manages a pool of worker threads, each with its own event loop.

    Segments arrive on the capture thread and are queued in capture order.
    Workers run dispatches concurrently, so replies may finish out of order.
    """

    def __init__(self,
                 dispatcher: Dispatcher,
                 result_callback: Optional[Callable[[ReplyEvent], None]] = None,
                 conversation: Optional[ConversationLog] = None,
                 audio_prompt: str = "",
                 system_prompt: str = "",
                 max_concurrent_threads: int = 4):
        self.dispatcher = dispatcher
        self.result_callback = result_callback
        self.conversation = conversation
        self.audio_prompt = audio_prompt
        self.system_prompt = system_prompt
        self.max_concurrent_threads = max_concurrent_threads

        self.task_queue = queue.Queue()
        self.worker_threads = []
        self.shutdown_event = threading.Event()

        # Statistics
        self.completed = 0
        self.failed = 0

        self._start_workers()

    def _start_workers(self):
        """Create and start the pool of worker threads."""
        for i in range(self.max_concurrent_threads):
            thread = threading.Thread(target=self._worker_loop)
            thread.name = f"dispatch_worker_{i}"
            thread.daemon = True
            thread.start()
            self.worker_threads.append(thread)
        logger.info(f"Started {len(self.worker_threads)} dispatch workers")

    def _worker_loop(self):
        """The main loop for each worker thread. Initializes an asyncio loop."""
        thread_name = threading.current_thread().name
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        try:
            while True:
                task = self.task_queue.get()
                if task is None:
                    logger.debug(f"Worker {thread_name} received sentinel, exiting.")
                    self.task_queue.task_done()
                    break

                try:
                    loop.run_until_complete(self._run_task(task))
                except Exception as e:
                    logger.error(f"Unhandled exception in dispatch task {task.request_id}: {e}",
                                 exc_info=True)
                finally:
                    self.task_queue.task_done()
        finally:
            loop.close()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _submit(self, category: TaskCategory, payload) -> Optional[str]:
        if self.shutdown_event.is_set():
            logger.warning(f"Dropping {category.value} request submitted after shutdown")
            return None
        request_id = uuid.uuid4().hex[:8]
        self.task_queue.put(DispatchTask(request_id, category, payload))
        logger.debug(f"Queued {category.value} request {request_id}")
        return request_id

    def on_segment(self, segment: AudioSegment) -> None:
        """Pub/sub listener for committed speech segments."""
        self._submit(TaskCategory.AUDIO_TO_TEXT,
                     AudioPayload(segment=segment, prompt=self.audio_prompt,
                                  system_prompt=self.system_prompt))

    def submit_text(self, prompt: str) -> Optional[str]:
        return self._submit(TaskCategory.TEXT_MESSAGE,
                            TextPayload(prompt=prompt, system_prompt=self.system_prompt))

    def submit_image(self, image_base64: str, prompt: str) -> Optional[str]:
        return self._submit(TaskCategory.SCREEN_ANALYSIS,
                            ImagePayload(image_base64=image_base64, prompt=prompt,
                                         system_prompt=self.system_prompt))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_task(self, task: DispatchTask) -> None:
        started = time.time()
        try:
            result = await self.dispatcher.dispatch_category(task.category, task.payload)
            pieces = []
            async for text in result.stream:
                pieces.append(text)
                self._emit(ReplyEvent(request_id=task.request_id, text=text,
                                      provider=result.provider.value, model=result.model))
        except EarshotError as e:
            self.failed += 1
            logger.error(f"Request {task.request_id} failed: {e}")
            self._emit(ReplyEvent(request_id=task.request_id, text=e.message, final=True,
                                  error_code=e.code))
            return

        response = "".join(pieces)
        transcription = result.transcription
        if self.conversation is not None:
            question = transcription if transcription is not None else getattr(task.payload, "prompt", "")
            self.conversation.save_turn(question, response)

        self.completed += 1
        logger.info(f"Request {task.request_id} answered by {result.provider.value}:{result.model} "
                    f"in {time.time() - started:.2f}s ({len(response)} chars)")
        self._emit(ReplyEvent(request_id=task.request_id, final=True,
                              provider=result.provider.value, model=result.model,
                              transcription=transcription))

    def _emit(self, event: ReplyEvent) -> None:
        if not self.result_callback:
            return
        try:
            self.result_callback(event)
        except Exception as e:
            logger.error(f"Error in reply callback: {e}", exc_info=True)

    def shutdown(self, timeout: float = 30.0) -> bool:
        """Let queued work finish, then stop the workers.

        Returns:
            True if every worker exited within the timeout
        """
        logger.info("Shutting down dispatch consumer...")
        self.shutdown_event.set()

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.task_queue.unfinished_tasks == 0:
                break
            time.sleep(0.05)
        else:
            logger.warning(f"Dispatch queue not drained after {timeout}s")

        for _ in self.worker_threads:
            self.task_queue.put(None)
        for thread in self.worker_threads:
            thread.join(timeout=max(0.1, deadline - time.time()))

        success = not any(t.is_alive() for t in self.worker_threads)
        logger.info(f"Dispatch consumer shutdown complete: success={success}")
        return success
