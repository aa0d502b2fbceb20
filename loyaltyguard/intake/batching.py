"""
Intake batching: group images that arrive in quick succession into one
submission.

Per conversation:

    Idle ──image──> Collecting ──quiet period──> Processing ──done──> Idle
                     ^   │ image: append, restart timer        │
                     └───┘                                     │
                     image while Processing starts a new batch ┘

Images are only accepted while the conversation is in "expecting image"
mode. The debounce timer is an asyncio TimerHandle owned by the
conversation state; every new image cancels and replaces it, so a batch is
dispatched exactly once, after DEBOUNCE seconds without a new image.

All state is mutated on the event loop thread only; conversations never
share state. A conversation's state is dropped once it is idle, out of
upload mode and has no batch in flight. The dispatch callable is blocking
and runs in the default executor as a fire-and-forget task whose errors
are logged, never raised to the webhook.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from loyaltyguard.errors import FatalSubmissionError

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0


class BatchState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    PROCESSING = "processing"


class InboundResult(str, Enum):
    """What happened to an inbound image."""
    STARTED_BATCH = "started_batch"  # first image of a batch: acknowledge it
    APPENDED = "appended"
    IGNORED = "ignored"  # conversation was not expecting an image


@dataclass(frozen=True)
class Batch:
    """One submission: every media reference collected in a debounce window."""
    batch_id: str
    conversation_id: str
    submitter_id: Optional[str]
    media_refs: Tuple[str, ...]


@dataclass
class ConversationBatchState:
    conversation_id: str
    expecting_image: bool = False
    pending_images: List[str] = field(default_factory=list)
    submitter_id: Optional[str] = None
    state: BatchState = BatchState.IDLE
    debounce_deadline: Optional[float] = None
    timer: Optional[asyncio.TimerHandle] = None
    in_flight: int = 0


class IntakeBatcher:
    """
    Keyed store of conversation batch states plus their debounce timers.

    Args:
        dispatch: blocking callable that processes one Batch
        debounce_seconds: quiet period that closes a batch
        on_failure: blocking callable(batch, error) invoked when dispatch raises
    """

    def __init__(
        self,
        dispatch: Callable[[Batch], object],
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_failure: Optional[Callable[[Batch, Exception], None]] = None,
    ):
        self.dispatch = dispatch
        self.debounce_seconds = debounce_seconds
        self.on_failure = on_failure
        self._states: Dict[str, ConversationBatchState] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Conversation mode
    # ------------------------------------------------------------------

    def _state(self, conversation_id: str) -> ConversationBatchState:
        state = self._states.get(conversation_id)
        if state is None:
            state = ConversationBatchState(conversation_id=conversation_id)
            self._states[conversation_id] = state
        return state

    def _release(self, state: ConversationBatchState) -> None:
        """Forget a conversation once it holds nothing worth keeping."""
        if (
            state.state == BatchState.IDLE
            and not state.expecting_image
            and not state.pending_images
            and state.in_flight == 0
            and state.timer is None
        ):
            self._states.pop(state.conversation_id, None)

    @property
    def tracked_conversations(self) -> int:
        return len(self._states)

    def expect_image(self, conversation_id: str, submitter_id: Optional[str] = None) -> None:
        """Arm "expecting image" mode (user chose to upload a receipt)."""
        state = self._state(conversation_id)
        state.expecting_image = True
        if submitter_id:
            state.submitter_id = submitter_id

    def stop_expecting(self, conversation_id: str) -> None:
        """Leave upload mode. Images already collected are still dispatched."""
        state = self._states.get(conversation_id)
        if state is not None:
            state.expecting_image = False
            self._release(state)

    def is_expecting(self, conversation_id: str) -> bool:
        state = self._states.get(conversation_id)
        return bool(state and state.expecting_image)

    def state_of(self, conversation_id: str) -> BatchState:
        state = self._states.get(conversation_id)
        return state.state if state else BatchState.IDLE

    # ------------------------------------------------------------------
    # Inbound images
    # ------------------------------------------------------------------

    def on_inbound_image(
        self,
        conversation_id: str,
        media_ref: str,
        submitter_id: Optional[str] = None,
    ) -> InboundResult:
        """
        Feed one inbound image. Must be called from the event loop thread.

        Returns STARTED_BATCH for the first image of a batch (the caller
        acknowledges it), APPENDED for later ones, IGNORED when the
        conversation is not in upload mode.
        """
        state = self._states.get(conversation_id)
        if state is None or not state.expecting_image:
            logger.debug(f"Image from {conversation_id} ignored (not expecting an image)")
            return InboundResult.IGNORED

        if submitter_id:
            state.submitter_id = submitter_id

        started = not state.pending_images
        state.pending_images.append(media_ref)
        state.state = BatchState.COLLECTING

        loop = asyncio.get_running_loop()
        if state.timer is not None:
            state.timer.cancel()
        state.timer = loop.call_later(self.debounce_seconds, self._on_debounce_expired, conversation_id)
        state.debounce_deadline = loop.time() + self.debounce_seconds

        if started:
            logger.info(f"Batch started for {conversation_id}")
            return InboundResult.STARTED_BATCH
        logger.debug(f"Image {len(state.pending_images)} appended for {conversation_id}")
        return InboundResult.APPENDED

    def _on_debounce_expired(self, conversation_id: str) -> None:
        state = self._states.get(conversation_id)
        if state is None:
            return

        # Snapshot and reset in one step; nothing else runs on the loop meanwhile
        media_refs = tuple(state.pending_images)
        state.pending_images = []
        state.timer = None
        state.debounce_deadline = None
        if not media_refs:
            self._release(state)
            return

        batch = Batch(
            batch_id=uuid.uuid4().hex[:12],
            conversation_id=conversation_id,
            submitter_id=state.submitter_id,
            media_refs=media_refs,
        )
        state.state = BatchState.PROCESSING
        state.in_flight += 1
        logger.info(f"Dispatching batch {batch.batch_id} for {conversation_id} with {len(media_refs)} image(s)")

        task = asyncio.get_running_loop().create_task(self._run(state, batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, state: ConversationBatchState, batch: Batch) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.dispatch, batch)
        except FatalSubmissionError as e:
            logger.error(f"Batch {batch.batch_id} aborted: {e}")
            await self._report_failure(batch, e)
        except Exception as e:
            logger.exception(f"Batch {batch.batch_id} failed: {e}")
            await self._report_failure(batch, e)
        finally:
            state.in_flight -= 1
            if state.in_flight == 0 and state.state == BatchState.PROCESSING:
                state.state = BatchState.IDLE
            self._release(state)

    async def _report_failure(self, batch: Batch, error: Exception) -> None:
        if self.on_failure is None:
            return
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.on_failure, batch, error)
        except Exception as e:
            logger.error(f"Failure notification for batch {batch.batch_id} failed: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drain(self) -> None:
        """Wait until every dispatched batch has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_timers(self) -> None:
        """Cancel pending debounce timers (shutdown). Uncollected images are dropped."""
        for state in list(self._states.values()):
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
            if state.pending_images:
                logger.warning(
                    f"Dropping {len(state.pending_images)} uncollected image(s) for {state.conversation_id}"
                )
                state.pending_images = []
            if state.in_flight == 0:
                state.state = BatchState.IDLE
            self._release(state)
