import re
import uuid
import asyncio
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..models.conversation import (
    ConversationContext,
    ConversationMessage,
    MessageRole,
    PendingOperation,
    utcnow,
)

logger = logging.getLogger(__name__)


_RESET_PATTERNS = [
    re.compile(r"\b(отмена|отменить|отмени|cancel)\b", re.IGNORECASE),
    re.compile(r"\b(очисти|очисть|очистить|сбрось|clear|reset)\b(\s*(контекст|context)\b)?", re.IGNORECASE),
    re.compile(r"\b(сначала|заново|restart)\b", re.IGNORECASE),
    re.compile(r"\b(стоп|stop)\b", re.IGNORECASE),
]


def is_reset_command(message: Optional[str]) -> bool:
    """True when the utterance asks to cancel / clear / restart / stop"""
    if not message:
        return False
    return any(pattern.search(message) for pattern in _RESET_PATTERNS)


class SessionStore:
    """In-memory conversation contexts keyed by session id.

    Every public method works on copies: contexts handed out are snapshots and
    changes only reach the store through `save` or the mutation helpers. A
    single lock guards the map; critical sections never await, so the store
    can be shared by event-loop tasks and worker threads.
    """

    def __init__(self, max_age: timedelta = timedelta(hours=2),
                 cleanup_interval: timedelta = timedelta(minutes=30)):
        self.max_age = max_age
        self.cleanup_interval = cleanup_interval
        self._contexts: Dict[str, ConversationContext] = {}
        self._lock = threading.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    # -- lifecycle -------------------------------------------------------

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    def start(self) -> None:
        """Start the periodic cleanup task on the running loop"""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        logger.info(f"Session cleanup started: every {self.cleanup_interval}, max age {self.max_age}")

    async def stop(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Session cleanup stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval.total_seconds())
            try:
                self.cleanup_expired(self.max_age)
            except Exception as e:
                # keep the sweeper alive; the next run retries
                logger.error(f"Session cleanup failed: {e}")

    # -- contexts --------------------------------------------------------

    def _get_or_create(self, session_id: Optional[str]) -> ConversationContext:
        if not session_id or not session_id.strip():
            session_id = str(uuid.uuid4())
        context = self._contexts.get(session_id)
        if context is None:
            context = ConversationContext(session_id=session_id)
            self._contexts[session_id] = context
            logger.info(f"Created session: {session_id}")
        return context

    def get(self, session_id: Optional[str] = None) -> ConversationContext:
        """Context for `session_id`, created when unknown (new id when empty)"""
        with self._lock:
            return self._get_or_create(session_id).model_copy(deep=True)

    def save(self, context: ConversationContext) -> None:
        """Replace the stored context wholesale (last write wins)"""
        with self._lock:
            self._contexts[context.session_id] = context.model_copy(deep=True)

    def remove(self, session_id: str) -> bool:
        with self._lock:
            removed = self._contexts.pop(session_id, None) is not None
        if removed:
            logger.info(f"Removed session: {session_id}")
        return removed

    def clear(self, session_id: str) -> ConversationContext:
        """Drop history and pending operation, keep the session itself"""
        with self._lock:
            context = self._get_or_create(session_id)
            context.clear()
            logger.info(f"Cleared session: {session_id}")
            return context.model_copy(deep=True)

    def append_message(self, session_id: str, role: MessageRole, content: str,
                       function_name: Optional[str] = None,
                       function_arguments: Optional[str] = None) -> ConversationContext:
        message = ConversationMessage(
            role=role,
            content=content or "",
            function_name=function_name,
            function_arguments=function_arguments,
        )
        with self._lock:
            context = self._get_or_create(session_id)
            context.add_message(message)
            logger.debug(f"Added message to {session_id}: {role.value} ({len(message.content)} chars)")
            return context.model_copy(deep=True)

    def recent_messages(self, session_id: str, limit: int) -> List[ConversationMessage]:
        """The last `limit` stored messages, oldest first"""
        if limit <= 0:
            return []
        with self._lock:
            context = self._get_or_create(session_id)
            return [message.model_copy(deep=True) for message in context.messages[-limit:]]

    # -- pending operations ----------------------------------------------

    def set_pending_operation(self, session_id: str, operation_type: str,
                              parameters: Optional[Dict[str, Any]] = None,
                              missing_parameters: Optional[List[str]] = None,
                              next_question: Optional[str] = None) -> PendingOperation:
        """Install a pending operation, replacing any previous one"""
        operation = PendingOperation(
            operation_type=operation_type,
            parameters=dict(parameters or {}),
            missing_parameters=list(dict.fromkeys(missing_parameters or [])),
            next_question=next_question,
        )
        with self._lock:
            context = self._get_or_create(session_id)
            if context.pending_operation is not None:
                logger.info(
                    f"Replacing pending {context.pending_operation.operation_type} "
                    f"with {operation_type} in {session_id}"
                )
            context.pending_operation = operation
            context.touch()
            return operation.model_copy(deep=True)

    def get_pending_operation(self, session_id: str) -> Optional[PendingOperation]:
        with self._lock:
            context = self._contexts.get(session_id)
            if context is None or context.pending_operation is None:
                return None
            return context.pending_operation.model_copy(deep=True)

    def update_pending_operation_parameters(self, session_id: str,
                                            updates: Dict[str, Any]) -> Optional[PendingOperation]:
        """Merge values into the pending operation; None when there is none"""
        with self._lock:
            context = self._contexts.get(session_id)
            if context is None or context.pending_operation is None:
                return None
            context.pending_operation.merge_parameters(updates)
            context.touch()
            return context.pending_operation.model_copy(deep=True)

    def complete_pending_operation(self, session_id: str) -> None:
        with self._lock:
            context = self._contexts.get(session_id)
            if context is None or context.pending_operation is None:
                return
            logger.info(f"Completed pending {context.pending_operation.operation_type} in {session_id}")
            context.pending_operation = None
            context.touch()

    # -- housekeeping ----------------------------------------------------

    def cleanup_expired(self, max_age: Optional[timedelta] = None, now: Optional[datetime] = None) -> int:
        """Remove contexts idle for longer than `max_age`; returns how many went"""
        max_age = max_age or self.max_age
        cutoff = (now or utcnow()) - max_age
        with self._lock:
            expired = [sid for sid, context in self._contexts.items() if context.last_updated < cutoff]
            for sid in expired:
                del self._contexts[sid]

        for sid in expired:
            logger.info(f"Cleaned up expired session: {sid}")
        return len(expired)

    def active_sessions(self) -> List[str]:
        with self._lock:
            return list(self._contexts.keys())

    def get_session_stats(self) -> Dict[str, Any]:
        with self._lock:
            contexts = list(self._contexts.values())
            return {
                "total_sessions": len(contexts),
                "total_messages": sum(len(context.messages) for context in contexts),
                "pending_operations": sum(1 for context in contexts if context.pending_operation),
                "oldest_session": min((context.created_at for context in contexts), default=None),
                "newest_activity": max((context.last_updated for context in contexts), default=None),
            }
