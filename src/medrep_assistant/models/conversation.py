from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field


MAX_MESSAGES = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


class TurnState(str, Enum):
    """Where a session stands between turns"""
    IDLE = "idle"
    AWAITING_SLOT_FILL = "awaiting_slot_fill"
    EXECUTING = "executing"


class ConversationMessage(BaseModel):
    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    function_name: Optional[str] = None
    # Raw JSON exactly as produced by the LLM
    function_arguments: Optional[str] = None

    def to_llm_message(self) -> Dict[str, Any]:
        """Chat-completion wire form of the message"""
        message: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.role == MessageRole.ASSISTANT and self.function_name:
            message["function_call"] = {
                "name": self.function_name,
                "arguments": self.function_arguments or "{}",
            }
        elif self.role == MessageRole.FUNCTION:
            message["name"] = self.function_name or "unknown"
        return message


class PendingOperation(BaseModel):
    """A multi-turn operation that is waiting for the user to supply missing values"""
    operation_type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    missing_parameters: List[str] = Field(default_factory=list)
    next_question: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    def merge_parameters(self, updates: Dict[str, Any]) -> None:
        """Overlay new values and drop them from the missing list"""
        for key, value in updates.items():
            if value is None or value == "" or value == []:
                continue
            self.parameters[key] = value
        self.missing_parameters = [
            name for name in dict.fromkeys(self.missing_parameters)
            if name not in self.parameters
        ]

    @property
    def is_complete(self) -> bool:
        return not self.missing_parameters


class ConversationContext(BaseModel):
    session_id: str
    messages: List[ConversationMessage] = Field(default_factory=list)
    pending_operation: Optional[PendingOperation] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)

    def touch(self) -> None:
        now = utcnow()
        # never move backwards, even if the wall clock does
        if now > self.last_updated:
            self.last_updated = now

    def add_message(self, message: ConversationMessage) -> None:
        self.messages.append(message)
        if len(self.messages) > MAX_MESSAGES:
            self.messages = self.messages[-MAX_MESSAGES:]
        self.touch()

    def clear(self) -> None:
        self.messages = []
        self.pending_operation = None
        self.touch()

    @property
    def turn_state(self) -> TurnState:
        if self.pending_operation is not None:
            return TurnState.AWAITING_SLOT_FILL
        return TurnState.IDLE
