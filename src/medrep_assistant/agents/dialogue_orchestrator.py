#!/usr/bin/env python3
"""
Dialogue Orchestrator - LangGraph workflow running one conversational turn:
reset check, history window, LLM function calling and dispatch to the Lima
business operations.
"""

import json
import logging
from typing import Dict, Any, List, Optional, TypedDict

import pydantic
from langgraph.graph import StateGraph, END

from ..core.error_handling import (
    ErrorHandler,
    MalformedFunctionArgumentsError,
    ValidationError,
    WorkflowError,
)
from ..core.messages import (
    CONTEXT_CLEARED_MESSAGE,
    EMPTY_MESSAGE_ERROR,
    NO_REPLY_MESSAGE,
    SYSTEM_PROMPT,
)
from ..core.session_store import SessionStore, is_reset_command
from ..llm.open_client import ChatMessage
from ..llm.rate_limited_client import RateLimitedLLMClient
from ..models.conversation import MessageRole, TurnState
from ..models.schemas import AssistantResponse, FunctionArguments
from .function_schema import ARGUMENT_MODELS, FUNCTION_DESCRIPTORS
from .lima_functions import FailureReply, LimaFunctions

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 10


class TurnWorkflowState(TypedDict):
    """State for the LangGraph turn workflow"""
    # Input
    session_id: str
    message: str

    # Processing
    window: List[Dict[str, Any]]
    llm_message: Optional[ChatMessage]

    # Output
    success: bool
    response: Optional[str]
    function_name: Optional[str]
    context_cleared: bool
    error_code: Optional[str]


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


class DialogueOrchestrator:
    """Runs conversational turns against the session store, the LLM and the Lima functions"""

    def __init__(self, session_store: SessionStore, llm_client: RateLimitedLLMClient,
                 lima_functions: LimaFunctions, history_window: int = DEFAULT_HISTORY_WINDOW,
                 system_prompt: str = SYSTEM_PROMPT):
        if history_window < 2:
            raise ValueError("history_window must leave room for at least one stored message")
        self.session_store = session_store
        self.llm_client = llm_client
        self.lima_functions = lima_functions
        self.history_window = history_window
        self.system_prompt = system_prompt
        self.workflow = self._build_workflow()

    def _build_workflow(self):
        """Build the LangGraph workflow"""
        workflow = StateGraph(TurnWorkflowState)

        workflow.add_node("check_reset", self._check_reset)
        workflow.add_node("record_user_message", self._record_user_message)
        workflow.add_node("build_window", self._build_window)
        workflow.add_node("call_llm", self._call_llm)
        workflow.add_node("execute_function", self._execute_function)
        workflow.add_node("record_reply", self._record_reply)
        workflow.add_node("no_reply", self._no_reply)

        workflow.set_entry_point("check_reset")
        workflow.add_conditional_edges(
            "check_reset",
            self._after_reset_check,
            {
                "reset": END,
                "continue": "record_user_message",
            }
        )
        workflow.add_edge("record_user_message", "build_window")
        workflow.add_edge("build_window", "call_llm")
        workflow.add_conditional_edges(
            "call_llm",
            self._route_llm_reply,
            {
                "function": "execute_function",
                "text": "record_reply",
                "empty": "no_reply",
            }
        )
        workflow.add_edge("execute_function", END)
        workflow.add_edge("record_reply", END)
        workflow.add_edge("no_reply", END)

        return workflow.compile()

    # -- nodes -----------------------------------------------------------

    async def _check_reset(self, state: TurnWorkflowState) -> Dict[str, Any]:
        if not is_reset_command(state["message"]):
            return {}
        logger.info(f"Reset command in session {state['session_id']}")
        self.session_store.clear(state["session_id"])
        return {
            "success": True,
            "response": CONTEXT_CLEARED_MESSAGE,
            "context_cleared": True,
        }

    def _after_reset_check(self, state: TurnWorkflowState) -> str:
        return "reset" if state.get("context_cleared") else "continue"

    async def _record_user_message(self, state: TurnWorkflowState) -> Dict[str, Any]:
        self.session_store.append_message(state["session_id"], MessageRole.USER, state["message"])
        return {}

    async def _build_window(self, state: TurnWorkflowState) -> Dict[str, Any]:
        """System instruction followed by the most recent stored messages, oldest first"""
        recent = self.session_store.recent_messages(state["session_id"], self.history_window - 1)
        window = [{"role": MessageRole.SYSTEM.value, "content": self.system_prompt}]
        window.extend(message.to_llm_message() for message in recent)
        return {"window": window}

    async def _call_llm(self, state: TurnWorkflowState) -> Dict[str, Any]:
        completion = await self.llm_client.chat_completion(state["window"], FUNCTION_DESCRIPTORS)
        return {"llm_message": completion.first_message}

    def _route_llm_reply(self, state: TurnWorkflowState) -> str:
        message = state.get("llm_message")
        if message is None:
            return "empty"
        if message.function_call is not None and message.function_call.name:
            return "function"
        if message.content and message.content.strip():
            return "text"
        return "empty"

    async def _execute_function(self, state: TurnWorkflowState) -> Dict[str, Any]:
        session_id = state["session_id"]
        function_call = state["llm_message"].function_call
        function_name = function_call.name
        raw_arguments = function_call.arguments or "{}"

        try:
            arguments = self._prepare_arguments(session_id, function_name, raw_arguments)
        except MalformedFunctionArgumentsError as e:
            return ErrorHandler.handle_workflow_error(e)

        logger.info(f"[{TurnState.EXECUTING.value}] {function_name} in session {session_id}")
        result = await self.lima_functions.execute(session_id, function_name, arguments)

        if isinstance(result, FailureReply):
            # a failed turn keeps only the user message
            return {
                "success": False,
                "response": str(result),
                "function_name": function_name,
                "error_code": "OPERATION_FAILED",
            }

        # intent and result are recorded together, after the operation finished
        self.session_store.append_message(
            session_id, MessageRole.ASSISTANT, "",
            function_name=function_name, function_arguments=raw_arguments,
        )
        self.session_store.append_message(session_id, MessageRole.FUNCTION, str(result), function_name=function_name)

        return {"success": True, "response": str(result), "function_name": function_name}

    async def _record_reply(self, state: TurnWorkflowState) -> Dict[str, Any]:
        content = state["llm_message"].content.strip()
        self.session_store.append_message(state["session_id"], MessageRole.ASSISTANT, content)
        return {"success": True, "response": content}

    async def _no_reply(self, state: TurnWorkflowState) -> Dict[str, Any]:
        logger.warning(f"LLM returned neither text nor a function call for session {state['session_id']}")
        return {"success": False, "response": NO_REPLY_MESSAGE, "error_code": "EMPTY_LLM_REPLY"}

    # -- arguments -------------------------------------------------------

    def _prepare_arguments(self, session_id: str, function_name: str, raw_arguments: str) -> FunctionArguments:
        """Parse the raw JSON, fold in a pending operation of the same function and validate.

        The merged values reach the stored pending operation only once they
        validate, so a malformed follow-up leaves it as it was.
        """
        model = ARGUMENT_MODELS.get(function_name)
        if model is None:
            raise MalformedFunctionArgumentsError(function_name, "unknown function")

        try:
            parsed = json.loads(raw_arguments)
        except json.JSONDecodeError as e:
            raise MalformedFunctionArgumentsError(function_name, f"invalid JSON: {e}")
        if not isinstance(parsed, dict):
            raise MalformedFunctionArgumentsError(function_name, "arguments are not an object")

        pending = self.session_store.get_pending_operation(session_id)
        merging = pending is not None and pending.operation_type == function_name
        if merging:
            merged = dict(pending.parameters)
            merged.update({key: value for key, value in parsed.items() if not _is_empty(value)})
            logger.info(f"Merged pending {function_name} parameters: {sorted(merged)}")
            parsed = merged

        try:
            arguments = model.model_validate(parsed)
        except pydantic.ValidationError as e:
            raise MalformedFunctionArgumentsError(
                function_name,
                f"{e.error_count()} schema errors",
                {"errors": [error["loc"] for error in e.errors()]},
            )

        if merging:
            updated = self.session_store.update_pending_operation_parameters(session_id, parsed)
            if updated is not None and updated.is_complete:
                logger.info(f"Pending {function_name} has all parameters in session {session_id}")
        return arguments

    # -- entry point -----------------------------------------------------

    async def process_message(self, message: str, session_id: Optional[str] = None) -> AssistantResponse:
        """Process one user utterance and return the reply"""
        if message is None or not message.strip():
            error = ValidationError(EMPTY_MESSAGE_ERROR)
            return AssistantResponse(session_id=session_id, **ErrorHandler.handle_workflow_error(error))

        session_id = self.session_store.get(session_id).session_id
        initial_state = TurnWorkflowState(
            session_id=session_id,
            message=message.strip(),
            window=[],
            llm_message=None,
            success=False,
            response=None,
            function_name=None,
            context_cleared=False,
            error_code=None,
        )

        try:
            result = await self.workflow.ainvoke(initial_state)
            reply = {
                "success": result.get("success", False),
                "response": result.get("response") or NO_REPLY_MESSAGE,
                "function_name": result.get("function_name"),
                "context_cleared": result.get("context_cleared", False),
                "error_code": result.get("error_code"),
            }
        except WorkflowError as e:
            reply = ErrorHandler.handle_workflow_error(e)
        except Exception as e:
            reply = ErrorHandler.handle_generic_error(e)

        return AssistantResponse(session_id=session_id, turn_state=self._turn_state(session_id), **reply)

    def _turn_state(self, session_id: str) -> TurnState:
        # a pending operation waits for more input or for a retry after a failure
        if self.session_store.get_pending_operation(session_id) is not None:
            return TurnState.AWAITING_SLOT_FILL
        return TurnState.IDLE
