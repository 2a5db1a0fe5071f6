#!/usr/bin/env python3
"""
Centralized error handling for the Lima assistant
"""

from typing import Optional, Dict, Any
import logging

from .messages import (
    GENERIC_FAILURE_MESSAGE,
    INTERNAL_ERROR_MESSAGE,
    LLM_UNAVAILABLE_MESSAGE,
    MALFORMED_ARGUMENTS_MESSAGE,
    SERVICE_UNAVAILABLE_MESSAGE,
    EMPTY_MESSAGE_REPLY,
)

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base exception for assistant errors"""
    def __init__(self, message: str, error_code: str = "WORKFLOW_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        logger.error(f"WorkflowError [{error_code}]: {message}")


class ValidationError(WorkflowError):
    """Empty or missing input, detected before any collaborator is called"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class UpstreamError(WorkflowError):
    """A collaborator (CRM, LLM) failed"""


class ServiceError(UpstreamError):
    """External service errors (Lima CRM)"""
    def __init__(self, message: str, service_name: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, f"SERVICE_ERROR_{service_name.upper()}", details)
        self.service_name = service_name


class LLMError(UpstreamError):
    """LLM-related errors"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "LLM_ERROR", details)


class MalformedFunctionArgumentsError(UpstreamError):
    """The LLM produced a function call whose arguments do not fit the declared schema"""
    def __init__(self, function_name: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Malformed arguments for {function_name}: {message}",
            "MALFORMED_FUNCTION_ARGUMENTS",
            details,
        )
        self.function_name = function_name


class ErrorHandler:
    """Maps errors onto fixed user-facing texts; internal detail never reaches the user"""

    @staticmethod
    def user_message(error: WorkflowError) -> str:
        if isinstance(error, ValidationError):
            return EMPTY_MESSAGE_REPLY
        if isinstance(error, MalformedFunctionArgumentsError):
            return MALFORMED_ARGUMENTS_MESSAGE
        if isinstance(error, LLMError):
            return LLM_UNAVAILABLE_MESSAGE
        if isinstance(error, ServiceError):
            return SERVICE_UNAVAILABLE_MESSAGE
        return GENERIC_FAILURE_MESSAGE

    @staticmethod
    def handle_workflow_error(error: WorkflowError) -> Dict[str, Any]:
        """Handle known errors and return the reply fields"""
        logger.error(f"Handling workflow error: {error.error_code} - {error.message}")
        return {
            "success": False,
            "response": ErrorHandler.user_message(error),
            "error_code": error.error_code,
        }

    @staticmethod
    def handle_generic_error(error: Exception) -> Dict[str, Any]:
        """Handle unexpected exceptions"""
        logger.exception(f"Handling generic error: {type(error).__name__} - {error}")
        return {
            "success": False,
            "response": INTERNAL_ERROR_MESSAGE,
            "error_code": "UNKNOWN_ERROR",
        }
