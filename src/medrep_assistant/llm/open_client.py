import httpx
import json
import logging
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from ..core.error_handling import LLMError

logger = logging.getLogger(__name__)


class FunctionCall(BaseModel):
    name: str
    arguments: str = "{}"


class ChatMessage(BaseModel):
    role: str = "assistant"
    content: Optional[str] = None
    function_call: Optional[FunctionCall] = None


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage = Field(default_factory=ChatMessage)
    finish_reason: Optional[str] = None


class ChatCompletion(BaseModel):
    id: Optional[str] = None
    model: Optional[str] = None
    choices: List[ChatChoice] = Field(default_factory=list)

    @property
    def first_message(self) -> Optional[ChatMessage]:
        """Only the first choice is ever used"""
        return self.choices[0].message if self.choices else None


class OpenAIClient:
    """Async chat-completion client with legacy function calling"""

    def __init__(self, api_key: Optional[str] = None, base_url: str = "https://api.openai.com/v1",
                 model: str = "gpt-4o-mini", max_tokens: int = 1000, temperature: float = 0.1,
                 timeout: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

        if not self.api_key:
            logger.warning("OPENAI_API_KEY not found in environment variables. LLM responses will fail.")

    async def aclose(self) -> None:
        await self.client.aclose()

    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key != "your_openai_api_key_here")

    async def chat_completion(self, messages: List[Dict[str, Any]],
                              functions: Optional[List[Dict[str, Any]]] = None) -> ChatCompletion:
        """Send the message window (and function descriptors) and return the parsed completion"""
        if not self.is_configured():
            raise LLMError("OpenAI API key not configured. Please set OPENAI_API_KEY in .env file")

        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if functions:
            payload["functions"] = functions
            payload["function_call"] = "auto"

        logger.info(f"Sending {len(messages)} messages to LLM ({self.model}, {len(functions or [])} functions)")
        try:
            response = await self.client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            completion = ChatCompletion.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 401:
                logger.error("OpenAI API key invalid or expired. Please check your OPENAI_API_KEY")
            elif status_code == 429:
                logger.error("OpenAI API rate limit exceeded. Please try again later")
            raise LLMError(f"OpenAI API HTTP error {status_code}", {"status_code": status_code}) from e
        except httpx.TimeoutException as e:
            raise LLMError("OpenAI API request timeout") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Error calling LLM API: {e}") from e
        except (ValueError, json.JSONDecodeError) as e:
            raise LLMError(f"Unexpected LLM API response: {e}") from e

        logger.info(f"LLM replied with {len(completion.choices)} choices")
        return completion
