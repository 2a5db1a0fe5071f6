#!/usr/bin/env python3
"""
Rate-limited LLM client to prevent API limits and ensure service stability
"""

import asyncio
import time
from typing import Optional, Dict, Any, List
from collections import deque
import logging

from .open_client import OpenAIClient, ChatCompletion

logger = logging.getLogger(__name__)


class RateLimitedLLMClient:
    """Rate-limited wrapper around LLM client"""

    def __init__(self, llm_client: OpenAIClient, max_calls_per_minute: int = 60, max_calls_per_second: int = 10):
        self.llm_client = llm_client
        self.max_calls_per_minute = max_calls_per_minute
        self.max_calls_per_second = max_calls_per_second

        # Track call times
        self.call_times = deque()
        self.last_call_time = 0.0
        self._lock = asyncio.Lock()

        logger.info(f"RateLimitedLLMClient initialized: {max_calls_per_minute}/min, {max_calls_per_second}/sec")

    async def chat_completion(self, messages: List[Dict[str, Any]],
                              functions: Optional[List[Dict[str, Any]]] = None) -> ChatCompletion:
        """Chat completion with rate limiting; errors of the wrapped client propagate"""
        async with self._lock:
            await self._check_rate_limits()
            current_time = time.time()
            # failed attempts count too, so a failing API is not hammered
            self.call_times.append(current_time)
            self.last_call_time = current_time

        started = time.time()
        completion = await self.llm_client.chat_completion(messages, functions)
        logger.debug(f"LLM API call completed in {time.time() - started:.3f}s")
        return completion

    async def _check_rate_limits(self):
        """Check and enforce rate limits"""
        current_time = time.time()

        # Remove old call times (older than 1 minute)
        while self.call_times and current_time - self.call_times[0] > 60:
            self.call_times.popleft()

        # Check per-minute limit
        if len(self.call_times) >= self.max_calls_per_minute:
            wait_time = 60 - (current_time - self.call_times[0])
            if wait_time > 0:
                logger.warning(f"Rate limit exceeded. Waiting {wait_time:.2f} seconds")
                await asyncio.sleep(wait_time)

        # Check per-second limit
        current_time = time.time()
        if current_time - self.last_call_time < 1.0 / self.max_calls_per_second:
            wait_time = 1.0 / self.max_calls_per_second - (current_time - self.last_call_time)
            if wait_time > 0:
                logger.debug(f"Per-second rate limit. Waiting {wait_time:.2f} seconds")
                await asyncio.sleep(wait_time)

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiting statistics"""
        current_time = time.time()

        # Clean old call times
        while self.call_times and current_time - self.call_times[0] > 60:
            self.call_times.popleft()

        return {
            "calls_last_minute": len(self.call_times),
            "max_calls_per_minute": self.max_calls_per_minute,
            "max_calls_per_second": self.max_calls_per_second,
            "last_call_time": self.last_call_time,
            "time_since_last_call": current_time - self.last_call_time if self.last_call_time else None
        }

    def is_configured(self) -> bool:
        """Check if underlying LLM client is configured"""
        return self.llm_client.is_configured()

    async def aclose(self) -> None:
        await self.llm_client.aclose()
