"""Gemini inference adapter with retries and rate limiting."""

from typing import Optional

import google.generativeai as genai
from loguru import logger
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from research_agent.llm.inference import InferenceResult
from research_agent.llm.rate_limiter import RateLimiter

# Rough characters-per-token ratio for budgeting before a call is made
CHARS_PER_TOKEN = 4


class GeminiInferenceService:
    """
    Google Gemini implementation of the inference service.

    Transient failures are retried with exponential backoff; exhausted retries
    and blocked prompts come back as ``InferenceResult(success=False)`` so the
    caller's heuristic path takes over.

    Attributes:
        model: Configured Gemini generative model instance
    """

    def __init__(
        self,
        api_key: str,
        model_name: str,
        rate_limiter: Optional[RateLimiter] = None,
        temperature: float = 0.2,
        max_attempts: int = 3,
    ):
        """
        Initialize the adapter.

        Args:
            api_key: Gemini API key
            model_name: Gemini model identifier
            rate_limiter: Optional shared limiter for RPM/TPM budgets
            temperature: Sampling temperature. Lower = more deterministic
            max_attempts: Attempts per call including the first

        Raises:
            ValueError: If the API key is empty
        """
        if not api_key:
            raise ValueError("GEMINI_API_KEY not configured in environment")

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)
        self.rate_limiter = rate_limiter
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.logger = logger.bind(component="GeminiInferenceService")
        self.logger.info(f"Gemini inference initialized with model {model_name}")

    async def complete(self, prompt: str, context: Optional[str] = None) -> InferenceResult:
        """
        Generate a completion.

        Args:
            prompt: Instruction prompt
            context: Optional material appended after the prompt

        Returns:
            InferenceResult with the response text, or the error message
        """
        full_prompt = f"{prompt}\n\n{context}" if context else prompt

        if self.rate_limiter:
            await self.rate_limiter.acquire(len(full_prompt) // CHARS_PER_TOKEN + 1)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                reraise=False,
            ):
                with attempt:
                    response = await self.model.generate_content_async(
                        full_prompt,
                        generation_config=genai.types.GenerationConfig(
                            temperature=self.temperature,
                        ),
                    )
                    text = response.text
        except RetryError as e:
            cause = e.last_attempt.exception()
            self.logger.warning(f"Inference failed after {self.max_attempts} attempts: {cause}")
            return InferenceResult(success=False, error=str(cause))

        return InferenceResult(success=True, result=text)
