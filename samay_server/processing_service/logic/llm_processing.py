# samay_server/processing_service/logic/llm_processing.py
"""
LLM processing module for the Samay background jobs.
Wraps the Google Gemini client behind a single structured-output call used by
the tagging and daily insight jobs.
"""

import asyncio
import logging
from typing import Optional, Type, TypeVar

from google import genai
from google.genai import types as genai_types
from pydantic import BaseModel, ValidationError

log = logging.getLogger(__name__)

ResponseModel = TypeVar("ResponseModel", bound=BaseModel)


class LLMError(Exception):
    """Raised when the text-generation service cannot produce a usable structured response."""


class StructuredLLMClient:
    """Sends a system + user prompt pair to Gemini and parses the JSON reply into a pydantic model."""

    def __init__(self, api_key: str, client: Optional[genai.Client] = None):
        self.api_key = api_key
        self.client = client
        self._client_initialized = client is not None

    def _initialize_client(self):
        """Lazy initialization of the LLM client."""
        if self._client_initialized:
            return
        self._client_initialized = True
        if not self.api_key:
            log.error("GEMINI_API_KEY not configured. LLM processing will be disabled.")
            return
        try:
            self.client = genai.Client(api_key=self.api_key)
            log.info("Gemini client initialized successfully")
        except Exception as e:
            log.error(f"Failed to initialize Gemini client: {e}. LLM processing will be disabled.", exc_info=True)
            self.client = None

    async def generate(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        response_model: Type[ResponseModel],
        temperature: float = 0.2,
    ) -> ResponseModel:
        """
        Calls the model with `response_model` as the response schema.

        Raises:
            LLMError: the client is unavailable, the prompt was blocked, or the
                reply does not validate against `response_model`.
        """
        self._initialize_client()
        if not self.client:
            raise LLMError("LLM client not available")

        config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt,
            response_mime_type="application/json",
            response_schema=response_model,
            temperature=temperature,
        )
        try:
            response = await asyncio.to_thread(
                self.client.models.generate_content,
                model=model,
                contents=user_prompt,
                config=config,
            )
        except Exception as e:
            raise LLMError(f"Gemini request failed: {e}") from e

        if response.prompt_feedback and response.prompt_feedback.block_reason:
            raise LLMError(f"Prompt blocked by Gemini: {response.prompt_feedback.block_reason}")

        if isinstance(response.parsed, response_model):
            return response.parsed

        if not response.text:
            raise LLMError("Empty response from LLM")
        try:
            return response_model.model_validate_json(response.text)
        except ValidationError as e:
            raise LLMError(f"Failed to parse LLM JSON response: {e}. Response text: {response.text[:500]}") from e
