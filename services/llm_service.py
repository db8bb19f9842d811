"""
LLM Service
Handles communication with Google Gemini API using official library
"""

import asyncio
import logging
from typing import Optional

import google.generativeai as genai

from services.errors import LLMServiceError
from services.tokens import TOKEN_PATTERN

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"

TOKEN_INSTRUCTIONS = "\n".join([
    "You are a helpful assistant.",
    "The user prompt may contain placeholder tokens such as [NAM1-a2b3] or [EMA2-x9k4].",
    "Each token stands for a piece of personal information that has been anonymized.",
    "Treat tokens as opaque placeholders for the real data.",
    "When your answer refers to that information, copy the exact token verbatim so it can be restored.",
])


class LLMService:
    """
    Service for interacting with Google Gemini API.
    Only ever receives anonymized text.
    """

    def __init__(self, api_key: str = "", model_name: str = DEFAULT_MODEL):
        self.api_key = api_key
        self.model_name = model_name or DEFAULT_MODEL

        if not self.api_key:
            # Without an API key, echo tokens back so the round trip can be exercised
            logger.warning("GEMINI_API_KEY is not set; using mock LLM responses")
            self.use_mock = True
            self.model = None
        else:
            self.use_mock = False
            genai.configure(api_key=self.api_key)
            self.model = genai.GenerativeModel(self.model_name, system_instruction=TOKEN_INSTRUCTIONS)

    async def get_completion(self, prompt: str, model: Optional[str] = None) -> str:
        """
        Get completion from Google Gemini.

        Args:
            prompt: The anonymized prompt
            model: Optional model override

        Returns:
            LLM response text
        """
        if self.use_mock:
            return self._get_mock_response(prompt)

        gemini = self.model
        if model and model != self.model_name:
            gemini = genai.GenerativeModel(model, system_instruction=TOKEN_INSTRUCTIONS)

        try:
            # Run the synchronous Gemini API call in an executor to avoid blocking
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: gemini.generate_content(
                    prompt,
                    generation_config=genai.types.GenerationConfig(
                        temperature=0.7,
                        max_output_tokens=2048,
                    )
                )
            )
            # .text raises ValueError when the response was blocked
            text = (response.text or "").strip()
        except Exception as e:
            logger.error("Gemini API error: %s", e.__class__.__name__)
            raise LLMServiceError("Text generation failed") from e

        if not text:
            raise LLMServiceError("Empty response from Gemini API")
        return text

    def _get_mock_response(self, prompt: str) -> str:
        """Mock response that references every token found in the prompt"""
        tokens = list(dict.fromkeys(m.group(0) for m in TOKEN_PATTERN.finditer(prompt)))
        if not tokens:
            return "I understand your request. No personal details were shared."
        return f"I understand your request regarding {', '.join(tokens)}. " \
               f"I am processing it without access to the underlying personal data."
