"""
Gemini client (google-generativeai).

Used as the primary model for requirement generation, with OpenAI as
the fallback.

Environment:
    GEMINI_API_KEY must be set
"""

import os
import logging

import google.generativeai as genai


logger = logging.getLogger(__name__)


class GeminiClient:
    """Thin wrapper around genai.GenerativeModel."""

    def __init__(self, model: str = "gemini-2.0-flash"):
        api_key = os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ValueError("GEMINI_API_KEY environment variable is required")

        genai.configure(api_key=api_key)
        self.model_name = model
        self.model = genai.GenerativeModel(model)

        logger.info(f"Gemini client initialized: {self.model_name}")

    def generate(self, prompt: str, temperature: float = 0.2, max_output_tokens: int = 8192) -> str:
        """
        Generate text for a single user prompt.

        Raises:
            Exception: If API call fails
        """
        try:
            response = self.model.generate_content(
                prompt,
                generation_config={
                    "temperature": temperature,
                    "max_output_tokens": max_output_tokens,
                },
            )
            return response.text or ""
        except Exception as e:
            logger.error(f"Gemini generate_content failed: {e}")
            raise
