"""
LLM client for OpenAI chat, vision and speech-to-text.

Environment:
    OPENAI_API_KEY must be set

Usage:
    from src.llm.client import LLMClient

    client = LLMClient()
    response = client.chat([
        {"role": "system", "content": "You are a helpful assistant."},
        {"role": "user", "content": "Hello!"}
    ])
"""

import os
import io
import base64
import logging
from typing import List, Dict, Optional, Any

from openai import OpenAI

logger = logging.getLogger(__name__)


class LLMClient:
    """
    OpenAI client used by every extractor and generator.

    Each call may override the default model; the service uses several
    (gpt-4o-mini for extraction, gpt-4o for editing, whisper-1 for audio).
    """

    def __init__(self, model: str = "gpt-4o-mini"):
        """
        Initialize OpenAI client.

        Args:
            model: Default chat model

        Raises:
            ValueError: If OPENAI_API_KEY not set
        """
        api_key = os.getenv("OPENAI_API_KEY")

        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required")

        self.client = OpenAI(api_key=api_key)
        self.model = model

        logger.info(f"LLM client initialized: {self.model}")

    def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = 0.4,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        json_mode: bool = False,
        max_completion_tokens: Optional[int] = None,
    ) -> str:
        """
        Send chat completion request.

        Args:
            messages: List of message dicts with "role" and "content"
            temperature: Sampling temperature, None to use the model default
            max_tokens: Maximum tokens in response
            model: Model override for this call
            json_mode: Request response_format json_object
            max_completion_tokens: Newer token limit parameter (gpt-4o, gpt-5)

        Returns:
            Response text, empty string on refusal or empty content

        Raises:
            Exception: If API call fails
        """
        model = model or self.model
        params: Dict[str, Any] = {"model": model, "messages": messages}

        # GPT-5 models only accept the default temperature
        if model.startswith("gpt-5"):
            if max_tokens and not max_completion_tokens:
                max_completion_tokens = max_tokens
        elif temperature is not None:
            params["temperature"] = temperature

        if max_completion_tokens:
            params["max_completion_tokens"] = max_completion_tokens
        elif max_tokens:
            params["max_tokens"] = max_tokens

        if json_mode:
            params["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**params)

            choice = response.choices[0]
            message = choice.message
            logger.info(f"{model} finish reason: {choice.finish_reason}")

            if getattr(message, "refusal", None):
                logger.warning(f"Model refused to respond: {message.refusal}")
                return ""

            content = message.content
            if content is None:
                logger.warning("Model returned None content")
                return ""

            return content.strip()

        except Exception as e:
            logger.error(f"OpenAI chat call failed ({model}): {e}")
            raise

    def describe_image(self, image_bytes: bytes, prompt: str, max_tokens: int = 500) -> str:
        """Describe an image with the vision-capable chat model."""
        encoded = base64.b64encode(image_bytes).decode("ascii")
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{encoded}"}},
                ],
            }
        ]
        return self.chat(messages, temperature=None, max_tokens=max_tokens, model="gpt-4o")

    def transcribe(self, audio_bytes: bytes, filename: str = "audio.webm", language: str = "en") -> str:
        """
        Transcribe an audio segment with Whisper.

        Raises:
            Exception: If API call fails
        """
        try:
            buffer = io.BytesIO(audio_bytes)
            buffer.name = filename
            result = self.client.audio.transcriptions.create(
                model="whisper-1",
                file=buffer,
                language=language,
            )
            return (result.text or "").strip()
        except Exception as e:
            logger.error(f"Whisper transcription failed: {e}")
            raise
