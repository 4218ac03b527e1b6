"""
Perplexity chat-completions client (HTTP via requests).

Environment:
    PERPLEXITY_API_KEY must be set
"""

import os
import logging
from typing import List, Dict, Any

import requests


logger = logging.getLogger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"


class PerplexityClient:
    """Web-grounded chat completions for source discovery."""

    def __init__(self, model: str = "sonar", timeout: int = 120):
        self.api_key = os.getenv("PERPLEXITY_API_KEY")
        if not self.api_key:
            raise ValueError("PERPLEXITY_API_KEY environment variable is required")

        self.model = model
        self.timeout = timeout
        self.session = requests.Session()

        logger.info(f"Perplexity client initialized: {self.model}")

    def chat(self, messages: List[Dict[str, Any]], temperature: float = 0.2) -> str:
        """
        Send a chat request and return the message text.

        Raises:
            RuntimeError: On non-2xx responses or empty content
        """
        response = self.session.post(
            PERPLEXITY_URL,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "messages": messages,
                "temperature": temperature,
            },
            timeout=self.timeout,
        )

        if not response.ok:
            logger.error(f"Perplexity API error: {response.status_code} {response.text[:200]}")
            raise RuntimeError(f"Perplexity API error: {response.status_code}")

        data = response.json()
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content")

        if not content:
            raise RuntimeError("No content in Perplexity response")

        return content
