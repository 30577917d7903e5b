"""
OpenAI-backed summary generator.

Turns a resource's documents into a pros/cons/sentiment/topics summary.
"""

from typing import Any, Dict, Optional, Sequence

from openai import OpenAI

from ..config.loader import GeneratorConfig
from ..core.generator import build_messages, extract_json, sanitize_summary
from ..storage.models import Document


class OpenAISummaryGenerator:
    """Summarizes documents with an OpenAI chat completion.

    API errors are loud; they propagate so the caller can classify them as
    a generation failure. Output that is not valid JSON is not an error:
    it yields an empty neutral summary.
    """

    def __init__(self, config: Optional[GeneratorConfig] = None, client: Optional[OpenAI] = None):
        """Initialize the generator.

        Args:
            config: Model, temperature, language and timeout settings
            client: Pre-built OpenAI client (defaults to one read from the environment,
                without retries so the timeout bounds the whole call)
        """
        self.config = config or GeneratorConfig()
        self.client = client or OpenAI(timeout=self.config.timeout_seconds, max_retries=0)

    def generate(self, documents: Sequence[Document]) -> Dict[str, Any]:
        """Create a summary for the given documents.

        Args:
            documents: Input documents, newest first

        Returns:
            Summary body with pros, cons, sentiment, topics and model

        Raises:
            ValueError: If documents is empty
            OpenAI API errors: Propagated without modification
        """
        if not documents:
            raise ValueError("documents is required and cannot be empty")

        response = self.client.chat.completions.create(
            model=self.config.model,
            messages=build_messages(documents, self.config.output_language),
            temperature=self.config.temperature,
        )

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""
        return sanitize_summary(extract_json(content), self.config.model)
