"""Prompt templates for query rewriting."""

from abc import ABC, abstractmethod
from typing import Any


class PromptTemplate(ABC):
    """Abstract base class for prompt templates."""

    @abstractmethod
    def format(self, **kwargs: Any) -> str:
        """Format the template with provided variables.

        Args:
            **kwargs: Template variables.

        Returns:
            Formatted prompt string.
        """
        ...


class KeywordPromptTemplate(PromptTemplate):
    """Prompt that asks a model to turn a question into lexical search terms."""

    DEFAULT_SYSTEM_PROMPT = """You extract search keywords for a full-text search engine.

Rules:
- Reply with keywords only, separated by spaces
- Keep names, numbers and domain terms exactly as written
- Drop filler words and question words
- Do not explain or add punctuation"""

    DEFAULT_USER_TEMPLATE = """Query: {query}

Keywords:"""

    def __init__(
        self,
        system_prompt: str | None = None,
        user_template: str | None = None,
    ) -> None:
        self.system_prompt = system_prompt or self.DEFAULT_SYSTEM_PROMPT
        self.user_template = user_template or self.DEFAULT_USER_TEMPLATE

    def format(self, **kwargs: Any) -> str:
        """Format the user template.

        Args:
            **kwargs: Must include 'query'.

        Returns:
            Formatted user prompt.
        """
        return self.user_template.format(**kwargs)

    def build_prompt(self, query: str) -> tuple[str, str]:
        """Return (system_prompt, user_prompt) for a query."""
        return self.system_prompt, self.format(query=query)
