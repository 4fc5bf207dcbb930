"""LLM client module for query keyword extraction."""

from hybrid_store.llm.client import LLMClient, OpenAICompatibleClient
from hybrid_store.llm.keywords import KeywordExtractor
from hybrid_store.llm.models import KeywordCompletion
from hybrid_store.llm.prompts import KeywordPromptTemplate, PromptTemplate

__all__ = [
    "KeywordCompletion",
    "KeywordExtractor",
    "KeywordPromptTemplate",
    "LLMClient",
    "OpenAICompatibleClient",
    "PromptTemplate",
]
