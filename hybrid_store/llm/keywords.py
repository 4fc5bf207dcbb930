"""Best-effort rewriting of natural-language queries into search keywords."""

import time

from hybrid_store.llm.client import LLMClient
from hybrid_store.llm.prompts import KeywordPromptTemplate
from hybrid_store.logging_config import get_logger
from hybrid_store.observability.metrics import track_keyword_extraction

logger = get_logger(__name__)


class KeywordExtractor:
    """Turns a query into keywords with an LLM, falling back to the raw query.

    ``extract`` never raises: a failed or empty completion yields the
    original query text so lexical search still runs.
    """

    def __init__(
        self,
        llm: LLMClient,
        template: KeywordPromptTemplate | None = None,
    ) -> None:
        self._llm = llm
        self._template = template or KeywordPromptTemplate()

    async def extract(self, query: str) -> str:
        system_prompt, prompt = self._template.build_prompt(query)
        start = time.perf_counter()
        try:
            completion = await self._llm.complete(prompt, system_prompt=system_prompt)
        except Exception as e:
            logger.warning(
                f"Keyword extraction failed, using raw query: {e}",
                extra={"model": self._llm.model_name},
            )
            track_keyword_extraction(rewritten=False, duration=time.perf_counter() - start)
            return query

        duration = time.perf_counter() - start
        keywords = _clean_completion(completion.text)
        track_keyword_extraction(
            rewritten=bool(keywords),
            duration=duration,
            model=completion.model,
            tokens=completion.total_tokens,
        )
        if not keywords:
            logger.debug("Keyword extraction returned nothing, using raw query")
            return query

        logger.debug(
            "Rewrote query into keywords",
            extra={"keywords": keywords, "tokens": completion.total_tokens},
        )
        return keywords


def _clean_completion(completion: str) -> str:
    """First non-empty line of the completion, stripped of quotes and commas."""
    for line in completion.splitlines():
        line = line.strip().strip("\"'`")
        if line:
            return " ".join(line.replace(",", " ").split())
    return ""
