from typing import Dict, List, Optional, Sequence

from policy_rag.core.config import settings
from policy_rag.core.unified_llm import UnifiedLLMClient
from policy_rag.schemas.retrieval import ConversationMessage
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)

SYSTEM_PROMPT = """You are a telehealth policy expert assistant. Answer questions based ONLY on the provided context from state telehealth policy documents.

Rules:
1. Only use information from the provided context
2. Always cite sources using [number] notation
3. If the context doesn't contain enough information, say so clearly
4. Be concise and specific
5. For regulatory questions, quote exact requirements when possible
6. If confidence is low, suggest alternative queries"""

USER_PROMPT_TEMPLATE = """Context from policy documents:
{context}

Question: {query}

Provide a clear, cited answer. Use [1], [2], etc. to reference the context sources."""


class AnswerGenerationService:
    """
    Generates a cited natural language answer from a numbered context block.

    The answer text is returned as produced; citation markers in it are not
    checked against the supplied context.
    """

    def __init__(
        self,
        llm_client: UnifiedLLMClient,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        history_limit: Optional[int] = None,
    ):
        self.llm_client = llm_client
        self.temperature = settings.retrieval.answer_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.retrieval.answer_max_tokens
        self.history_limit = settings.retrieval.history_limit if history_limit is None else history_limit

    def build_messages(
        self,
        query: str,
        context: str,
        history: Sequence[ConversationMessage] = (),
    ) -> List[Dict[str, str]]:
        """System prompt, the most recent history turns, then the question."""
        recent = list(history)[-self.history_limit:] if self.history_limit > 0 else []
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            *({"role": message.role, "content": message.content} for message in recent),
            {"role": "user", "content": USER_PROMPT_TEMPLATE.format(context=context, query=query)},
        ]

    async def generate_answer(
        self,
        query: str,
        context: str,
        history: Sequence[ConversationMessage] = (),
    ) -> str:
        messages = self.build_messages(query, context, history)
        answer = await self.llm_client.complete(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        LOGGER.info(
            f"LLM response generated | length: {len(answer)} chars | "
            f"history turns: {len(messages) - 2}"
        )
        return answer
