"""Structured fact extraction from a policy's text.

Sends the policy's chunk text, concatenated in chunk order and cut to a fixed
character budget, to the generation model with a prompt demanding a
``{"facts": [...]}`` document. Only the first balanced JSON object in the
reply is parsed. Unparsable output is logged and yields zero facts rather
than failing ingestion.
"""

from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from policy_rag.core.config import settings
from policy_rag.core.exceptions import MalformedModelOutputError, PolicyNotFoundError
from policy_rag.core.unified_llm import UnifiedLLMClient
from policy_rag.database.models import PolicyFact
from policy_rag.repositories.chunk_repository import ChunkRepository
from policy_rag.repositories.fact_repository import FactRepository
from policy_rag.repositories.policy_repository import PolicyRepository
from policy_rag.schemas.ingestion import ExtractedFact
from policy_rag.utils.json_parser import parse_json_object
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)

APPEND = "append"
REPLACE = "replace"

FACT_EXTRACTION_PROMPT = """You are a telehealth policy extraction expert. Extract structured facts from state telehealth policy documents.

Extract the following categories:
1. Modalities: live_video, store_and_forward, rpm, audio_only
2. Consent: requirements and specifics
3. In-person requirements: initial visit rules
4. Provider eligibility: who can provide telehealth
5. Site eligibility: originating/distant site rules
6. Billing: facility fees, modifiers (GT, FQ, 95), reimbursement parity
7. Documentation: special requirements (e.g., BMI recording)
8. Prescribing: controlled substances, restrictions

Return JSON format:
{
  "facts": [
    {
      "category": "modality",
      "field": "live_video",
      "value": "Allowed with no restrictions",
      "confidence": 0.95,
      "page": 3
    }
  ]
}"""


def parse_facts(raw_output: str) -> List[ExtractedFact]:
    """Parse model output into facts, dropping anything malformed.

    Never raises: a reply with no JSON object, invalid JSON or a missing
    ``facts`` list produces an empty result.
    """
    try:
        document = parse_json_object(raw_output)
    except MalformedModelOutputError as e:
        LOGGER.warning(
            f"Failed to parse extracted facts JSON: {e}",
            extra={"output_preview": (raw_output or "")[:200]}
        )
        return []

    items = document.get("facts")
    if not isinstance(items, list):
        LOGGER.warning("Extracted facts JSON has no facts list")
        return []

    facts: List[ExtractedFact] = []
    for item in items:
        try:
            facts.append(ExtractedFact.model_validate(item))
        except PydanticValidationError as e:
            LOGGER.warning(f"Skipping malformed fact: {e.errors()[0].get('msg')}", extra={"fact": item})
    return facts


class FactExtractionService:
    """Extracts and stores PolicyFact rows for one policy."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        llm_client: UnifiedLLMClient,
        char_budget: Optional[int] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        write_mode: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.llm_client = llm_client
        self.char_budget = char_budget or settings.ingestion.fact_char_budget
        self.temperature = settings.ingestion.fact_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.ingestion.fact_max_tokens
        self.write_mode = (write_mode or settings.ingestion.fact_write_mode).lower()
        if self.write_mode not in (APPEND, REPLACE):
            raise ValueError(f"Unsupported fact write mode: {self.write_mode}")

    async def extract_facts(self, policy_id: UUID) -> List[PolicyFact]:
        """Run one extraction call for the policy and persist the parsed facts.

        In ``replace`` mode, prior facts are removed only when the new output
        parsed into at least one fact.

        Raises:
            PolicyNotFoundError: If the policy does not exist
            APIClientError: If the generation model fails
        """
        async with self.session_factory() as session:
            policy = await PolicyRepository(session).get_with_state(policy_id)
            if not policy:
                raise PolicyNotFoundError(f"Policy {policy_id} not found")

            chunks = await ChunkRepository(session).get_by_policy(policy_id)
            full_text = "\n".join(chunk.content for chunk in chunks)
            if len(full_text) > self.char_budget:
                LOGGER.info(
                    f"Truncating policy text from {len(full_text)} to {self.char_budget} chars for fact extraction",
                    extra={"policy_id": str(policy_id)}
                )
            full_text = full_text[:self.char_budget]

            raw_output = await self.llm_client.complete(
                [
                    {"role": "system", "content": FACT_EXTRACTION_PROMPT},
                    {"role": "user", "content": f"Extract facts from this {policy.state.name} policy:\n\n{full_text}"},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )

            facts = parse_facts(raw_output)

            fact_repo = FactRepository(session)
            if self.write_mode == REPLACE and facts:
                removed = await fact_repo.delete_by_policy(policy.id)
                LOGGER.info(f"Replaced {removed} prior facts", extra={"policy_id": str(policy_id)})

            records = await fact_repo.create_many(policy.id, policy.state_id, facts)
            await session.commit()

        LOGGER.info(
            f"Stored {len(records)} extracted facts",
            extra={"policy_id": str(policy_id), "write_mode": self.write_mode}
        )
        return records
