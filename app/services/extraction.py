"""
Extraction Service: LLM calls that turn CV text into a summary and graded evals.

Every call carries a caller-side timeout and the OpenAI client's own retries
are disabled; retrying is the workflow engine's job. Failures are reported as:
- TransientProcessingError: timeouts, connection errors, rate limits, 5xx,
  empty or malformed model output
- FatalProcessingError: requests the API rejects outright (auth, bad request)
"""

import json
import logging
from functools import lru_cache
from typing import Dict, List, Optional
import openai
from openai import OpenAI
from pydantic import ValidationError as PydanticValidationError
from app.core.config import settings
from app.core.exceptions import FatalProcessingError, TransientProcessingError
from app.schemas.candidate import EvalSchema
from app.services.grading import CRITERIA, rule_based_grades

logger = logging.getLogger(__name__)

# Roughly 12k tokens; CVs longer than this are truncated before prompting
MAX_PROMPT_CHARS = 48000

TRANSIENT_OPENAI_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class ExtractionService:
    """
    Summary and grading over CV text.

    Args:
        client: OpenAI client; built from settings when omitted
        model: chat model name
        grading_mode: "llm" grades with the model, "rules" uses the local grader
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
        grading_mode: Optional[str] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.EXTRACTION_TIMEOUT_SECONDS
        self.client = client or OpenAI(api_key=settings.OPENAI_API_KEY, timeout=self.timeout, max_retries=0)
        self.model = model or settings.OPENAI_MODEL
        self.temperature = temperature if temperature is not None else settings.OPENAI_TEMPERATURE
        self.grading_mode = grading_mode or settings.GRADING_MODE

    def _complete(self, messages: List[Dict], json_mode: bool = False) -> str:
        kwargs = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "timeout": self.timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**kwargs)
        except TRANSIENT_OPENAI_ERRORS as e:
            raise TransientProcessingError(f"{type(e).__name__}: {e}") from e
        except openai.APIStatusError as e:
            raise FatalProcessingError(f"OpenAI rejected the request ({e.status_code}): {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise TransientProcessingError("Empty response from OpenAI")
        return content.strip()

    def summarize(self, text: str) -> str:
        """Return a concise free-text summary of the CV."""
        logger.info(f"Requesting CV summary from {self.model} ({len(text)} chars)")
        return self._complete([
            {
                "role": "system",
                "content": "You are an experienced technical recruiter. You write short, factual candidate summaries.",
            },
            {
                "role": "user",
                "content": (
                    "Provide a concise summary of the following CV: years of experience, "
                    "key skills and frameworks, languages, education, and overall profile.\n\n"
                    f"{text[:MAX_PROMPT_CHARS]}"
                ),
            },
        ])

    def grade(self, text: str) -> List[Dict]:
        """Return one eval per criterion in CRITERIA as plain dicts."""
        if self.grading_mode == "rules":
            return rule_based_grades(text)

        logger.info(f"Requesting CV grades from {self.model}")
        criteria = "\n".join(f"- {c['name']}: {c['description']}" for c in CRITERIA)
        content = self._complete(
            [
                {
                    "role": "system",
                    "content": "You are a fair, rigorous evaluator of CVs. Answer with JSON only.",
                },
                {
                    "role": "user",
                    "content": (
                        f"Grade the CV below on each criterion:\n{criteria}\n\n"
                        "Use exactly one of strong_no, no, maybe, yes, strong_yes as the value.\n"
                        'Output strictly valid JSON: {"evaluations": [{"name": "...", "reason": "1-2 sentences", "value": "..."}]}\n\n'
                        f"CV:\n{text[:MAX_PROMPT_CHARS]}"
                    ),
                },
            ],
            json_mode=True,
        )
        return self._parse_evaluations(content)

    @staticmethod
    def _parse_evaluations(content: str) -> List[Dict]:
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise TransientProcessingError(f"Model returned invalid JSON: {e}") from e

        items = payload.get("evaluations") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise TransientProcessingError("Model output has no 'evaluations' list")

        try:
            evals = [EvalSchema.model_validate(item).model_dump(mode="json") for item in items]
        except PydanticValidationError as e:
            raise TransientProcessingError(f"Model output failed validation: {e}") from e

        by_name = {item["name"]: item for item in evals}
        missing = [c["name"] for c in CRITERIA if c["name"] not in by_name]
        if missing:
            raise TransientProcessingError(f"Model did not grade: {', '.join(missing)}")
        # Keep the fixed criteria order
        return [by_name[c["name"]] for c in CRITERIA]


@lru_cache(maxsize=1)
def get_extraction_service() -> ExtractionService:
    return ExtractionService()
