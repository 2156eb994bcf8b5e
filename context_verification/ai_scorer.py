"""AI-powered domain alignment using the OpenAI API.

Drop-in replacement for the keyword domain sub-scorer that understands
synonyms and related concepts instead of literal overlap. Classification and
the NOT THIS override are unaffected: only the sub-score changes.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from .models import ProjectTruth, ScorableItem
from .scoring import KeywordDomainScorer, SubScorer, clamp

logger = logging.getLogger(__name__)


@dataclass
class AIConfig:
    """Configuration for OpenAI API."""
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 300

    def __post_init__(self):
        if not self.api_key:
            self.api_key = os.environ.get("OPENAI_API_KEY")
        self.model = os.environ.get("CV_AI_MODEL", self.model)


def get_openai_client(config: AIConfig):
    """Get OpenAI client, raising clear error if not available."""
    from openai import OpenAI

    if not config.api_key:
        raise ValueError("OPENAI_API_KEY not set. Set it in environment or pass to AIConfig.")
    return OpenAI(api_key=config.api_key)


def build_prompt(item: ScorableItem, truth: ProjectTruth) -> str:
    terms = ", ".join(t.term for t in truth.domain_terms) or "none defined"
    boundaries = "; ".join(truth.not_this) or "none defined"
    return f"""Rate how well this work item fits the project's domain.

PROJECT: {truth.what_were_building}
INDUSTRY: {truth.industry or 'unspecified'}
DOMAIN TERMS: {terms}
NOT THIS: {boundaries}

ITEM: {item.title}
{item.description}

Respond in JSON format:
{{
    "alignment": 0-100,
    "explanation": "one sentence"
}}"""


class OpenAIDomainScorer(SubScorer):
    """Domain sub-scorer backed by a chat completion.

    Any API or parsing failure degrades to ``fallback`` (the keyword scorer
    by default) so one flaky call never fails a verification pass.
    """

    name = "domain_alignment"

    def __init__(self, config: Optional[AIConfig] = None, client=None,
                 fallback: Optional[SubScorer] = None):
        self.config = config or AIConfig()
        self._client = client
        self.fallback = fallback or KeywordDomainScorer()

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client(self.config)
        return self._client

    def score(self, item: ScorableItem, truth: ProjectTruth) -> int:
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": "You are a product manager checking whether work items stay within a project's domain."},
                    {"role": "user", "content": build_prompt(item, truth)}
                ],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                response_format={"type": "json_object"}
            )
            analysis = json.loads(response.choices[0].message.content)
            return clamp(float(analysis["alignment"]))
        except Exception as e:
            logger.warning("AI domain scoring failed for %s, using keyword fallback: %s",
                           item.id, e)
            return self.fallback.score(item, truth)
