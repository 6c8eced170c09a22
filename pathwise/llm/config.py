from __future__ import annotations

import os
import random
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

DEFAULT_REQUIRED_SECTIONS: tuple[str, ...] = (
    "prioritySkills",
    "learningResources",
    "practiceProjects",
    "timeline",
    "whyThisPath",
    "assumptions",
)


@dataclass(frozen=True)
class LLMConfig:
    api_key: str = os.getenv("GROQ_API_KEY", "")
    model: str = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    timeout: float = float(os.getenv("LLM_TIMEOUT_S", "30"))
    max_tokens: int = int(os.getenv("GROQ_MAX_TOKENS", "1000"))
    temperature: float = float(os.getenv("GROQ_TEMPERATURE", "0.3"))
    enabled: bool = os.getenv("LLM_ENABLED", "true").lower() != "false"
    max_context_length: int = 4000
    max_question_length: int = 500
    required_sections: tuple[str, ...] = DEFAULT_REQUIRED_SECTIONS
    # Domain name (lowercased) -> sections a refined roadmap must carry
    domain_sections: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def sections_for(self, domain_name: str | None) -> tuple[str, ...]:
        if domain_name:
            sections = self.domain_sections.get(domain_name.strip().lower())
            if sections:
                return sections
        return self.required_sections


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = int(os.getenv("LLM_MAX_RETRIES", "3"))
    per_attempt_timeout: float = float(os.getenv("LLM_ATTEMPT_TIMEOUT_S", "30"))
    backoff_base: float = 1.0
    backoff_max: float = 8.0
    jitter: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.per_attempt_timeout <= 0:
            raise ValueError("per_attempt_timeout must be positive")

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff with jitter before the attempt after ``attempt``."""
        delay = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay


DEFAULT_LLM_CONFIG = LLMConfig()
DEFAULT_RETRY_POLICY = RetryPolicy()
