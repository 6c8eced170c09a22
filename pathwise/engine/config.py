from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class ConfidenceConfig:
    match_count_threshold: int = int(os.getenv("CONFIDENCE_MATCH_COUNT_THRESHOLD", "3"))
    match_count_boost: float = float(os.getenv("CONFIDENCE_MATCH_COUNT_BOOST", "1.1"))
    coverage_threshold: float = float(os.getenv("CONFIDENCE_COVERAGE_THRESHOLD", "0.3"))
    coverage_boost: float = float(os.getenv("CONFIDENCE_COVERAGE_BOOST", "1.05"))
    high_threshold: float = float(os.getenv("CONFIDENCE_HIGH_THRESHOLD", "0.8"))
    medium_threshold: float = float(os.getenv("CONFIDENCE_MEDIUM_THRESHOLD", "0.6"))
    max_priority_factor: float = float(os.getenv("CONFIDENCE_MAX_PRIORITY_FACTOR", "1.2"))

    def priority_factor(self, priority: int) -> float:
        if priority >= 9:
            return self.max_priority_factor
        if priority == 8:
            return 1.1
        if priority >= 6:
            return 1.0
        if priority == 5:
            return 0.9
        return 0.8


DEFAULT_CONFIDENCE_CONFIG = ConfidenceConfig()
