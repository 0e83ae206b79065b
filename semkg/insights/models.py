"""
Insight records.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class InsightType(str, Enum):
    PATTERN = "pattern"
    ANOMALY = "anomaly"
    TREND = "trend"
    RECOMMENDATION = "recommendation"
    GAP = "gap"


class Impact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


@dataclass
class GraphInsight:
    """A ranked, actionable observation about a graph."""

    insight_type: InsightType
    title: str
    description: str
    entities: List[str] = field(default_factory=list)
    relationships: List[str] = field(default_factory=list)
    confidence: float = 0.5
    actionable_steps: List[str] = field(default_factory=list)
    impact: Impact = Impact.MEDIUM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "insight_type": self.insight_type.value,
            "title": self.title,
            "description": self.description,
            "entities": list(self.entities),
            "relationships": list(self.relationships),
            "confidence": self.confidence,
            "actionable_steps": list(self.actionable_steps),
            "impact": self.impact.value,
        }


def rank_insights(insights: List[GraphInsight]) -> List[GraphInsight]:
    """Sort by impact (desc), then confidence (desc), then title."""
    return sorted(insights, key=lambda i: (-i.impact.rank, -i.confidence, i.title))
