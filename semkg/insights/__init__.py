"""
Insight discovery over knowledge graphs.

Scans graph structure and recent changes for patterns, anomalies, trends,
recommendations and knowledge gaps, ranked by impact.
"""

from .models import GraphInsight, Impact, InsightType

__all__ = ["GraphInsight", "Impact", "InsightType"]
