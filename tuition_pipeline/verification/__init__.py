"""
Verification stage.

- Verifier: rule checks + source review + optional AI cross-verification
- resolver: pure status/confidence resolution functions
"""

from .resolver import (
    build_reasoning,
    derive_alternative_query,
    escalate_status,
    fallback_search_query,
    merge_ai_verdict,
    resolve_rule_verdict,
    resolve_short_circuit,
    step_confidence,
)
from .verifier import Verifier

__all__ = [
    "Verifier",
    "build_reasoning",
    "derive_alternative_query",
    "escalate_status",
    "fallback_search_query",
    "merge_ai_verdict",
    "resolve_rule_verdict",
    "resolve_short_circuit",
    "step_confidence",
]
