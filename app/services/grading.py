"""
Evaluation criteria and the local rule-based grader.

Both graders (LLM and rules) report one Eval per criterion below, with a value
on the Decision scale. `aggregate_decision` folds a list of Evals into the
machine-suggested decision stored on the candidate.
"""

import re
from typing import Dict, List
from app.models.candidate import Decision

CRITERIA = (
    {
        "name": "readability",
        "description": "Is the CV clearly structured, concise and easy to scan?",
    },
    {
        "name": "experience",
        "description": "Does the CV show relevant professional experience with concrete outcomes?",
    },
)

DECISION_SCORES = {
    Decision.STRONG_NO: -2,
    Decision.NO: -1,
    Decision.MAYBE: 0,
    Decision.YES: 1,
    Decision.STRONG_YES: 2,
}

EXPERIENCE_KEYWORDS = (
    "experience", "engineer", "developer", "manager", "lead", "designed", "built",
    "implemented", "delivered", "improved", "launched", "maintained", "responsible",
)
YEARS_PATTERN = re.compile(r"\b(\d{1,2})\+?\s*(?:years?|yrs?)\b", re.IGNORECASE)


def aggregate_decision(evals: List[Dict]) -> Decision:
    """Round the mean decision score of the evals back onto the Decision scale."""
    if not evals:
        return Decision.MAYBE
    scores = [DECISION_SCORES[Decision(item["value"])] for item in evals]
    mean = sum(scores) / len(scores)
    rounded = max(-2, min(2, int(round(mean))))
    for decision, score in DECISION_SCORES.items():
        if score == rounded:
            return decision
    return Decision.MAYBE


def _grade_readability(text: str) -> Dict:
    lines = [line for line in text.splitlines() if line.strip()]
    words = text.split()
    if not words:
        return {"name": "readability", "reason": "Document contains no readable text", "value": Decision.STRONG_NO.value}

    avg_line = len(words) / max(len(lines), 1)
    if len(words) > 2000:
        value, reason = Decision.NO, f"Very long document ({len(words)} words)"
    elif avg_line > 40:
        value, reason = Decision.MAYBE, "Dense paragraphs with little structure"
    elif len(lines) >= 10:
        value, reason = Decision.YES, "Text is clear and well-structured"
    else:
        value, reason = Decision.MAYBE, "Short document with limited structure"
    return {"name": "readability", "reason": reason, "value": value.value}


def _grade_experience(text: str) -> Dict:
    lowered = text.lower()
    hits = sorted({keyword for keyword in EXPERIENCE_KEYWORDS if keyword in lowered})
    years = [int(match) for match in YEARS_PATTERN.findall(text)]
    max_years = max(years) if years else 0

    if max_years >= 5 or len(hits) >= 6:
        value = Decision.YES
    elif max_years >= 2 or len(hits) >= 3:
        value = Decision.MAYBE
    else:
        value = Decision.NO

    parts = []
    if max_years:
        parts.append(f"mentions {max_years} years")
    if hits:
        parts.append("keywords: " + ", ".join(hits[:5]))
    reason = "Relevant work experience (" + "; ".join(parts) + ")" if parts else "No evidence of relevant experience"
    return {"name": "experience", "reason": reason, "value": value.value}


def rule_based_grades(text: str) -> List[Dict]:
    """Deterministic grades from simple text heuristics; no external calls."""
    return [_grade_readability(text), _grade_experience(text)]
