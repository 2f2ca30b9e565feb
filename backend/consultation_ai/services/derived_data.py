# backend/consultation_ai/services/derived_data.py

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from consultation_ai.models import FollowUpReminder
from consultation_ai.models.consultation import utc_now

logger = logging.getLogger(__name__)

FOLLOW_UP_DELAY = timedelta(days=14)
URGENT_DELAY = timedelta(days=1)

BASE_CONFIDENCE = 0.7
CONFIDENCE_STEP = 0.1
MAX_CONFIDENCE = 0.98


def _insights(analysis: Any) -> Optional[dict]:
    if not isinstance(analysis, dict):
        return None
    insights = analysis.get("medicalInsights")
    return insights if isinstance(insights, dict) else None


def generate_follow_up_reminders(analysis: Any, now: Optional[datetime] = None) -> List[FollowUpReminder]:
    """Reminders for "Follow-up" recommendations and "Critical" red flags.

    Malformed parts of the analysis simply yield no reminders.
    """
    reminders: List[FollowUpReminder] = []
    insights = _insights(analysis)
    if insights is None:
        logger.warning("Analysis or medicalInsights is missing; no reminders generated")
        return reminders

    now = now or utc_now()

    recommendations = insights.get("recommendations")
    if isinstance(recommendations, list):
        for rec in recommendations:
            if not isinstance(rec, dict) or rec.get("category") != "Follow-up":
                continue
            items = rec.get("items")
            if not isinstance(items, list):
                continue
            for item in items:
                if isinstance(item, str) and item:
                    reminders.append(
                        FollowUpReminder(type="followup", message=item, due_date=now + FOLLOW_UP_DELAY)
                    )

    red_flags = insights.get("redFlags")
    if isinstance(red_flags, list):
        for flag in red_flags:
            if not isinstance(flag, dict) or flag.get("status") != "Critical":
                continue
            if flag.get("flag") and flag.get("action"):
                reminders.append(
                    FollowUpReminder(
                        type="urgent",
                        message=f"Urgent Action: {flag['flag']} - {flag['action']}",
                        due_date=now + URGENT_DELAY,
                    )
                )

    return reminders


def calculate_confidence_score(analysis: Any) -> float:
    """Heuristic completeness score in [0.70, 0.98]; not a probability."""
    insights = _insights(analysis)
    if insights is None:
        logger.warning("Analysis or medicalInsights missing for confidence calculation")
        return BASE_CONFIDENCE

    score = BASE_CONFIDENCE

    diagnoses = insights.get("differentialDiagnosis")
    if isinstance(diagnoses, list) and len(diagnoses) > 1:
        score += CONFIDENCE_STEP

    red_flags = insights.get("redFlags")
    if isinstance(red_flags, list) and red_flags:
        score += CONFIDENCE_STEP

    support = insights.get("clinicalDecisionSupport")
    if isinstance(support, dict) and support.get("guidelines"):
        score += CONFIDENCE_STEP

    return round(min(score, MAX_CONFIDENCE), 2)
