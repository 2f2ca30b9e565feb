# backend/consultation_ai/services/sanitizer.py
"""Normalizes the model's structured output to the consultation schema.

The analysis JSON comes straight from the inference service and cannot be
trusted: fields go missing, lists arrive as strings, and ``plan`` is
sometimes an object despite the prompt. :func:`sanitize` repairs the shape
with safe defaults; :func:`to_clinical_analysis` then validates it into the
typed model that the rest of the pipeline works with.
"""

import copy
import json
import logging
from typing import Any, Dict

from consultation_ai.models import ClinicalAnalysis
from consultation_ai.models.consultation import EXTRACTION_FAILED, VITALS_NOT_RECORDED

logger = logging.getLogger(__name__)

PLAN_SECTIONS = (
    ("immediateTreatment", "Immediate Treatment"),
    ("followUpTreatment", "Follow-up Treatment"),
    ("additionalCare", "Additional Care"),
)
INSIGHT_LISTS = ("recommendations", "redFlags", "differentialDiagnosis")

SUMMARY_TEXT_FIELDS = ("chiefComplaint", "historyOfPresentIllness", "assessment", "plan", "vitals")
ENTRY_TEXT_FIELDS = {
    "differentialDiagnosis": ("condition", "probability", "reasoning", "icd10"),
    "redFlags": ("flag", "status", "action"),
    "recommendations": ("category",),
}


def _as_text(value: Any) -> Any:
    """Render a scalar or structured value as text. ``None`` passes through."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def flatten_plan(plan: Dict[str, Any]) -> str:
    if not any(key in plan for key, _ in PLAN_SECTIONS):
        return json.dumps(plan)
    return "\n".join(f"{label}: {_as_text(plan.get(key)) or 'Not specified'}" for key, label in PLAN_SECTIONS)


def _as_list(value: Any) -> list:
    if isinstance(value, list):
        return [_as_text(item) for item in value if item is not None]
    if isinstance(value, str) and value.strip():
        return [value]
    return []


def _coerce_text_fields(document: Dict[str, Any], fields) -> None:
    for field in fields:
        if field in document:
            document[field] = _as_text(document[field])


def sanitize(analysis: Any) -> Any:
    """Return a repaired copy of ``analysis``; the input is left untouched.

    Text fields holding objects or lists are rendered as JSON text and list
    members are coerced to strings, so that one badly typed value does not
    cost the rest of the analysis. Never raises. If repair itself fails the
    original object is returned as-is.
    """
    try:
        result = copy.deepcopy(analysis)

        if not isinstance(result.get("clinicalSummary"), dict):
            result["clinicalSummary"] = {}
        if not isinstance(result.get("medicalInsights"), dict):
            result["medicalInsights"] = {}

        summary = result["clinicalSummary"]
        if isinstance(summary.get("plan"), dict):
            summary["plan"] = flatten_plan(summary["plan"])
        _coerce_text_fields(summary, SUMMARY_TEXT_FIELDS)
        if "riskFactors" in summary:
            summary["riskFactors"] = _as_list(summary["riskFactors"])

        insights = result["medicalInsights"]
        for key in INSIGHT_LISTS:
            value = insights.get(key)
            if not isinstance(value, list):
                insights[key] = []
            else:
                insights[key] = [entry for entry in value if isinstance(entry, dict)]
            for entry in insights[key]:
                _coerce_text_fields(entry, ENTRY_TEXT_FIELDS[key])

        for recommendation in insights["recommendations"]:
            if "items" in recommendation:
                recommendation["items"] = _as_list(recommendation["items"])

        support = insights.get("clinicalDecisionSupport")
        if not isinstance(support, dict):
            support = insights["clinicalDecisionSupport"] = {}
        for field in ("guidelines", "evidenceLevel"):
            support[field] = _as_text(support.get(field)) or ""
        support["recommendedActions"] = _as_list(support.get("recommendedActions"))

        return result
    except Exception:
        logger.exception("Error sanitizing analysis data")
        return analysis


def fallback_analysis() -> Dict[str, Any]:
    """Placeholder analysis used when the analysis stage produces nothing usable."""
    return {
        "clinicalSummary": {
            "chiefComplaint": EXTRACTION_FAILED,
            "historyOfPresentIllness": EXTRACTION_FAILED,
            "assessment": EXTRACTION_FAILED,
            "plan": EXTRACTION_FAILED,
            "vitals": VITALS_NOT_RECORDED,
            "riskFactors": [],
        },
        "medicalInsights": {
            "differentialDiagnosis": [],
            "redFlags": [],
            "recommendations": [],
            "clinicalDecisionSupport": {
                "guidelines": "",
                "evidenceLevel": "",
                "recommendedActions": [],
            },
        },
    }


def to_clinical_analysis(sanitized: Dict[str, Any]) -> ClinicalAnalysis:
    """Validate a sanitized analysis. Raises ``pydantic.ValidationError``."""
    return ClinicalAnalysis.model_validate(sanitized)
