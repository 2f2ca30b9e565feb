import json
from typing import Any, Dict, List

import pytest

from consultation_ai.core.config import Settings
from consultation_ai.core.errors import UpstreamError
from consultation_ai.db.consultation_store import ConsultationStore
from consultation_ai.services.consultation_pipeline import ConsultationPipeline

HEADACHE_TRANSCRIPT = "Doctor asks about headache. Patient reports throbbing pain for 3 days."

HEADACHE_ANALYSIS = {
    "clinicalSummary": {
        "chiefComplaint": "Headache for 3 days",
        "historyOfPresentIllness": "Throbbing headache, onset 3 days ago.",
        "assessment": "Likely tension-type headache or migraine.",
        "plan": {
            "immediateTreatment": "Ibuprofen 400 mg as needed",
            "followUpTreatment": "Review in two weeks",
        },
        "vitals": "Not recorded",
        "riskFactors": ["Stress"],
    },
    "medicalInsights": {
        "differentialDiagnosis": [
            {"condition": "Migraine", "probability": "High (approx. 60%)", "reasoning": "Throbbing", "icd10": "G43.909"},
            {"condition": "Tension headache", "probability": "Moderate", "reasoning": "Duration", "icd10": "G44.209"},
        ],
        "redFlags": [
            {"flag": "Sudden worst headache", "status": "Critical", "action": "Urgent CT scan"},
        ],
        "recommendations": [
            {"category": "Immediate", "items": ["Analgesia"]},
            {"category": "Follow-up", "items": ["Headache diary review"]},
        ],
        "clinicalDecisionSupport": {
            "guidelines": "NICE CG150 Headaches",
            "evidenceLevel": "Level B",
            "recommendedActions": ["Avoid medication overuse"],
        },
    },
}


def chat_response(content: str) -> Dict[str, Any]:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


def upstream_failure(status_code: int = 500) -> UpstreamError:
    return UpstreamError(status_code, "simulated failure")


class FakeGateway:
    """Replays scripted responses in call order; exceptions in the script are raised."""

    def __init__(self, script: List[Any]):
        self.script = list(script)
        self.calls: List[tuple] = []

    async def call(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((endpoint, payload))
        if not self.script:
            raise AssertionError(f"Unexpected AI call to {endpoint}")
        outcome = self.script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def happy_script(labeled: str = "Doctor: Any headache?\nPatient: Throbbing pain for 3 days.") -> List[Any]:
    return [
        chat_response(labeled),
        chat_response(json.dumps(HEADACHE_ANALYSIS)),
        chat_response("- Headache for 3 days\n• Throbbing pain\n\n* No fever"),
    ]


@pytest.fixture
def settings() -> Settings:
    return Settings(AI_RETRY_BACKOFF_SECONDS=0.0, DATABASE_PATH=":unused:")


@pytest.fixture
async def store(tmp_path) -> ConsultationStore:
    consultation_store = ConsultationStore(str(tmp_path / "consultations.sqlite3"))
    await consultation_store.init()
    return consultation_store


@pytest.fixture
def make_pipeline(store, settings):
    def _make(script: List[Any]) -> ConsultationPipeline:
        return ConsultationPipeline(FakeGateway(script), store, settings)

    return _make
