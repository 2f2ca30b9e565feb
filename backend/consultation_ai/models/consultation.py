# backend/consultation_ai/models/consultation.py

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_BASE36 = string.digits + string.ascii_lowercase

EXTRACTION_FAILED = "Unable to extract - AI analysis failed"
VITALS_NOT_RECORDED = "Not recorded"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def epoch_millis() -> int:
    return int(time.time() * 1000)


def new_consultation_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"CONS-{epoch_millis()}-{suffix}"


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire and in stored documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class PatientInfo(CamelModel):
    name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    visit_type: Optional[str] = None
    patient_id: Optional[str] = None


class ClinicalSummary(CamelModel):
    chief_complaint: Optional[str] = None
    history_of_present_illness: Optional[str] = None
    assessment: Optional[str] = None
    plan: Optional[str] = None
    vitals: Optional[str] = None
    risk_factors: List[str] = []


class DifferentialDiagnosisEntry(CamelModel):
    condition: Optional[str] = None
    # Free-text label such as "High (approx. 85%)"
    probability: Optional[str] = None
    reasoning: Optional[str] = None
    icd10: Optional[str] = None


class RedFlag(CamelModel):
    flag: Optional[str] = None
    # Critical | Monitor | Noted
    status: Optional[str] = None
    action: Optional[str] = None


class Recommendation(CamelModel):
    # Immediate | Follow-up | Lifestyle
    category: Optional[str] = None
    items: List[str] = []


class ClinicalDecisionSupport(CamelModel):
    guidelines: str = ""
    # Level A | Level B | Level C
    evidence_level: str = ""
    recommended_actions: List[str] = []


class MedicalInsights(CamelModel):
    differential_diagnosis: List[DifferentialDiagnosisEntry] = []
    red_flags: List[RedFlag] = []
    recommendations: List[Recommendation] = []
    clinical_decision_support: ClinicalDecisionSupport = Field(default_factory=ClinicalDecisionSupport)


class ClinicalAnalysis(CamelModel):
    clinical_summary: ClinicalSummary = Field(default_factory=ClinicalSummary)
    medical_insights: MedicalInsights = Field(default_factory=MedicalInsights)


class FollowUpReminder(CamelModel):
    type: Literal["followup", "urgent"]
    message: str
    due_date: datetime


class AnalysisMetadata(CamelModel):
    processed_at: datetime = Field(default_factory=utc_now)
    transcript_length: int = 0
    ai_model: Optional[str] = None
    confidence_score: float = Field(default=0.7, ge=0.0, le=1.0)
    consultation_duration: str = "N/A"


class Medication(CamelModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class Prescription(CamelModel):
    prescription_id: str = Field(default_factory=lambda: f"RX-{epoch_millis()}")
    medications: List[Medication] = []
    additional_instructions: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class Consultation(CamelModel):
    consultation_id: str = Field(default_factory=new_consultation_id)
    patient_info: PatientInfo = Field(default_factory=PatientInfo)
    transcript: str
    clinical_summary: ClinicalSummary = Field(default_factory=ClinicalSummary)
    medical_insights: MedicalInsights = Field(default_factory=MedicalInsights)
    key_points: List[str] = []
    follow_up_reminders: List[FollowUpReminder] = []
    analysis_metadata: Optional[AnalysisMetadata] = None
    prescriptions: List[Prescription] = []
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("transcript")
    @classmethod
    def _transcript_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("transcript must not be empty")
        return value

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ConsultationResponse(Consultation):
    """A pipeline result.

    `warning` is set when the analysis fell back to placeholders or the record
    was not saved; `degradations` lists every stage that did not complete.
    """

    warning: Optional[str] = None
    degradations: List[str] = []

    def to_document(self) -> Dict[str, Any]:
        document = super().to_document()
        if document.get("warning") is None:
            document.pop("warning", None)
        if not document.get("degradations"):
            document.pop("degradations", None)
        return document


class Pagination(CamelModel):
    current: int
    total: int
    count: int
    total_records: int


class ConsultationPage(CamelModel):
    consultations: List[Dict[str, Any]]
    pagination: Pagination


class DailyCount(CamelModel):
    date: str
    count: int


class ConsultationStats(CamelModel):
    total_consultations: int = 0
    avg_confidence_score: float = 0.0
    unique_patients: int = 0
    daily_trend: List[DailyCount] = []


class AnalyzeRequest(CamelModel):
    transcript: Optional[str] = None
    patient_info: Optional[Dict[str, Any]] = None
    consultation_duration: Optional[str] = None


class PrescriptionRequest(CamelModel):
    transcript: Optional[str] = None
    patient_info: Optional[Dict[str, Any]] = None
    consultation_id: Optional[str] = None
