"""Pydantic models for the consultation pipeline and store."""

from .consultation import (
    AnalysisMetadata,
    AnalyzeRequest,
    ClinicalAnalysis,
    ClinicalDecisionSupport,
    ClinicalSummary,
    Consultation,
    ConsultationPage,
    ConsultationResponse,
    ConsultationStats,
    DailyCount,
    DifferentialDiagnosisEntry,
    FollowUpReminder,
    MedicalInsights,
    Medication,
    Pagination,
    PatientInfo,
    Prescription,
    PrescriptionRequest,
    Recommendation,
    RedFlag,
)

__all__ = [
    "AnalysisMetadata",
    "AnalyzeRequest",
    "ClinicalAnalysis",
    "ClinicalDecisionSupport",
    "ClinicalSummary",
    "Consultation",
    "ConsultationPage",
    "ConsultationResponse",
    "ConsultationStats",
    "DailyCount",
    "DifferentialDiagnosisEntry",
    "FollowUpReminder",
    "MedicalInsights",
    "Medication",
    "Pagination",
    "PatientInfo",
    "Prescription",
    "PrescriptionRequest",
    "Recommendation",
    "RedFlag",
]
