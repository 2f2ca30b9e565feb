# backend/consultation_ai/services/consultation_pipeline.py

import enum
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from consultation_ai.core.config import Settings
from consultation_ai.core.errors import DuplicateIdError, PersistenceError, ValidationError
from consultation_ai.db.consultation_store import ConsultationStore
from consultation_ai.models import (
    AnalysisMetadata,
    ClinicalAnalysis,
    Consultation,
    ConsultationResponse,
    PatientInfo,
    Prescription,
)
from consultation_ai.services import pipeline_stages
from consultation_ai.services.derived_data import calculate_confidence_score, generate_follow_up_reminders
from consultation_ai.services.sanitizer import fallback_analysis, sanitize, to_clinical_analysis

logger = logging.getLogger(__name__)

NOT_SAVED_WARNING = "Analysis completed but not saved to database"
ANALYSIS_FALLBACK_WARNING = "AI analysis failed; placeholder analysis returned"


class PipelineState(str, enum.Enum):
    RECEIVED = "Received"
    REQUEST_REJECTED = "RequestRejected"
    DIARIZED = "Diarized"
    ANALYZED = "Analyzed"
    FALLBACK = "Fallback"
    SANITIZED = "Sanitized"
    KEY_POINTS_EXTRACTED = "KeyPointsExtracted"
    DEGRADED = "Degraded"
    DERIVED = "Derived"
    PERSISTED = "Persisted"
    PERSIST_FAILED = "PersistFailed"
    RESPONDED = "Responded"


def parse_patient_info(patient_info: Optional[Dict[str, Any]]) -> PatientInfo:
    if patient_info is None:
        return PatientInfo()
    if not isinstance(patient_info, dict):
        raise ValidationError("patientInfo must be an object")
    try:
        return PatientInfo.model_validate(patient_info)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid patientInfo: {e}") from e


def require_transcript(transcript: Any) -> str:
    if not isinstance(transcript, str) or not transcript.strip():
        raise ValidationError("Transcript is required")
    return transcript


class PipelineRun:
    """One request's trip through the pipeline.

    Stages run strictly in order: diarize, analyze, sanitize, key points,
    derived data, persist. Only analysis has a placeholder fallback; every
    other stage degrades to a default and the run carries on.
    """

    def __init__(
        self,
        pipeline: "ConsultationPipeline",
        transcript: Any,
        patient_info: Optional[Dict[str, Any]] = None,
        consultation_duration: Optional[str] = None,
    ):
        self.pipeline = pipeline
        self.raw_transcript = transcript
        self.raw_patient_info = patient_info
        self.consultation_duration = consultation_duration or "N/A"
        self.history: List[PipelineState] = []
        self.degradations: List[str] = []
        self._advance(PipelineState.RECEIVED)

    @property
    def state(self) -> PipelineState:
        return self.history[-1]

    def _advance(self, state: PipelineState) -> None:
        logger.debug("Pipeline state -> %s", state.value)
        self.history.append(state)

    async def execute(self) -> ConsultationResponse:
        try:
            transcript = require_transcript(self.raw_transcript)
            patient = parse_patient_info(self.raw_patient_info)
        except ValidationError:
            self._advance(PipelineState.REQUEST_REJECTED)
            raise

        gateway, settings = self.pipeline.gateway, self.pipeline.settings
        logger.info("Starting full analysis pipeline")

        diarized = await pipeline_stages.diarize_transcript(transcript, gateway, settings)
        if not diarized.is_ok:
            self.degradations.append(diarized.reason)
        labeled = diarized.value
        self._advance(PipelineState.DIARIZED)

        analysis = await self._analyze(labeled, patient)

        key_points = await pipeline_stages.extract_key_points(labeled, gateway, settings)
        if key_points.is_ok:
            self._advance(PipelineState.KEY_POINTS_EXTRACTED)
        else:
            self.degradations.append(key_points.reason)
            self._advance(PipelineState.DEGRADED)

        analysis_document = analysis.model_dump(by_alias=True)
        reminders = generate_follow_up_reminders(analysis_document)
        confidence = calculate_confidence_score(analysis_document)
        self._advance(PipelineState.DERIVED)

        consultation = Consultation(
            patient_info=patient,
            transcript=labeled,
            clinical_summary=analysis.clinical_summary,
            medical_insights=analysis.medical_insights,
            key_points=key_points.value,
            follow_up_reminders=reminders,
            analysis_metadata=AnalysisMetadata(
                transcript_length=len(labeled),
                ai_model=settings.AI_MODEL,
                confidence_score=confidence,
                consultation_duration=self.consultation_duration,
            ),
        )

        warnings = []
        if PipelineState.FALLBACK in self.history:
            warnings.append(ANALYSIS_FALLBACK_WARNING)
        try:
            consultation = await self.pipeline.store.create(consultation)
            self._advance(PipelineState.PERSISTED)
        except (PersistenceError, DuplicateIdError) as e:
            logger.error("Database save error: %s", e)
            warnings.append(NOT_SAVED_WARNING)
            self._advance(PipelineState.PERSIST_FAILED)

        self._advance(PipelineState.RESPONDED)
        if self.degradations:
            logger.warning("Consultation %s degraded: %s", consultation.consultation_id, "; ".join(self.degradations))
        logger.info("Medical analysis completed for %s", consultation.consultation_id)
        return ConsultationResponse(
            **dict(consultation),
            warning="; ".join(warnings) or None,
            degradations=list(self.degradations),
        )

    async def _analyze(self, transcript: str, patient: PatientInfo) -> ClinicalAnalysis:
        gateway, settings = self.pipeline.gateway, self.pipeline.settings
        result = await pipeline_stages.analyze_consultation(transcript, patient, gateway, settings)

        if result.is_ok:
            try:
                analysis = to_clinical_analysis(sanitize(result.value))
                self._advance(PipelineState.ANALYZED)
                self._advance(PipelineState.SANITIZED)
                return analysis
            except PydanticValidationError as e:
                logger.error("Sanitized analysis failed validation: %s", e)
                self.degradations.append(f"analysis invalid: {e}")
        else:
            self.degradations.append(f"analysis failed: {result.reason}")

        self._advance(PipelineState.FALLBACK)
        analysis = to_clinical_analysis(fallback_analysis())
        self._advance(PipelineState.SANITIZED)
        return analysis


class ConsultationPipeline:
    """Entry point for the pipeline and the other AI-backed operations."""

    def __init__(self, gateway, store: ConsultationStore, settings: Settings):
        self.gateway = gateway
        self.store = store
        self.settings = settings

    def start(
        self,
        transcript: Any,
        patient_info: Optional[Dict[str, Any]] = None,
        consultation_duration: Optional[str] = None,
    ) -> PipelineRun:
        return PipelineRun(self, transcript, patient_info, consultation_duration)

    async def process(
        self,
        transcript: Any,
        patient_info: Optional[Dict[str, Any]] = None,
        consultation_duration: Optional[str] = None,
    ) -> ConsultationResponse:
        return await self.start(transcript, patient_info, consultation_duration).execute()

    async def transcribe(self, audio: bytes, filename: str, content_type: str) -> str:
        text = await pipeline_stages.transcribe_audio(audio, filename, content_type, self.gateway, self.settings)
        logger.info("Transcription successful for: %s", filename)
        return text

    async def generate_prescription(
        self,
        transcript: Any,
        patient_info: Optional[Dict[str, Any]] = None,
        consultation_id: Optional[str] = None,
    ) -> Prescription:
        transcript = require_transcript(transcript)
        patient = parse_patient_info(patient_info)

        logger.info("Generating e-prescription")
        prescription = await pipeline_stages.generate_prescription(transcript, patient, self.gateway, self.settings)
        if consultation_id:
            await self.store.append_prescription(consultation_id, prescription)
        return prescription
