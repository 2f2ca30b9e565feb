# backend/consultation_ai/services/pipeline_stages.py
"""The individual AI calls that make up a consultation analysis.

Each pipeline stage returns a :class:`StageResult` instead of raising, so the
orchestrator decides what a failure means for the request.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError

from consultation_ai.core.config import Settings
from consultation_ai.core.errors import UpstreamError, ValidationError
from consultation_ai.models import PatientInfo, Prescription
from consultation_ai.services import prompts
from consultation_ai.services.ai_gateway import AUDIO_TRANSCRIPTIONS, CHAT_COMPLETIONS, message_content

logger = logging.getLogger(__name__)

T = TypeVar("T")

OK = "ok"
DEGRADED = "degraded"
FATAL = "fatal"

KEY_POINTS_FALLBACK = "Key points extraction failed - please review transcript manually"

_BULLET_RE = re.compile(r"^[-•*]\s*")


@dataclass
class StageResult(Generic[T]):
    status: str
    value: Optional[T] = None
    reason: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, value: T) -> "StageResult[T]":
        return cls(OK, value)

    @classmethod
    def degraded(cls, value: T, reason: str) -> "StageResult[T]":
        return cls(DEGRADED, value, reason=reason)

    @classmethod
    def fatal(cls, error: BaseException) -> "StageResult[T]":
        return cls(FATAL, reason=str(error), error=error)

    @property
    def is_ok(self) -> bool:
        return self.status == OK


async def diarize_transcript(transcript: str, gateway, settings: Settings) -> StageResult[str]:
    """Label speaker turns. Falls back to the raw transcript on any failure."""
    payload = {
        "model": settings.AI_MODEL,
        "messages": [{"role": "user", "content": prompts.DIARIZATION_PROMPT.format(transcript=transcript)}],
        "temperature": 0.0,
        "max_tokens": min(len(transcript) + 500, settings.DIARIZATION_MAX_TOKENS),
    }
    try:
        response = await gateway.call(CHAT_COMPLETIONS, payload)
        labeled = message_content(response).strip()
    except (UpstreamError, KeyError, IndexError, TypeError) as e:
        logger.warning("Diarization failed, continuing with unlabeled transcript: %s", e)
        return StageResult.degraded(transcript, f"diarization failed: {e}")

    if not labeled:
        logger.warning("Diarization returned no text, continuing with unlabeled transcript")
        return StageResult.degraded(transcript, "diarization returned empty output")
    return StageResult.ok(labeled)


async def analyze_consultation(
    transcript: str, patient: PatientInfo, gateway, settings: Settings
) -> StageResult[dict]:
    """Structured clinical analysis as the raw JSON object returned by the model."""
    payload = {
        "model": settings.AI_MODEL,
        "messages": [
            {"role": "system", "content": prompts.SYSTEM_PROMPT},
            {
                "role": "user",
                "content": prompts.ANALYSIS_PROMPT.format(
                    patient_header=prompts.patient_header(patient), transcript=transcript
                ),
            },
        ],
        "response_format": {"type": "json_object"},
        "max_tokens": settings.ANALYSIS_MAX_TOKENS,
        "temperature": settings.ANALYSIS_TEMPERATURE,
    }
    try:
        response = await gateway.call(CHAT_COMPLETIONS, payload)
        analysis = json.loads(message_content(response))
    except (UpstreamError, ValueError, KeyError, IndexError, TypeError) as e:
        logger.error("Medical analysis failed: %s", e)
        return StageResult.fatal(e)

    if not isinstance(analysis, dict):
        error = ValueError(f"Invalid analysis response from AI: expected an object, got {type(analysis).__name__}")
        logger.error("%s", error)
        return StageResult.fatal(error)
    return StageResult.ok(analysis)


def parse_key_points(text: str) -> List[str]:
    points = []
    for line in text.splitlines():
        point = _BULLET_RE.sub("", line.strip()).strip()
        if point:
            points.append(point)
    return points


async def extract_key_points(transcript: str, gateway, settings: Settings) -> StageResult[List[str]]:
    payload = {
        "model": settings.AI_MODEL,
        "messages": [
            {"role": "system", "content": prompts.KEY_POINTS_SYSTEM},
            {"role": "user", "content": prompts.KEY_POINTS_PROMPT.format(transcript=transcript)},
        ],
        "max_tokens": settings.KEY_POINTS_MAX_TOKENS,
        "temperature": settings.KEY_POINTS_TEMPERATURE,
    }
    try:
        response = await gateway.call(CHAT_COMPLETIONS, payload)
        points = parse_key_points(message_content(response))
    except (UpstreamError, KeyError, IndexError, TypeError) as e:
        logger.warning("Key points extraction failed: %s", e)
        return StageResult.degraded([KEY_POINTS_FALLBACK], f"key points failed: {e}")

    if not points:
        logger.warning("Key points extraction returned no items")
        return StageResult.degraded([KEY_POINTS_FALLBACK], "key points returned empty output")
    return StageResult.ok(points)


async def transcribe_audio(
    audio: bytes, filename: str, content_type: str, gateway, settings: Settings
) -> str:
    """Speech to text. Upstream failures propagate as :class:`UpstreamError`."""
    if not audio:
        raise ValidationError("No audio file provided.")
    payload = {
        "model": settings.TRANSCRIPTION_MODEL,
        "file": (filename or "audio.wav", audio, content_type or "audio/wav"),
        "prompt": prompts.TRANSCRIPTION_PROMPT,
    }
    response = await gateway.call(AUDIO_TRANSCRIPTIONS, payload)
    return (response.get("text") or "").strip()


async def generate_prescription(
    transcript: str, patient: PatientInfo, gateway, settings: Settings
) -> Prescription:
    payload = {
        "model": settings.AI_MODEL,
        "messages": [
            {"role": "system", "content": prompts.SYSTEM_PROMPT},
            {
                "role": "user",
                "content": prompts.PRESCRIPTION_PROMPT.format(
                    patient_header=prompts.patient_header(patient), transcript=transcript
                ),
            },
        ],
        "response_format": {"type": "json_object"},
        "max_tokens": settings.PRESCRIPTION_MAX_TOKENS,
        "temperature": settings.PRESCRIPTION_TEMPERATURE,
    }
    response = await gateway.call(CHAT_COMPLETIONS, payload)
    content = message_content(response)
    try:
        data: Any = json.loads(content)
        if not isinstance(data, dict):
            raise ValueError("prescription payload is not an object")
        # The id and timestamp are always assigned locally
        data.pop("prescriptionId", None)
        data.pop("createdAt", None)
        return Prescription.model_validate(data)
    except (ValueError, PydanticValidationError) as e:
        raise UpstreamError(None, f"Malformed prescription payload: {e}") from e
