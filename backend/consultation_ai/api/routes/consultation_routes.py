# backend/consultation_ai/api/routes/consultation_routes.py

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from consultation_ai.core.config import Settings
from consultation_ai.core.errors import (
    DuplicateIdError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from consultation_ai.db.consultation_store import ConsultationStore
from consultation_ai.models import AnalyzeRequest, Consultation, PrescriptionRequest
from consultation_ai.models.consultation import utc_now
from consultation_ai.services.consultation_pipeline import ConsultationPipeline

router = APIRouter(tags=["consultation"])


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> ConsultationStore:
    return request.app.state.store


def get_pipeline(request: Request) -> ConsultationPipeline:
    return request.app.state.pipeline


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    content = {"error": error}
    if details:
        content["details"] = details
    return JSONResponse(content, status_code=status_code)


@router.get("/")
async def health():
    return {
        "message": "Consultation AI backend is running",
        "timestamp": utc_now().isoformat(),
    }


@router.post("/transcribe")
async def transcribe(
    audio: UploadFile = File(...),
    pipeline: ConsultationPipeline = Depends(get_pipeline),
):
    if not (audio.content_type or "").startswith("audio/"):
        return _error(400, "Only audio files are allowed")
    audio_bytes = await audio.read()

    try:
        text = await pipeline.transcribe(audio_bytes, audio.filename, audio.content_type)
    except ValidationError as e:
        return _error(400, str(e))
    except UpstreamError as e:
        return _error(502, "Failed to transcribe audio.", str(e))

    if not text:
        return _error(400, "Could not transcribe audio (empty result)")
    return {"transcript": text}


@router.post("/analyze")
async def analyze(
    req: AnalyzeRequest,
    pipeline: ConsultationPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    """
    Full analysis pipeline: diarization, clinical analysis, key points,
    reminders and confidence score, then persistence. Stage failures degrade
    the result instead of failing the request.
    """
    pending = pipeline.process(req.transcript, req.patient_info, req.consultation_duration)
    try:
        if settings.PIPELINE_TIMEOUT_SECONDS:
            result = await asyncio.wait_for(pending, timeout=settings.PIPELINE_TIMEOUT_SECONDS)
        else:
            result = await pending
    except ValidationError as e:
        return _error(400, str(e))
    except asyncio.TimeoutError:
        return _error(504, "Consultation analysis timed out")
    return result.to_document()


@router.post("/generate-prescription")
async def generate_prescription(
    req: PrescriptionRequest,
    pipeline: ConsultationPipeline = Depends(get_pipeline),
):
    try:
        prescription = await pipeline.generate_prescription(req.transcript, req.patient_info, req.consultation_id)
    except ValidationError as e:
        return _error(400, str(e))
    except UpstreamError as e:
        return _error(502, "Failed to generate e-prescription", str(e))

    return {**prescription.model_dump(by_alias=True, mode="json"), "transcript": req.transcript}


@router.post("/consultations", status_code=201)
async def create_consultation(
    payload: Dict[str, Any] = Body(...),
    store: ConsultationStore = Depends(get_store),
):
    if not payload.get("transcript"):
        return _error(400, "Transcript is required")
    try:
        consultation = Consultation.model_validate(payload)
    except ValueError as e:
        return _error(400, "Invalid consultation", str(e))

    try:
        saved = await store.create(consultation)
    except DuplicateIdError as e:
        return _error(409, str(e))
    except PersistenceError as e:
        return _error(500, "Failed to save consultation", str(e))

    return {
        "message": "Consultation saved successfully",
        "consultationId": saved.consultation_id,
        "consultation": saved.to_document(),
    }


@router.get("/consultations")
async def list_consultations(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    patient_name: Optional[str] = Query(None, alias="patientName"),
    patient_id: Optional[str] = Query(None, alias="patientId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    store: ConsultationStore = Depends(get_store),
):
    try:
        result = await store.list(
            patient_name=patient_name,
            patient_id=patient_id,
            start_date=start_date,
            end_date=end_date,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            page_size=limit,
        )
    except ValidationError as e:
        return _error(400, str(e))
    return result.model_dump(by_alias=True, mode="json")


@router.get("/consultations/{consultation_id}")
async def get_consultation(consultation_id: str, store: ConsultationStore = Depends(get_store)):
    try:
        consultation = await store.get_by_id(consultation_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return consultation.to_document()


@router.put("/consultations/{consultation_id}")
async def update_consultation(
    consultation_id: str,
    fields: Dict[str, Any] = Body(...),
    store: ConsultationStore = Depends(get_store),
):
    try:
        updated = await store.update(consultation_id, fields)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Consultation not found")
    except ValidationError as e:
        return _error(400, str(e))
    return {"message": "Consultation updated successfully", "consultation": updated.to_document()}


@router.delete("/consultations/{consultation_id}")
async def delete_consultation(consultation_id: str, store: ConsultationStore = Depends(get_store)):
    try:
        await store.delete(consultation_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return {"message": "Consultation deleted successfully", "consultationId": consultation_id}


@router.get("/stats/consultations")
async def consultation_stats(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    store: ConsultationStore = Depends(get_store),
):
    stats = await store.aggregate_stats(start_date, end_date)
    return stats.model_dump(by_alias=True, mode="json")
