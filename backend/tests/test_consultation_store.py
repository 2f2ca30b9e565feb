from datetime import datetime, timedelta, timezone

import pytest

from consultation_ai.core.errors import DuplicateIdError, NotFoundError, PersistenceError, ValidationError
from consultation_ai.db.consultation_store import ConsultationStore, to_timestamp
from consultation_ai.models import AnalysisMetadata, Consultation, PatientInfo, Prescription

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def make_consultation(name=None, patient_id=None, score=None, **kwargs) -> Consultation:
    metadata = AnalysisMetadata(confidence_score=score, ai_model="test-model") if score is not None else None
    return Consultation(
        patient_info=PatientInfo(name=name, patient_id=patient_id),
        transcript="Doctor: How are you?\nPatient: Fine.",
        analysis_metadata=metadata,
        **kwargs,
    )


async def backdate(store: ConsultationStore, consultation_id: str, created_at: datetime) -> None:
    # Creation time is server-assigned, so tests move it directly in the table
    async with store._connect() as db:
        await db.execute(
            "UPDATE consultations SET created_at=? WHERE consultation_id=?",
            (to_timestamp(created_at), consultation_id),
        )
        await db.commit()


async def test_create_assigns_timestamps_and_round_trips(store):
    consultation = make_consultation("Ada", "P-1", 0.8)

    stored = await store.create(consultation)
    fetched = await store.get_by_id(consultation.consultation_id)

    assert fetched.consultation_id == consultation.consultation_id
    assert fetched.created_at == stored.created_at
    assert fetched.updated_at == stored.created_at
    assert fetched.patient_info.name == "Ada"
    assert fetched.analysis_metadata.confidence_score == 0.8


async def test_duplicate_id_is_rejected(store):
    consultation = make_consultation()
    await store.create(consultation)

    with pytest.raises(DuplicateIdError):
        await store.create(make_consultation(consultation_id=consultation.consultation_id))


async def test_get_missing_raises_not_found(store):
    with pytest.raises(NotFoundError):
        await store.get_by_id("CONS-404")


async def test_pagination_over_25_records(store):
    for i in range(25):
        await store.create(make_consultation(f"Patient {i:02d}"))

    page = await store.list(page=2, page_size=10)

    assert len(page.consultations) == 10
    assert page.pagination.current == 2
    assert page.pagination.total == 3
    assert page.pagination.total_records == 25
    assert page.pagination.count == 10
    assert all("transcript" not in c for c in page.consultations)

    last = await store.list(page=3, page_size=10)
    assert last.pagination.count == 5


async def test_list_sorting(store):
    for name in ("Charlie", "alice", "Bob"):
        await store.create(make_consultation(name))

    ascending = await store.list(sort_by="patientName", sort_order="asc")
    newest_first = await store.list()

    assert [c["patientInfo"]["name"] for c in ascending.consultations] == ["Bob", "Charlie", "alice"]
    assert [c["patientInfo"]["name"] for c in newest_first.consultations] == ["Bob", "alice", "Charlie"]


async def test_list_filters(store):
    first = await store.create(make_consultation("Maria Lopez", "P-1"))
    second = await store.create(make_consultation("Mario Rossi", "P-2"))
    third = await store.create(make_consultation("John 100%_Smith", "P-3"))
    await backdate(store, first.consultation_id, NOW - timedelta(days=10))
    await backdate(store, second.consultation_id, NOW)
    await backdate(store, third.consultation_id, NOW)

    by_name = await store.list(patient_name="MARI")
    assert by_name.pagination.total_records == 2

    by_literal = await store.list(patient_name="100%_")
    assert [c["patientInfo"]["patientId"] for c in by_literal.consultations] == ["P-3"]

    by_id = await store.list(patient_id="P-2")
    assert [c["patientInfo"]["name"] for c in by_id.consultations] == ["Mario Rossi"]

    old = await store.list(end_date=NOW - timedelta(days=5))
    assert [c["consultationId"] for c in old.consultations] == [first.consultation_id]

    recent = await store.list(start_date=NOW - timedelta(days=5))
    assert recent.pagination.total_records == 2


async def test_name_filter_folds_non_ascii_case(store):
    await store.create(make_consultation("ÉLODIE Durand", "P-1"))
    await store.create(make_consultation("Straße Weber", "P-2"))
    await store.create(make_consultation("Elodie Martin", "P-3"))

    accented = await store.list(patient_name="élodie")
    assert [c["patientInfo"]["patientId"] for c in accented.consultations] == ["P-1"]

    folded = await store.list(patient_name="STRASSE")
    assert [c["patientInfo"]["patientId"] for c in folded.consultations] == ["P-2"]


async def test_list_rejects_bad_arguments(store):
    with pytest.raises(ValidationError):
        await store.list(sort_by="transcript")
    with pytest.raises(ValidationError):
        await store.list(page=0)


async def test_update_refreshes_updated_at(store):
    stored = await store.create(make_consultation("Ada", score=0.8))

    updated = await store.update(stored.consultation_id, {"keyPoints": ["Reviewed"], "patientInfo": {"name": "Ada L."}})

    assert updated.key_points == ["Reviewed"]
    assert updated.patient_info.name == "Ada L."
    assert updated.created_at == stored.created_at
    assert updated.updated_at > stored.updated_at
    listed = await store.list(patient_name="Ada L.")
    assert listed.pagination.total_records == 1


async def test_update_missing_raises_not_found(store):
    with pytest.raises(NotFoundError):
        await store.update("CONS-404", {"keyPoints": []})


@pytest.mark.parametrize("field", ["consultationId", "createdAt", "_id", "id"])
async def test_update_rejects_immutable_fields(store, field):
    stored = await store.create(make_consultation())

    with pytest.raises(ValidationError):
        await store.update(stored.consultation_id, {field: "changed"})


async def test_update_rejects_transcript_change_after_analysis(store):
    stored = await store.create(make_consultation(score=0.7))

    with pytest.raises(ValidationError):
        await store.update(stored.consultation_id, {"transcript": "Doctor: rewritten"})


async def test_update_rejects_invalid_values(store):
    stored = await store.create(make_consultation())

    with pytest.raises(ValidationError):
        await store.update(stored.consultation_id, {"transcript": "   "})


async def test_delete(store):
    stored = await store.create(make_consultation())

    assert await store.delete(stored.consultation_id) == stored.consultation_id
    with pytest.raises(NotFoundError):
        await store.get_by_id(stored.consultation_id)
    with pytest.raises(NotFoundError):
        await store.delete(stored.consultation_id)


async def test_append_prescription(store):
    stored = await store.create(make_consultation())
    prescription = Prescription(medications=[{"name": "Paracetamol", "dosage": "1 g"}])

    assert await store.append_prescription(stored.consultation_id, prescription) is True
    assert await store.append_prescription(stored.consultation_id, Prescription()) is True

    fetched = await store.get_by_id(stored.consultation_id)
    assert len(fetched.prescriptions) == 2
    assert fetched.prescriptions[0].medications[0].name == "Paracetamol"
    assert fetched.updated_at > stored.updated_at


async def test_append_prescription_to_missing_record_is_a_no_op(store):
    assert await store.append_prescription("CONS-404", Prescription()) is False


async def test_append_prescription_to_corrupt_record_is_a_no_op(store):
    stored = await store.create(make_consultation())
    async with store._connect() as db:
        await db.execute(
            "UPDATE consultations SET document=? WHERE consultation_id=?",
            ('{"consultationId": "broken"}', stored.consultation_id),
        )
        await db.commit()

    assert await store.append_prescription(stored.consultation_id, Prescription()) is False


async def test_aggregate_stats(store):
    a = await store.create(make_consultation("A", "P-1", 0.7))
    b = await store.create(make_consultation("B", "P-1", 0.9))
    c = await store.create(make_consultation("C", "P-2", 0.8))
    old = await store.create(make_consultation("D", None, 0.98))
    await backdate(store, a.consultation_id, NOW - timedelta(days=1))
    await backdate(store, b.consultation_id, NOW - timedelta(days=1))
    await backdate(store, c.consultation_id, NOW)
    await backdate(store, old.consultation_id, NOW - timedelta(days=45))

    stats = await store.aggregate_stats(now=NOW)

    assert stats.total_consultations == 4
    assert stats.avg_confidence_score == pytest.approx((0.7 + 0.9 + 0.8 + 0.98) / 4)
    assert stats.unique_patients == 2
    assert [(d.date, d.count) for d in stats.daily_trend] == [("2026-10-17", 2), ("2026-10-18", 1)]

    ranged = await store.aggregate_stats(start_date=NOW - timedelta(hours=1), now=NOW)
    assert ranged.total_consultations == 1
    assert ranged.unique_patients == 1
    assert [(d.date, d.count) for d in ranged.daily_trend] == [("2026-10-18", 1)]


async def test_aggregate_stats_on_empty_store(store):
    stats = await store.aggregate_stats()

    assert stats.total_consultations == 0
    assert stats.avg_confidence_score == 0.0
    assert stats.unique_patients == 0
    assert stats.daily_trend == []


async def test_storage_failure_is_a_persistence_error(tmp_path):
    broken = ConsultationStore(str(tmp_path / "missing-dir" / "db.sqlite3"))

    with pytest.raises(PersistenceError):
        await broken.init()
