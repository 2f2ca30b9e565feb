"""Error taxonomy shared by the gateway, pipeline and store."""

from typing import Any, Optional


class ConsultationError(Exception):
    """Base class for every error raised by this package."""


class UpstreamError(ConsultationError):
    """The inference service failed after the gateway exhausted its retries."""

    def __init__(self, status_code: Optional[int], body: Any):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Upstream AI service error ({status_code}): {body}")


class ValidationError(ConsultationError):
    """The caller supplied invalid input; nothing was executed."""


class NotFoundError(ConsultationError):
    def __init__(self, consultation_id: str):
        self.consultation_id = consultation_id
        super().__init__(f"Consultation not found: {consultation_id}")


class DuplicateIdError(ConsultationError):
    def __init__(self, consultation_id: str):
        self.consultation_id = consultation_id
        super().__init__(f"Consultation with this ID already exists: {consultation_id}")


class PersistenceError(ConsultationError):
    """The storage engine failed to read or write a record."""
