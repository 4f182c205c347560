from __future__ import annotations

import pytest
from pydantic import ValidationError

from esawit.domain.schemas import (
    DataSubjectRequest,
    HarvestReportContent,
    RectificationData,
    export_report_content,
    parse_report_content,
)


def test_report_content_is_parsed_by_row_type() -> None:
    parsed = parse_report_content("HARVEST", {"harvest_date": "2026-10-01", "weight_kg": 1250.5})

    assert isinstance(parsed, HarvestReportContent)
    assert parsed.weight_kg == 1250.5


def test_report_content_type_mismatch_is_rejected() -> None:
    with pytest.raises(ValueError):
        parse_report_content("HARVEST", {"type": "MONTHLY", "period": "2026-09"})


def test_report_content_missing_fields_fail_validation() -> None:
    with pytest.raises(ValidationError):
        parse_report_content("FERTILIZATION", {"fertilizer": "NPK"})


def test_export_normalizes_valid_content() -> None:
    exported = export_report_content("MONTHLY", {"period": "2026-09", "tasks_completed": 12})

    assert exported["schema_valid"] is True
    assert exported["type"] == "MONTHLY"
    assert exported["tasks_completed"] == 12
    assert exported["total_harvest_kg"] == 0


def test_export_passes_through_legacy_content() -> None:
    legacy = {"summary_text": "free-form"}

    assert export_report_content("MONTHLY", legacy) == {"schema_valid": False, "raw": legacy}
    assert export_report_content("UNKNOWN", legacy) == {"schema_valid": False, "raw": legacy}


def test_rectification_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        RectificationData.model_validate({"name": "Budi", "role": "ADMIN"})


def test_rectification_rejects_malformed_email() -> None:
    with pytest.raises(ValidationError):
        RectificationData.model_validate({"email": "not-an-email"})


def test_rectification_rejects_clearing_email_but_allows_omitting_it() -> None:
    with pytest.raises(ValidationError, match="email cannot be null"):
        RectificationData.model_validate({"email": None})

    parsed = RectificationData.model_validate({"name": None})

    assert parsed.model_dump(exclude_unset=True) == {"name": None}


def test_data_subject_request_accepts_camel_case_aliases() -> None:
    request = DataSubjectRequest.model_validate({"userId": "u1", "requestType": "access"})

    assert request.user_id == "u1"
    assert request.request_type == "access"
    assert request.data is None
