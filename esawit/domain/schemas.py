from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


RequestType = Literal["access", "portability", "rectification", "erasure"]
REQUEST_TYPES: tuple[str, ...] = ("access", "portability", "rectification", "erasure")


class HarvestReportContent(BaseModel):
    type: Literal["HARVEST"] = "HARVEST"
    harvest_date: date
    # Fresh fruit bunch weight.
    weight_kg: float = Field(ge=0)
    bunch_count: int | None = Field(default=None, ge=0)
    quality_grade: str | None = None
    notes: str | None = None


class FertilizationReportContent(BaseModel):
    type: Literal["FERTILIZATION"] = "FERTILIZATION"
    application_date: date
    fertilizer: str
    dosage_kg: float = Field(ge=0)
    area_hectares: float | None = Field(default=None, ge=0)
    notes: str | None = None


class MonthlyReportContent(BaseModel):
    type: Literal["MONTHLY"] = "MONTHLY"
    # YYYY-MM.
    period: str = Field(pattern=r"^\d{4}-\d{2}$")
    total_harvest_kg: float = Field(default=0, ge=0)
    tasks_completed: int = Field(default=0, ge=0)
    summary: str | None = None


class ProductionReportContent(BaseModel):
    type: Literal["PRODUCTION"] = "PRODUCTION"
    period_start: date
    period_end: date
    yield_tonnes_per_hectare: float = Field(ge=0)
    notes: str | None = None


ReportContent = Annotated[
    Union[
        HarvestReportContent,
        FertilizationReportContent,
        MonthlyReportContent,
        ProductionReportContent,
    ],
    Field(discriminator="type"),
]
_report_content_adapter: TypeAdapter[Any] = TypeAdapter(ReportContent)


def parse_report_content(report_type: str, content: dict[str, Any] | None) -> ReportContent:
    """Validate a stored report payload against the schema for its report type.

    The row's ``type`` column is the discriminator; a ``type`` key inside the
    payload, if present, must agree with it.
    """
    payload = dict(content or {})
    payload.setdefault("type", report_type)
    if payload["type"] != report_type:
        raise ValueError(f"report content type {payload['type']!r} does not match {report_type!r}")
    return _report_content_adapter.validate_python(payload)


def export_report_content(report_type: str, content: dict[str, Any] | None) -> dict[str, Any]:
    # Typed payloads export normalized; legacy or unknown shapes are passed through flagged.
    try:
        parsed = parse_report_content(report_type, content)
    except (ValidationError, ValueError):
        return {"schema_valid": False, "raw": content}
    return {"schema_valid": True, **parsed.model_dump(mode="json")}


class RectificationData(BaseModel):
    """User-editable personal data fields for a rectification request."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    image: str | None = None
    phone_number: str | None = Field(default=None, max_length=32)
    address: str | None = None
    personal_id: str | None = None
    bank_account: str | None = None
    company_name: str | None = None
    company_address: str | None = None
    tax_id: str | None = None
    timezone: str | None = None
    language: str | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    preferences: dict[str, Any] | None = None

    @field_validator("email")
    @classmethod
    def _email_cannot_be_cleared(cls, value: str | None) -> str | None:
        # May be omitted, but the users row requires an address.
        if value is None:
            raise ValueError("email cannot be null")
        return value


class DataSubjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    # Kept as a free string so unsupported types reach the manager and map to 400.
    request_type: str = Field(alias="requestType")
    data: dict[str, Any] | None = None


class ConsentRecord(BaseModel):
    consent_type: str = Field(min_length=1)
    granted: bool
    purpose: str = Field(min_length=1)


class DataBreachRecord(BaseModel):
    description: str = Field(min_length=1)
    affected_users: list[str] = Field(default_factory=list)
    severity: Literal["low", "medium", "high", "critical"]
