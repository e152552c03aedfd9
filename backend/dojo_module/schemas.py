from typing import Any

from pydantic import BaseModel, Field


class CreatedResponse(BaseModel):
    id: int


class UpdatedResponse(BaseModel):
    updated: int


class DeletedResponse(BaseModel):
    deleted: bool = True


class StudentStatusResponse(BaseModel):
    id: int
    status: str


class LegacyToggleRequest(BaseModel):
    is_legacy: Any = None


class ConversionResponse(BaseModel):
    lead_id: int
    student_id: int
    status: str = "converted"
    created: bool
    matched_by: str | None = None
    filled_fields: list[str] = Field(default_factory=list)


class MoneyBreakdown(BaseModel):
    taxable: float
    non_taxable: float
    total: float


class AccountingSummary(BaseModel):
    date_from: str | None = None
    date_to: str | None = None
    income: MoneyBreakdown
    expenses: MoneyBreakdown
    net: float


class MonthlyTotal(BaseModel):
    month: str
    income: float
    expenses: float
    net: float


class UploadOut(BaseModel):
    ok: bool = True
    filename: str
    url: str


class UploadDeleted(BaseModel):
    ok: bool = True
    deleted: bool


class ImportResult(BaseModel):
    imported: dict[str, int]
    skipped: list[str] = Field(default_factory=list)


class SchemaStatus(BaseModel):
    report: dict[str, Any]
    tables: dict[str, list[str]]
    missing_columns: list[str]


class HealthOut(BaseModel):
    status: str
    database: str
