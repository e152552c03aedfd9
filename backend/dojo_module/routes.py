from typing import Any

from fastapi import APIRouter, Body, Depends, File, Query, Request, UploadFile, status
from sqlalchemy import text as sa_text
from sqlalchemy.orm import Session

from .accounting import accounting_summary, monthly_totals
from .database import get_context, get_db_session
from .middleware import require_admin_token
from .normalizer import coerce_date, coerce_flag, coerce_int
from .schemas import (
    AccountingSummary,
    ConversionResponse,
    CreatedResponse,
    DeletedResponse,
    HealthOut,
    ImportResult,
    LegacyToggleRequest,
    MonthlyTotal,
    SchemaStatus,
    StudentStatusResponse,
    UpdatedResponse,
    UploadDeleted,
    UploadOut,
)
from .services import (
    create_record,
    delete_record,
    export_tables,
    get_record,
    import_tables,
    list_records,
    list_students,
    set_student_status,
    update_record,
)

router = APIRouter(prefix="/api", tags=["Dojo Admin"])


@router.get("/health", response_model=HealthOut)
def health(db: Session = Depends(get_db_session), ctx=Depends(get_context)):
    db.execute(sa_text("SELECT 1"))
    return HealthOut(status="ok", database=ctx.engine.dialect.name)


# --- Students ---

@router.get("/students")
def get_students(
    status_filter: str = Query(default="active", alias="status"),
    db: Session = Depends(get_db_session),
    ctx=Depends(get_context),
):
    return list_students(db, ctx.snapshot, status_filter)


@router.get("/students/{student_id}")
def get_student(student_id: int, db: Session = Depends(get_db_session)):
    return get_record(db, "students", student_id)


@router.post("/students", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def add_student(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db_session),
    ctx=Depends(get_context),
):
    return CreatedResponse(id=create_record(db, ctx.normalizer, "students", payload))


@router.put("/students/{student_id}", response_model=UpdatedResponse)
def edit_student(
    student_id: int,
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db_session),
    ctx=Depends(get_context),
):
    return UpdatedResponse(updated=update_record(db, ctx.normalizer, "students", student_id, payload))


@router.delete("/students/{student_id}", response_model=DeletedResponse)
def remove_student(student_id: int, db: Session = Depends(get_db_session)):
    delete_record(db, "students", student_id)
    return DeletedResponse()


@router.post("/students/{student_id}/archive", response_model=StudentStatusResponse)
def archive_student(student_id: int, db: Session = Depends(get_db_session), ctx=Depends(get_context)):
    set_student_status(db, ctx.normalizer, student_id, "archived")
    return StudentStatusResponse(id=student_id, status="archived")


@router.post("/students/{student_id}/restore", response_model=StudentStatusResponse)
def restore_student(student_id: int, db: Session = Depends(get_db_session), ctx=Depends(get_context)):
    set_student_status(db, ctx.normalizer, student_id, "active")
    return StudentStatusResponse(id=student_id, status="active")


@router.put("/students/{student_id}/legacy", response_model=StudentStatusResponse)
def toggle_legacy(
    student_id: int,
    payload: LegacyToggleRequest,
    db: Session = Depends(get_db_session),
    ctx=Depends(get_context),
):
    new_status = "archived" if coerce_flag(payload.is_legacy) else "active"
    set_student_status(db, ctx.normalizer, student_id, new_status)
    return StudentStatusResponse(id=student_id, status=new_status)


@router.post("/students/{student_id}/photo", response_model=UploadOut)
def upload_student_photo(
    student_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db_session),
    ctx=Depends(get_context),
):
    get_record(db, "students", student_id)
    stored = ctx.storage.save(file.filename, file.file)
    try:
        update_record(db, ctx.normalizer, "students", student_id, {"photo": stored.url})
    except Exception:
        ctx.storage.delete(stored.filename)
        raise
    return UploadOut(filename=stored.filename, url=stored.url)


# --- Leads ---

@router.get("/leads")
def get_leads(
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db_session),
    ctx=Depends(get_context),
):
    return list_records(db, ctx.snapshot, "leads", {"status": status_filter})


@router.get("/leads/{lead_id}")
def get_lead(lead_id: int, db: Session = Depends(get_db_session)):
    return get_record(db, "leads", lead_id)


@router.post("/leads", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED)
def add_lead(payload: dict[str, Any] = Body(...), db: Session = Depends(get_db_session), ctx=Depends(get_context)):
    return CreatedResponse(id=create_record(db, ctx.normalizer, "leads", payload))


@router.put("/leads/{lead_id}", response_model=UpdatedResponse)
def edit_lead(
    lead_id: int,
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db_session),
    ctx=Depends(get_context),
):
    return UpdatedResponse(updated=update_record(db, ctx.normalizer, "leads", lead_id, payload))


@router.delete("/leads/{lead_id}", response_model=DeletedResponse)
def remove_lead(lead_id: int, db: Session = Depends(get_db_session)):
    delete_record(db, "leads", lead_id)
    return DeletedResponse()


@router.post("/leads/{lead_id}/convert", response_model=ConversionResponse)
def convert_lead(lead_id: int, db: Session = Depends(get_db_session), ctx=Depends(get_context)):
    result = ctx.conversions.convert(db, lead_id)
    return ConversionResponse(
        lead_id=result.lead_id,
        student_id=result.student_id,
        created=result.created,
        matched_by=result.matched_by,
        filled_fields=list(result.filled_fields),
    )


# --- Payments, expenses, attendance ---

FILTER_COERCERS = {
    "student_id": lambda value: coerce_int(value, "student_id"),
    "date": lambda value: coerce_date(value, "date"),
    "category": lambda value: value,
}


def _register_ledger_routes(table: str, filter_fields: tuple[str, ...]) -> None:
    path = f"/{table}"

    def list_rows(request: Request, db: Session = Depends(get_db_session), ctx=Depends(get_context)):
        filters = {
            field: FILTER_COERCERS[field](request.query_params[field])
            for field in filter_fields
            if request.query_params.get(field)
        }
        return list_records(db, ctx.snapshot, table, filters)

    def get_row(record_id: int, db: Session = Depends(get_db_session)):
        return get_record(db, table, record_id)

    def add_row(payload: dict[str, Any] = Body(...), db: Session = Depends(get_db_session), ctx=Depends(get_context)):
        return CreatedResponse(id=create_record(db, ctx.normalizer, table, payload))

    def edit_row(
        record_id: int,
        payload: dict[str, Any] = Body(...),
        db: Session = Depends(get_db_session),
        ctx=Depends(get_context),
    ):
        return UpdatedResponse(updated=update_record(db, ctx.normalizer, table, record_id, payload))

    def remove_row(record_id: int, db: Session = Depends(get_db_session)):
        delete_record(db, table, record_id)
        return DeletedResponse()

    router.add_api_route(path, list_rows, methods=["GET"], name=f"list_{table}")
    router.add_api_route(f"{path}/{{record_id}}", get_row, methods=["GET"], name=f"get_{table}")
    router.add_api_route(
        path,
        add_row,
        methods=["POST"],
        response_model=CreatedResponse,
        status_code=status.HTTP_201_CREATED,
        name=f"add_{table}",
    )
    router.add_api_route(
        f"{path}/{{record_id}}", edit_row, methods=["PUT"], response_model=UpdatedResponse, name=f"edit_{table}"
    )
    router.add_api_route(
        f"{path}/{{record_id}}", remove_row, methods=["DELETE"], response_model=DeletedResponse, name=f"remove_{table}"
    )


_register_ledger_routes("payments", ("student_id", "date"))
_register_ledger_routes("expenses", ("category", "date"))
_register_ledger_routes("attendance", ("student_id", "date"))


# --- Accounting ---

@router.get("/accounting/summary", response_model=AccountingSummary)
def get_accounting_summary(
    date_from: str | None = Query(default=None, alias="from"),
    date_to: str | None = Query(default=None, alias="to"),
    db: Session = Depends(get_db_session),
):
    return accounting_summary(db, date_from=date_from, date_to=date_to)


@router.get("/accounting/monthly", response_model=list[MonthlyTotal])
def get_monthly_totals(
    date_from: str | None = Query(default=None, alias="from"),
    date_to: str | None = Query(default=None, alias="to"),
    db: Session = Depends(get_db_session),
):
    return monthly_totals(db, date_from=date_from, date_to=date_to)


# --- Uploads ---

@router.get("/uploads", response_model=list[UploadOut])
def get_uploads(ctx=Depends(get_context)):
    return [UploadOut(filename=item.filename, url=item.url) for item in ctx.storage.list_files()]


@router.post("/uploads", response_model=UploadOut, status_code=status.HTTP_201_CREATED)
def add_upload(file: UploadFile = File(...), ctx=Depends(get_context)):
    stored = ctx.storage.save(file.filename, file.file)
    return UploadOut(filename=stored.filename, url=stored.url)


@router.delete("/uploads/{filename}", response_model=UploadDeleted)
def remove_upload(filename: str, ctx=Depends(get_context)):
    return UploadDeleted(deleted=ctx.storage.delete(filename))


# --- Admin ---

@router.get("/admin/export", dependencies=[Depends(require_admin_token)])
def admin_export(db: Session = Depends(get_db_session)):
    return export_tables(db)


@router.post("/admin/import", response_model=ImportResult, dependencies=[Depends(require_admin_token)])
def admin_import(payload: dict[str, Any] = Body(...), db: Session = Depends(get_db_session), ctx=Depends(get_context)):
    return import_tables(db, ctx.normalizer, payload)


@router.get("/admin/schema", response_model=SchemaStatus, dependencies=[Depends(require_admin_token)])
def admin_schema(ctx=Depends(get_context)):
    return SchemaStatus(
        report=ctx.report.as_dict(),
        tables=ctx.snapshot.as_dict(),
        missing_columns=ctx.missing_columns(),
    )
