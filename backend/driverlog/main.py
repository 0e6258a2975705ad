from __future__ import annotations

from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, Response, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .database import engine, get_db
from .middleware import AdminPinMiddleware
from .remote import RemoteMirror
from .schemas import (
    BackupDocument,
    Day,
    DayDraft,
    Driver,
    DriverCreateRequest,
    LocationCreateRequest,
    LocationRate,
    LocationUpdateRequest,
    LoginRequest,
    MonthlySummary,
    PayrollSettings,
    PayrollSettingsUpdateRequest,
    ReconcileResponse,
    SyncPullResponse,
)
from .services import (
    create_driver,
    create_location,
    delete_day,
    delete_driver,
    delete_location,
    export_backup,
    export_monthly_report,
    get_day,
    get_payroll_settings,
    import_backup,
    import_locations_xlsx,
    list_days,
    list_drivers,
    list_locations,
    login,
    monthly_summary,
    pull_remote_profile,
    reconcile_recent_rates,
    save_day,
    update_location,
    update_payroll_settings,
)

EXPORT_MEDIA_TYPES = {
    "pdf": "application/pdf",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)
app.state.mirror = RemoteMirror(
    settings.remote_url,
    token=settings.remote_token,
    timeout=settings.remote_timeout,
    batch_size=settings.remote_batch_size,
)
app.add_middleware(AdminPinMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


def get_mirror(request: Request) -> RemoteMirror:
    return request.app.state.mirror


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/login", response_model=Driver)
def driver_login(
    payload: LoginRequest, db: Session = Depends(get_db), mirror: RemoteMirror = Depends(get_mirror)
) -> Driver:
    return login(db, mirror, payload.code)


# ----------------------------------------------------------------------
# Work days
# ----------------------------------------------------------------------
@app.get("/drivers/{driver_id}/days", response_model=list[Day])
def get_days(driver_id: str, month: Optional[str] = None, db: Session = Depends(get_db)) -> list[Day]:
    return list_days(db, driver_id, month)


@app.get("/drivers/{driver_id}/days/{day_id}", response_model=Day)
def get_single_day(driver_id: str, day_id: str, db: Session = Depends(get_db)) -> Day:
    return get_day(db, driver_id, day_id)


@app.post("/drivers/{driver_id}/days", response_model=Day)
def save_work_day(
    driver_id: str,
    payload: DayDraft,
    db: Session = Depends(get_db),
    mirror: RemoteMirror = Depends(get_mirror),
) -> Day:
    return save_day(db, mirror, driver_id, payload)


@app.delete("/drivers/{driver_id}/days/{day_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_work_day(
    driver_id: str,
    day_id: str,
    db: Session = Depends(get_db),
    mirror: RemoteMirror = Depends(get_mirror),
) -> Response:
    delete_day(db, mirror, driver_id, day_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/drivers/{driver_id}/reconcile", response_model=ReconcileResponse)
def reconcile_rates(
    driver_id: str, db: Session = Depends(get_db), mirror: RemoteMirror = Depends(get_mirror)
) -> ReconcileResponse:
    return ReconcileResponse(changed_count=reconcile_recent_rates(db, mirror, driver_id))


# ----------------------------------------------------------------------
# Settings, reports, sync
# ----------------------------------------------------------------------
@app.get("/drivers/{driver_id}/settings", response_model=PayrollSettings)
def get_settings(driver_id: str, db: Session = Depends(get_db)) -> PayrollSettings:
    return get_payroll_settings(db, driver_id)


@app.put("/drivers/{driver_id}/settings", response_model=PayrollSettings)
def put_settings(
    driver_id: str,
    payload: PayrollSettingsUpdateRequest,
    db: Session = Depends(get_db),
    mirror: RemoteMirror = Depends(get_mirror),
) -> PayrollSettings:
    return update_payroll_settings(db, mirror, driver_id, payload.model_dump(exclude_unset=True))


@app.get("/drivers/{driver_id}/reports/{year}/{month}", response_model=MonthlySummary)
def get_monthly_report(driver_id: str, year: int, month: int, db: Session = Depends(get_db)) -> MonthlySummary:
    return monthly_summary(db, driver_id, year, month)


@app.get("/drivers/{driver_id}/reports/{year}/{month}/export")
def download_monthly_report(
    driver_id: str, year: int, month: int, format: str = "pdf", db: Session = Depends(get_db)
) -> Response:
    path = export_monthly_report(db, driver_id, year, month, format)
    return FileResponse(path, media_type=EXPORT_MEDIA_TYPES[format], filename=path.name)


@app.post("/drivers/{driver_id}/sync/pull", response_model=SyncPullResponse)
def pull_profile(
    driver_id: str, db: Session = Depends(get_db), mirror: RemoteMirror = Depends(get_mirror)
) -> SyncPullResponse:
    return pull_remote_profile(db, mirror, driver_id)


@app.get("/drivers/{driver_id}/backup", response_model=BackupDocument)
def download_backup(driver_id: str, db: Session = Depends(get_db)) -> BackupDocument:
    return export_backup(db, driver_id)


@app.post("/drivers/{driver_id}/backup", response_model=BackupDocument)
def restore_backup(
    driver_id: str,
    payload: BackupDocument,
    db: Session = Depends(get_db),
    mirror: RemoteMirror = Depends(get_mirror),
) -> BackupDocument:
    return import_backup(db, mirror, driver_id, payload)


# ----------------------------------------------------------------------
# Rate table and roster
# ----------------------------------------------------------------------
@app.get("/locations", response_model=list[LocationRate])
def get_locations(db: Session = Depends(get_db)) -> list[LocationRate]:
    return list_locations(db)


@app.post("/admin/locations", response_model=LocationRate, status_code=status.HTTP_201_CREATED)
def add_location(
    payload: LocationCreateRequest, db: Session = Depends(get_db), mirror: RemoteMirror = Depends(get_mirror)
) -> LocationRate:
    return create_location(db, mirror, payload)


@app.put("/admin/locations/{location_id}", response_model=LocationRate)
def modify_location(
    location_id: str,
    payload: LocationUpdateRequest,
    db: Session = Depends(get_db),
    mirror: RemoteMirror = Depends(get_mirror),
) -> LocationRate:
    return update_location(db, mirror, location_id, payload)


@app.delete("/admin/locations/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_location(
    location_id: str, db: Session = Depends(get_db), mirror: RemoteMirror = Depends(get_mirror)
) -> Response:
    delete_location(db, mirror, location_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/admin/locations/import", response_model=list[LocationRate])
async def upload_rate_sheet(
    append: bool = Form(True),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    mirror: RemoteMirror = Depends(get_mirror),
) -> list[LocationRate]:
    content = await file.read()
    return import_locations_xlsx(db, mirror, content, append)


@app.get("/admin/drivers", response_model=list[Driver])
def get_drivers(db: Session = Depends(get_db)) -> list[Driver]:
    return list_drivers(db)


@app.post("/admin/drivers", response_model=Driver, status_code=status.HTTP_201_CREATED)
def add_driver(
    payload: DriverCreateRequest, db: Session = Depends(get_db), mirror: RemoteMirror = Depends(get_mirror)
) -> Driver:
    return create_driver(db, mirror, payload)


@app.delete("/admin/drivers/{driver_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_driver(
    driver_id: str, db: Session = Depends(get_db), mirror: RemoteMirror = Depends(get_mirror)
) -> Response:
    delete_driver(db, mirror, driver_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
