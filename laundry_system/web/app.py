"""FastAPI-based staff API for the laundry job lifecycle."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field

from ..domain import MachineStatus, MachineType
from ..exceptions import LaundryError
from ..notifications import LoggingNotifier, Notifier, SmsGatewayNotifier
from ..scheduler import DisposalSweepScheduler
from ..services import LaundryService, LifecycleOptions
from ..storage import LaundryDatabase

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


class ConsumableModel(BaseModel):
    name: str
    quantity: int = Field(ge=0)


class TransactionRequest(BaseModel):
    transaction_id: str
    customer_name: str
    contact: str = ""
    service_name: str
    service_quantity: int = Field(ge=1)
    consumables: List[ConsumableModel] = Field(default_factory=list)
    issue_date: Optional[datetime] = None
    due_date: Optional[datetime] = None


class MachineRequest(BaseModel):
    name: str
    type: MachineType
    capacity_kg: float = Field(gt=0)


class MachineStatusRequest(BaseModel):
    status: MachineStatus


class CreateJobRequest(BaseModel):
    transaction_id: str
    load_count: Optional[int] = None
    detergent_qty: int = 0
    fabric_qty: int = 0
    contact: Optional[str] = None


class LoadAssignmentModel(BaseModel):
    load_number: int
    machine_id: Optional[str] = None
    status: str = "QUEUED"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    completed_at: Optional[datetime] = None


class UpdateJobRequest(BaseModel):
    detergent_qty: Optional[int] = None
    fabric_qty: Optional[int] = None
    status_flow: Optional[List[str]] = None
    current_step: Optional[int] = None
    load_assignments: Optional[List[LoadAssignmentModel]] = None
    contact: Optional[str] = None


class AssignMachineRequest(BaseModel):
    machine_id: str


class StartLoadRequest(BaseModel):
    duration_minutes: Optional[int] = None


class AdvanceLoadRequest(BaseModel):
    status: str


class DurationRequest(BaseModel):
    minutes: int


class StaffRequest(BaseModel):
    staff_name: str


class FormatSettingsRequest(BaseModel):
    store_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    footer_note: Optional[str] = None
    tracking_url: Optional[str] = None


def build_notifier(options: LifecycleOptions) -> Notifier:
    sms_url = os.getenv("LAUNDRY_SMS_URL", "").strip()
    if sms_url:
        return SmsGatewayNotifier(sms_url, timeout=options.sms_timeout_seconds)
    logger.info("LAUNDRY_SMS_URL not set; customer notifications are only logged")
    return LoggingNotifier()


def create_app(
    database_path: Optional[str] = None,
    *,
    service: Optional[LaundryService] = None,
    start_scheduler: bool = True,
    seed_demo_data: bool = False,
) -> FastAPI:
    database: Optional[LaundryDatabase] = None
    if service is None:
        options = LifecycleOptions.from_env()
        database = LaundryDatabase(
            database_path or os.getenv("LAUNDRY_DATABASE_PATH", "laundry.sqlite3")
        )
        service = LaundryService(
            job_repo=database.jobs,
            machine_repo=database.machines,
            transaction_repo=database.transactions,
            staff_notice_repo=database.staff_notices,
            notifier=build_notifier(options),
            options=options,
        )
    if seed_demo_data:
        ensure_demo_data(service)

    scheduler = DisposalSweepScheduler(service)
    app = FastAPI(title="Laundry Job Tracker")
    app.state.laundry_service = service
    app.state.database = database
    app.state.scheduler = scheduler

    @app.on_event("startup")
    def startup_event() -> None:  # pragma: no cover - framework hook
        if start_scheduler:
            scheduler.start()

    @app.on_event("shutdown")
    def shutdown_event() -> None:  # pragma: no cover - framework hook
        scheduler.stop()
        close = getattr(service.notifier, "close", None)
        if callable(close):
            close()
        if database is not None:
            database.close()

    @app.exception_handler(LaundryError)
    async def laundry_error_handler(request: Request, exc: LaundryError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    def get_service(request: Request) -> LaundryService:
        return request.app.state.laundry_service

    # ------------------------------------------------------------------
    # Transactions and machines
    # ------------------------------------------------------------------
    @app.post("/transactions", status_code=201)
    def register_transaction(request: Request, payload: TransactionRequest):
        return get_service(request).register_transaction(
            payload.transaction_id,
            payload.customer_name,
            payload.contact,
            payload.service_name,
            payload.service_quantity,
            consumables=[(item.name, item.quantity) for item in payload.consumables],
            issue_date=payload.issue_date,
            due_date=payload.due_date,
        )

    @app.get("/machines")
    def list_machines(
        request: Request,
        type: Optional[MachineType] = None,
        available: bool = False,
    ):
        registry = get_service(request).machines
        if available:
            return registry.list_available(type)
        return registry.list(type)

    @app.post("/machines", status_code=201)
    def register_machine(request: Request, payload: MachineRequest):
        return get_service(request).machines.register_machine(
            payload.name, payload.type, capacity_kg=payload.capacity_kg
        )

    @app.patch("/machines/{machine_id}/status")
    def set_machine_status(
        request: Request, machine_id: str, payload: MachineStatusRequest
    ):
        return get_service(request).machines.set_status(machine_id, payload.status)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    @app.post("/jobs", status_code=201)
    def create_job(request: Request, payload: CreateJobRequest):
        return get_service(request).create_job(
            payload.transaction_id,
            load_count=payload.load_count,
            detergent_qty=payload.detergent_qty,
            fabric_qty=payload.fabric_qty,
            contact=payload.contact,
        )

    @app.get("/jobs")
    def list_jobs(request: Request, active_only: bool = False):
        return get_service(request).list_jobs(active_only=active_only)

    @app.get("/jobs/{transaction_id}")
    def get_job(request: Request, transaction_id: str):
        return get_service(request).get_job_view(transaction_id)

    @app.patch("/jobs/{transaction_id}")
    def update_job(request: Request, transaction_id: str, payload: UpdateJobRequest):
        fields = payload.model_dump(exclude_unset=True)
        return get_service(request).update_job(transaction_id, fields)

    @app.delete("/jobs/{transaction_id}", status_code=204)
    def delete_job(request: Request, transaction_id: str):
        get_service(request).delete_job(transaction_id)

    # ------------------------------------------------------------------
    # Loads
    # ------------------------------------------------------------------
    @app.post("/jobs/{transaction_id}/loads/{load_number}/assign-machine")
    def assign_machine(
        request: Request,
        transaction_id: str,
        load_number: int,
        payload: AssignMachineRequest,
    ):
        return get_service(request).assign_machine(
            transaction_id, load_number, payload.machine_id
        )

    @app.post("/jobs/{transaction_id}/loads/{load_number}/start")
    def start_load(
        request: Request,
        transaction_id: str,
        load_number: int,
        payload: Optional[StartLoadRequest] = None,
    ):
        duration = payload.duration_minutes if payload else None
        return get_service(request).start_load(transaction_id, load_number, duration)

    @app.post("/jobs/{transaction_id}/loads/{load_number}/dry-again")
    def dry_again(request: Request, transaction_id: str, load_number: int):
        return get_service(request).dry_again(transaction_id, load_number)

    @app.post("/jobs/{transaction_id}/loads/{load_number}/advance")
    def advance_load(
        request: Request,
        transaction_id: str,
        load_number: int,
        payload: AdvanceLoadRequest,
    ):
        return get_service(request).advance_load(transaction_id, load_number, payload.status)

    @app.post("/jobs/{transaction_id}/loads/{load_number}/complete")
    def complete_load(request: Request, transaction_id: str, load_number: int):
        return get_service(request).complete_load(transaction_id, load_number)

    @app.patch("/jobs/{transaction_id}/loads/{load_number}/force-advance")
    def force_advance_load(request: Request, transaction_id: str, load_number: int):
        return get_service(request).force_advance_load(transaction_id, load_number)

    @app.patch("/jobs/{transaction_id}/loads/{load_number}/duration")
    def update_duration(
        request: Request,
        transaction_id: str,
        load_number: int,
        payload: DurationRequest,
    ):
        return get_service(request).update_load_duration(
            transaction_id, load_number, payload.minutes
        )

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------
    @app.post("/jobs/{transaction_id}/claim")
    def claim_laundry(request: Request, transaction_id: str, payload: StaffRequest):
        return get_service(request).claim_laundry(transaction_id, payload.staff_name)

    @app.get("/jobs/{transaction_id}/claim-receipt")
    def get_claim_receipt(request: Request, transaction_id: str):
        return get_service(request).get_claim_receipt(transaction_id)

    @app.get("/jobs/{transaction_id}/claim-receipt/print")
    def print_claim_receipt(request: Request, transaction_id: str):
        receipt = get_service(request).get_claim_receipt(transaction_id)
        return templates.TemplateResponse(
            request, "claim_receipt.html", {"request": request, "receipt": receipt}
        )

    @app.get("/claimed")
    def list_claimed(request: Request):
        return get_service(request).list_claimed_jobs()

    @app.get("/completed-unclaimed")
    def list_completed_unclaimed(request: Request):
        return get_service(request).list_completed_unclaimed_jobs()

    # ------------------------------------------------------------------
    # Expiry and disposal
    # ------------------------------------------------------------------
    @app.get("/expired")
    def list_expired(request: Request):
        return get_service(request).list_expired_jobs()

    @app.patch("/expired/{transaction_id}/dispose")
    def dispose_expired_job(
        request: Request, transaction_id: str, payload: StaffRequest
    ):
        return get_service(request).dispose_expired_job(transaction_id, payload.staff_name)

    @app.get("/disposed")
    def list_disposed(request: Request):
        return get_service(request).list_disposed_jobs()

    @app.get("/disposal-warnings/pending")
    def pending_disposal_warnings(request: Request):
        jobs = get_service(request).list_pending_disposal_warnings()
        return {"pendingJobs": jobs, "count": len(jobs)}

    @app.post("/disposal-warnings/send-manual")
    def send_manual_disposal_warnings(request: Request):
        report = get_service(request).manually_trigger_disposal_warnings()
        return {"message": "Disposal warnings processed", "data": report}

    @app.post("/disposal-warnings/send-for-job/{transaction_id}")
    def send_disposal_warning_for_job(request: Request, transaction_id: str):
        return get_service(request).check_and_send_disposal_warnings_for_job(transaction_id)

    # ------------------------------------------------------------------
    # Staff feed and settings
    # ------------------------------------------------------------------
    @app.get("/notifications")
    def list_notifications(request: Request, limit: int = 50):
        return get_service(request).list_staff_notices(limit=limit)

    @app.get("/format-settings")
    def get_format_settings(request: Request):
        return get_service(request).format_settings

    @app.put("/format-settings")
    def update_format_settings(request: Request, payload: FormatSettingsRequest):
        return get_service(request).update_format_settings(
            **payload.model_dump(exclude_unset=True)
        )

    return app


def ensure_demo_data(service: LaundryService) -> None:
    """Populate an empty shop with machines and one open transaction."""

    if service.machines.list():
        return

    service.update_format_settings(
        store_name="StarWash Laundry",
        address="53 A Bonifacio Street, Sta Lucia, Novaliches",
        phone="+63 917 555 0101",
        footer_note="Unclaimed laundry is disposed 7 days after completion.",
    )
    for index in range(1, 4):
        service.machines.register_machine(
            f"Washer {index}", MachineType.WASHER, capacity_kg=8.0
        )
    for index in range(1, 3):
        service.machines.register_machine(
            f"Dryer {index}", MachineType.DRYER, capacity_kg=10.0
        )
    if "DEMO-0001" not in service.transactions:
        service.register_transaction(
            "DEMO-0001",
            "Maria Santos",
            "+639171234567",
            "Wash & Dry",
            2,
            consumables=[("Ariel Detergent", 2), ("Downy Fabric Conditioner", 1)],
            due_date=service.now() + timedelta(days=3),
        )


__all__ = ["create_app", "ensure_demo_data", "build_notifier"]
