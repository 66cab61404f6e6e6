## File: backend/main.py
# Builds the FastAPI application: CORS and audit middleware, one router per
# domain module, and the database/scheduler lifecycle.
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tripdesk.auth.routes import router as auth_router
from tripdesk.business_units.routes import router as business_unit_router
from tripdesk.cab_agreements.routes import router as cab_agreement_router
from tripdesk.cab_services.routes import router as cab_service_router
from tripdesk.common.utils import iso, utcnow
from tripdesk.core.audit import AuditLogMiddleware
from tripdesk.core.config import settings
from tripdesk.core.errors import register_exception_handlers
from tripdesk.core.scheduler import shutdown as stop_scheduler
from tripdesk.core.scheduler import start as start_scheduler
from tripdesk.db.prisma_client import connect, disconnect
from tripdesk.departments.routes import router as department_router
from tripdesk.documents.routes import driver_router as driver_document_router
from tripdesk.documents.routes import vehicle_router as vehicle_document_router
from tripdesk.drivers.routes import router as driver_router
from tripdesk.employee_dashboard.routes import router as employee_dashboard_router
from tripdesk.gps_logs.routes import router as gps_log_router
from tripdesk.invoices.routes import router as invoice_router
from tripdesk.trip_approvals.routes import router as trip_approval_router
from tripdesk.trip_assignments.routes import router as trip_assignment_router
from tripdesk.trip_costs.routes import router as trip_cost_router
from tripdesk.trip_logs.routes import router as trip_log_router
from tripdesk.trip_requests.routes import router as trip_request_router
from tripdesk.users.routes import router as user_router
from tripdesk.vehicles.routes import router as vehicle_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("tripdesk")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect()
    if settings.scheduler_enabled:
        start_scheduler()
    logger.info("TripDesk API started (%s)", settings.env)
    try:
        yield
    finally:
        stop_scheduler()
        await disconnect()


app = FastAPI(title="TripDesk API", lifespan=lifespan)

app.add_middleware(AuditLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

for router in (
    auth_router,
    user_router,
    department_router,
    business_unit_router,
    cab_service_router,
    cab_agreement_router,
    vehicle_router,
    driver_router,
    vehicle_document_router,
    driver_document_router,
    trip_request_router,
    trip_approval_router,
    trip_assignment_router,
    trip_log_router,
    trip_cost_router,
    invoice_router,
    gps_log_router,
    employee_dashboard_router,
):
    app.include_router(router)


@app.get("/")
async def root():
    return {"message": "TripDesk fleet and trip management API"}


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": iso(utcnow())}
