from __future__ import annotations

from fastapi import FastAPI, HTTPException

from clearance.api.routers import admin, drone, flight, identity, notification, pilot, review
from clearance.infra.db import check_db_ready
from clearance.infra.logging_setup import setup_logging

setup_logging()

app = FastAPI(
    title="drone-clearance",
    description="Pilot, drone and flight clearance with three-department review.",
    version="0.1.0",
)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
app.include_router(pilot.router, prefix="/api/pilot", tags=["pilot"])
app.include_router(drone.router, prefix="/api/drones", tags=["drones"])
app.include_router(flight.router, prefix="/api/flights", tags=["flights"])
app.include_router(review.router, prefix="/api/review", tags=["review"])
app.include_router(notification.router, prefix="/api/notifications", tags=["notifications"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
