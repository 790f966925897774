"""
API Routes

REST endpoints for ArpMon: job CRUD and manual scans, device listing and
authorization, alert listing/acknowledgement and scan history.

Errors map onto status codes the same way everywhere:
ValidationError -> 422, NotFoundError -> 404, ConcurrentRunError -> 409,
anything else -> 500 with the traceback logged.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Request, HTTPException, Query

from arpmon.config import SEVERITY_LEVELS
from arpmon.modules.exceptions import ConcurrentRunError, NotFoundError, ValidationError
from arpmon.modules.models import JOB_RUNNING

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Helper Functions ─────────────────────────────────────────────────────────

def _get_monitor(request: Request):
    """Get the monitor service or raise 503."""
    monitor = request.app.state.monitor
    if not monitor:
        raise HTTPException(status_code=503, detail="Monitor not available")
    return monitor


async def _read_body(request: Request) -> dict:
    """Parse a JSON object body or raise 400."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Request body must be valid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return body


def _job_dict(monitor, job) -> dict:
    data = job.to_dict()
    try:
        data["state"] = monitor.get_job_state(job.id)
    except NotFoundError:
        data["state"] = None
    return data


def _validation_error(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail={"message": str(e), "field": e.field})


# ─── Job API Endpoints ────────────────────────────────────────────────────────

@router.get("/api/jobs")
async def get_jobs(request: Request):
    """List all scanning jobs."""
    monitor = _get_monitor(request)

    try:
        jobs = monitor.list_jobs()
        return {
            "count": len(jobs),
            "jobs": [_job_dict(monitor, job) for job in jobs],
        }
    except Exception as e:
        logger.error(f"Error listing jobs: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/api/jobs", status_code=201)
async def create_job(request: Request):
    """Create a scanning job."""
    monitor = _get_monitor(request)
    body = await _read_body(request)

    try:
        job = monitor.create_job(body)
        return _job_dict(monitor, job)
    except ValidationError as e:
        raise _validation_error(e)
    except Exception as e:
        logger.error(f"Error creating job: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/api/jobs/{job_id}")
async def get_job(request: Request, job_id: str):
    """Get a job by id."""
    monitor = _get_monitor(request)

    try:
        return _job_dict(monitor, monitor.get_job(job_id))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except Exception as e:
        logger.error(f"Error getting job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/api/jobs/{job_id}")
async def update_job(request: Request, job_id: str):
    """Apply a partial update to a job."""
    monitor = _get_monitor(request)
    body = await _read_body(request)

    try:
        job = monitor.update_job(job_id, body)
        return _job_dict(monitor, job)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ValidationError as e:
        raise _validation_error(e)
    except Exception as e:
        logger.error(f"Error updating job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/api/jobs/{job_id}")
async def delete_job(request: Request, job_id: str):
    """Delete a job.  A scan already running still records its result."""
    monitor = _get_monitor(request)

    try:
        monitor.delete_job(job_id)
        return {
            "success": True,
            "job_id": job_id,
            "message": f"Job {job_id} deleted",
        }
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except Exception as e:
        logger.error(f"Error deleting job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/api/jobs/{job_id}/scan", status_code=202)
async def trigger_scan(
    request: Request,
    job_id: str,
    wait: bool = Query(False, description="Wait for the scan to finish and return its result"),
):
    """Run a job now, outside its schedule."""
    monitor = _get_monitor(request)

    try:
        future = monitor.trigger_scan_now(job_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except ConcurrentRunError:
        raise HTTPException(status_code=409, detail=f"Job {job_id} is already running")
    except Exception as e:
        logger.error(f"Error triggering scan for job {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    response = {
        "success": True,
        "job_id": job_id,
        "state": JOB_RUNNING,
        "timestamp": datetime.now().isoformat(),
    }
    if wait:
        result = await asyncio.wrap_future(future)
        response["result"] = result.to_dict()
    return response


# ─── Device API Endpoints ─────────────────────────────────────────────────────

@router.get("/api/devices")
async def get_devices(
    request: Request,
    online_only: bool = Query(False, description="Only return online devices"),
    unauthorized_only: bool = Query(False, description="Only return unauthorized devices"),
):
    """Get all known devices, most recently seen first."""
    monitor = _get_monitor(request)

    try:
        devices = monitor.list_devices()
        if online_only:
            devices = [d for d in devices if d.is_online]
        if unauthorized_only:
            devices = [d for d in devices if not d.is_authorized]
        return {
            "count": len(devices),
            "devices": [device.to_dict() for device in devices],
        }
    except Exception as e:
        logger.error(f"Error getting devices: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/api/devices/{mac}")
async def get_device(request: Request, mac: str):
    """Get specific device by MAC address."""
    monitor = _get_monitor(request)

    try:
        return monitor.get_device(mac).to_dict()
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")
    except Exception as e:
        logger.error(f"Error getting device {mac}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/api/devices/{mac}/authorization")
async def set_device_authorization(request: Request, mac: str):
    """Set a device's authorization flag: {"is_authorized": true|false}."""
    monitor = _get_monitor(request)
    body = await _read_body(request)

    authorized = body.get("is_authorized")
    if not isinstance(authorized, bool):
        raise HTTPException(
            status_code=422,
            detail={"message": "is_authorized must be a boolean", "field": "is_authorized"},
        )

    try:
        device = monitor.set_device_authorization(mac, authorized)
        return {
            "success": True,
            "mac": device.mac,
            "device": device.to_dict(),
        }
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")
    except Exception as e:
        logger.error(f"Error updating device {mac}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# ─── Alert API Endpoints ──────────────────────────────────────────────────────

@router.get("/api/alerts")
async def get_alerts(
    request: Request,
    unacknowledged_only: bool = Query(False, description="Only return unacknowledged alerts"),
    severity: Optional[str] = Query(None, description="Filter by severity"),
    job_id: Optional[str] = Query(None, description="Filter by job"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of alerts"),
):
    """Get alerts, most recent first."""
    monitor = _get_monitor(request)

    if severity is not None and severity not in SEVERITY_LEVELS:
        raise HTTPException(
            status_code=422,
            detail=f"severity must be one of {', '.join(SEVERITY_LEVELS)}",
        )

    try:
        alerts = monitor.list_alerts(
            unacknowledged_only=unacknowledged_only,
            severity=severity,
            job_id=job_id,
            limit=limit,
        )
        return {
            "count": len(alerts),
            "alerts": [alert.to_dict() for alert in alerts],
        }
    except Exception as e:
        logger.error(f"Error getting alerts: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/api/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(request: Request, alert_id: str):
    """Acknowledge an alert."""
    monitor = _get_monitor(request)

    try:
        alert = monitor.acknowledge_alert(alert_id)
        return {"success": True, "alert_id": alert.id, "alert": alert.to_dict()}
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Alert not found")
    except Exception as e:
        logger.error(f"Error acknowledging alert: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/api/alerts")
async def clear_alerts(request: Request):
    """Remove every alert."""
    monitor = _get_monitor(request)

    try:
        count = monitor.clear_all_alerts()
        return {
            "success": True,
            "cleared_count": count,
            "message": f"Cleared {count} alert(s)",
        }
    except Exception as e:
        logger.error(f"Error clearing alerts: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# ─── Scan History & Stats ─────────────────────────────────────────────────────

@router.get("/api/scans")
async def get_scans(
    request: Request,
    job_id: Optional[str] = Query(None, description="Filter by job"),
    limit: int = Query(20, ge=1, le=1000, description="Maximum number of results"),
):
    """Get scan results, most recently completed first."""
    monitor = _get_monitor(request)

    try:
        results = monitor.list_scan_results(job_id=job_id, limit=limit)
        return {
            "count": len(results),
            "scans": [result.to_dict() for result in results],
        }
    except Exception as e:
        logger.error(f"Error getting scans: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/api/stats")
async def get_stats(request: Request):
    """Dashboard summary counters."""
    monitor = _get_monitor(request)

    try:
        return monitor.get_stats()
    except Exception as e:
        logger.error(f"Error getting stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
