import json
from datetime import datetime, timezone
from typing import Optional

from core.logger import logger
from schemas.publish_models import PublishStatus, get_status_progress


def log_publish_event(
    event: str,
    job_id: str,
    status: PublishStatus,
    deployment_id: Optional[str] = None,
    url: Optional[str] = None,
    error: Optional[str] = None
) -> dict:
    """
    One JSON log line per job milestone, for log-based dashboards.
    """
    status = PublishStatus(status)
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "job_id": job_id,
        "status": status.value,
        "progress": get_status_progress(status),
        "deployment_id": deployment_id,
        "url": url,
        "error": error[:500] if error else None,  # Truncate long provider errors
    }

    if status == PublishStatus.FAILED:
        logger.warning(json.dumps(log_data))
    else:
        logger.info(json.dumps(log_data))

    return log_data
