"""Directory sync trigger - the upsert job itself lives elsewhere."""

import httpx
import structlog

logger = structlog.get_logger()


def trigger_directory_sync(url: str, automation_secret: str) -> dict:
    """POST to the directory sync job. Raises httpx.HTTPError on failure."""
    with httpx.Client(timeout=60.0) as client:
        resp = client.post(url, json={}, headers={"X-Automation-Secret": automation_secret})
        resp.raise_for_status()
    logger.info("directory_sync_triggered", status=resp.status_code)
    try:
        return resp.json() or {"ok": True}
    except ValueError:
        return {"ok": True}
