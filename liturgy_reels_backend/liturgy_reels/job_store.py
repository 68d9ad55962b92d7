"""
Client for the job store that receives finished bundles.

The store speaks a small action-based protocol:
  POST {url}?action=generate_job   body: JobPayload wire form (+ job_id to replace)
  GET  {url}?action=list_jobs
  GET  {url}?action=get_job&job_id=...
and answers {"status": "success", ...} or {"status": "error", "message": ...}.
"""
import json
import httpx
import logging
from typing import Any, Dict, List, Optional

from .errors import TransportError
from .models import JobPayload, StoredJob
from .settings import JOB_STORE_URL

logger = logging.getLogger(__name__)


class JobStore:
    def __init__(self, url: Optional[str] = None, timeout: float = 120, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = (url if url is not None else JOB_STORE_URL).strip()
        self.timeout = timeout
        self.transport = transport
        if not self.url:
            logger.warning("Job store not configured - uploads will fail until JOB_STORE_URL is set")

    def _client(self) -> httpx.AsyncClient:
        if not self.url:
            raise TransportError("JOB_STORE_URL is not set; please configure your .env")
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _request(self, method: str, action: str, params: Optional[Dict[str, str]] = None,
                       body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = {"action": action, **(params or {})}
        try:
            async with self._client() as client:
                if body is not None:
                    # Script-hosted endpoints expect a text/plain body
                    response = await client.request(
                        method, self.url, params=query,
                        content=json.dumps(body), headers={"Content-Type": "text/plain;charset=utf-8"},
                    )
                else:
                    response = await client.request(method, self.url, params=query)
        except httpx.HTTPError as e:
            logger.error(f"Job store {action} request failed: {e!r}")
            raise TransportError(f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Job store {action} failed {response.status_code}: {response.text}")
            raise TransportError(response.text, status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Non-JSON response: {response.text[:500]}", status_code=response.status_code) from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response: {response.text[:500]}", status_code=response.status_code)
        return data

    async def upload(self, payload: JobPayload, existing_id: Optional[str] = None) -> str:
        """Store the bundle and return its job id. With existing_id the stored unit is replaced."""
        if existing_id and existing_id != payload.existing_id:
            payload = payload.model_copy(update={"existing_id": existing_id})
        logger.info(f"Sending job to store ({'replace ' + payload.existing_id if payload.existing_id else 'new'}) ref={payload.metadata.reference}")
        data = await self._request("POST", "generate_job", body=payload.to_wire())
        if data.get("status") == "success" and data.get("job_id"):
            logger.info(f"Stored job {data['job_id']}")
            return data["job_id"]
        raise TransportError(data.get("message") or json.dumps(data))

    async def list_jobs(self) -> List[StoredJob]:
        data = await self._request("GET", "list_jobs")
        if data.get("status") != "success":
            raise TransportError(data.get("message") or "Failed to list jobs")
        return [StoredJob.model_validate(job) for job in data.get("jobs", [])]

    async def fetch_job(self, job_id: str) -> JobPayload:
        logger.info(f"Fetching job {job_id}")
        data = await self._request("GET", "get_job", params={"job_id": job_id})
        if data.get("status") == "error":
            raise TransportError(data.get("message") or f"Job {job_id} not found")
        try:
            payload = JobPayload.from_wire(data)
        except ValueError as e:
            raise TransportError(f"Stored job {job_id} is malformed: {e}") from e
        if not payload.existing_id:
            payload = payload.model_copy(update={"existing_id": job_id})
        return payload
