"""Render API client for triggering the cycle time workflow.

Uses the Render REST API directly via httpx.
"""

import os
from typing import Any

import httpx

RENDER_API_BASE = "https://api.render.com/v1"

CALCULATE_TASK = "calculate_business_cycle_time"


class RenderAPIError(Exception):
    """Error from Render API."""

    pass


class RenderWorkflowClient:
    """Client for triggering Render Workflow tasks."""

    def __init__(
        self,
        api_key: str | None = None,
        workflow_slug: str | None = None,
        base_url: str = RENDER_API_BASE,
    ):
        """Initialize the client.

        Args:
            api_key: Render API key. Falls back to RENDER_API_KEY env var.
            workflow_slug: Workflow slug. Falls back to RENDER_WORKFLOW_SLUG env var.
            base_url: Render API base URL
        """
        self.api_key = api_key or os.environ.get("RENDER_API_KEY")
        self.workflow_slug = workflow_slug or os.environ.get("RENDER_WORKFLOW_SLUG")
        self.base_url = base_url

        if not self.api_key:
            raise RenderAPIError("RENDER_API_KEY not configured")
        if not self.workflow_slug:
            raise RenderAPIError("RENDER_WORKFLOW_SLUG not configured")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=30.0) as client:
            try:
                response = await client.request(method, path, headers=self._headers(), **kwargs)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                raise RenderAPIError(f"API error {e.response.status_code}: {e.response.text}") from e
            except httpx.HTTPError as e:
                raise RenderAPIError(f"Request to Render failed: {e}") from e

    async def run_task(self, task_name: str, arguments: list[Any] | None = None) -> dict:
        """Run a workflow task.

        Returns:
            Task run info including run_id
        """
        # Task identifier is {workflow-slug}/{task-name}
        task_identifier = f"{self.workflow_slug}/{task_name}"
        data = await self._request(
            "POST",
            "/tasks",
            json={"task": task_identifier, "input": arguments or []},
        )
        return {
            "run_id": data.get("id"),
            "status": data.get("status"),
            "task_identifier": task_identifier,
        }

    async def get_task_run(self, run_id: str) -> dict:
        """Get status of a task run."""
        data = await self._request("GET", f"/tasks/{run_id}")
        return {
            "run_id": data.get("id"),
            "status": data.get("status"),
            "created_at": data.get("createdAt"),
            "started_at": data.get("startedAt"),
            "finished_at": data.get("finishedAt"),
        }


def create_render_client() -> RenderWorkflowClient | None:
    """Create a Render workflow client if configured."""
    try:
        return RenderWorkflowClient()
    except RenderAPIError:
        return None
