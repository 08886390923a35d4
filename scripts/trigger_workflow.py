#!/usr/bin/env python3
"""Trigger the business cycle time calculation via Render API.

Called by cron jobs after the DORA and refdiff stages have finished.
It uses the Render Workflows SDK client to trigger the
calculate_business_cycle_time task for one project.

Usage:
    python scripts/trigger_workflow.py <project-name>

Environment variables required:
    RENDER_API_KEY: Your Render API key
    WORKFLOW_SERVICE_ID: The service ID of your workflow (optional, uses slug if not set)
"""

import asyncio
import os
import sys

from dotenv import load_dotenv

load_dotenv()


async def trigger_workflow(project_name: str) -> None:
    """Trigger the cycle time task via Render SDK and wait for it."""
    from render_sdk.client import Client

    if not os.environ.get("RENDER_API_KEY"):
        print("Error: RENDER_API_KEY environment variable is required")
        sys.exit(1)

    workflow_id = os.environ.get("WORKFLOW_SERVICE_ID", "business-cycle-metrics")
    task_identifier = f"{workflow_id}/calculate_business_cycle_time"

    print(f"Triggering workflow task: {task_identifier}")
    print(f"Project: {project_name}")

    async with Client() as client:
        task_run = await client.workflows.run_task(task_identifier, [project_name])

        print(f"Task run started: {task_run.id}")
        print(f"Status: {task_run.status}")

        result = await task_run
        print(f"Task completed with status: {result.status}")

        if result.status == "succeeded":
            print("Cycle time calculation completed successfully!")
        else:
            print(f"Cycle time calculation failed: {result.error}")
            sys.exit(1)


def main() -> None:
    """Main entry point."""
    if len(sys.argv) < 2 or not sys.argv[1].strip():
        print("Usage: python scripts/trigger_workflow.py <project-name>")
        sys.exit(1)

    asyncio.run(trigger_workflow(sys.argv[1].strip()))


if __name__ == "__main__":
    main()
