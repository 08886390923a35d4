"""Entry point for Render Workflows.

This file registers all tasks with Render Workflows and starts the task server.
To deploy: Create a Workflow service in the Render Dashboard and point it to this repo.
"""

import logging
import os
import sys

from dotenv import load_dotenv

# Configure logging FIRST before any other imports
# This ensures we capture any errors during module imports
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

REGISTERED_TASKS = [
    "run_business_cycle_pipeline",
    "calculate_business_cycle_time",
    "enrich_work_items",
]


def validate_environment() -> list[str]:
    """Validate required environment variables and return list of issues."""
    issues = []

    required_vars = {
        "DATABASE_URL": "PostgreSQL connection shared with the upstream collectors",
    }

    optional_vars = {
        "CANDIDATE_BATCH_SIZE": "Rows fetched per cursor round trip (default 100)",
        "LOG_FORMAT": "Set to 'json' for structured logs",
    }

    logger.info("Validating environment variables...")

    for var, description in required_vars.items():
        if not os.environ.get(var):
            issues.append(f"  - {var}: {description}")
        else:
            value = os.environ[var]
            masked = value[:8] + "..." if len(value) > 8 else "***"
            logger.info(f"  ✓ {var}={masked}")

    for var, description in optional_vars.items():
        if not os.environ.get(var):
            logger.info(f"  ○ {var} not set ({description})")
        else:
            logger.info(f"  ✓ {var}={os.environ[var]}")

    return issues


def main() -> None:
    """Start the workflow service with proper validation and logging."""
    load_dotenv()

    logger.info("=" * 70)
    logger.info("Business Cycle Metrics - Workflow Service")
    logger.info("=" * 70)

    issues = validate_environment()

    if issues:
        logger.warning("")
        logger.warning("Missing required environment variables:")
        for issue in issues:
            logger.warning(issue)
        logger.warning("")
        logger.warning("Configure these in the Render Workflow settings.")
        logger.warning("Tasks may fail if these are not set.")
        logger.warning("")

    # Import tasks module to register @task decorated functions
    logger.info("")
    logger.info("Registering workflow tasks...")

    try:
        from cycle_metrics import tasks  # noqa: F401

        logger.info("")
        logger.info("Registered tasks:")
        for task_name in REGISTERED_TASKS:
            logger.info(f"  - {task_name}")

    except Exception as e:
        logger.error(f"Failed to import tasks module: {e}", exc_info=True)
        sys.exit(1)

    logger.info("")
    logger.info("=" * 70)
    logger.info("Starting workflow service...")
    logger.info("=" * 70)

    from render_sdk.workflows import start

    start()


if __name__ == "__main__":
    main()
