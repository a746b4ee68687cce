"""FastAPI dependencies for dependency injection."""

from fastapi import HTTPException, status, Request

from kb_ingest.controller import ReconciliationController


# ============================================================================
# CONTROLLER DEPENDENCY
# ============================================================================

async def get_controller(request: Request) -> ReconciliationController:
    """
    Get the reconciliation controller created at startup.

    Args:
        request: FastAPI request

    Returns:
        ReconciliationController

    Raises:
        HTTPException: If the application has not finished starting
    """
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reconciliation controller not initialized"
        )
    return controller
