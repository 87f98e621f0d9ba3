"""FastAPI routers."""

from fastapi import HTTPException, Request


def require_state(request: Request, name: str):
    """Return ``app.state.<name>``, or 503 if the pipeline is not configured."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail="Pipeline not configured")
    return value
