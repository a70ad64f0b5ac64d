"""FastAPI application main module.

This module defines the FastAPI application serving rating predictions from
a trained latent-factor model, its health check and its error mapping.
"""

import logging
import math
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lfmrec import __version__
from lfmrec.api.logging_config import RequestLoggingMiddleware
from lfmrec.api.routes import predict
from lfmrec.exceptions import LFMRecException

# Configure module logger
logger = logging.getLogger(__name__)

app = FastAPI(
    title="lfmrec API",
    description="Latent-factor rating prediction service",
    version=__version__,
)

app.add_middleware(RequestLoggingMiddleware)
app.include_router(predict.router)


@app.exception_handler(LFMRecException)
async def lfmrec_exception_handler(request: Request, exc: LFMRecException) -> JSONResponse:
    """Render library errors as JSON with their status code."""
    logger.warning(
        exc.message,
        extra={"path": str(request.url.path), "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": {
                key: None if isinstance(value, float) and not math.isfinite(value) else value
                for key, value in exc.details.items()
            },
        },
    )


@app.get("/ping")
def ping() -> Dict[str, str]:
    """Health check endpoint.

    Example:
        >>> response = client.get("/ping")
        >>> assert response.json() == {"status": "ok"}
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    from lfmrec.api.logging_config import setup_logging

    setup_logging()
    uvicorn.run(
        "lfmrec.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
    )
