import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class ApiError(HTTPException):
    """HTTPException that also carries diagnostic text for the `error` field."""

    def __init__(self, status_code: int, message: str, error: Optional[str] = None):
        super().__init__(status_code=status_code, detail=message)
        self.error = error


@contextmanager
def failure_boundary(message: str):
    """Turn any unexpected exception inside a route into a 500 envelope."""
    try:
        yield
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"{message}: {e}")
        raise ApiError(500, message, error=str(e)) from e
