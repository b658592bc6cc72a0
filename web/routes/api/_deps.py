"""Shared dependencies for API route modules."""
import logging
import time
from contextlib import contextmanager

from fastapi import HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.duckdb_store import get_store
from core.validators import (
    require_store_id,
    parse_positive_int,
    parse_int_param,
    parse_customer_id,
)
from core.exceptions import ValidationError
from web.services.analytics_service import OrderFilter

# Shared limiter instance
limiter = Limiter(key_func=get_remote_address)

# Shared logger factory
def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

# Track startup time for uptime calculation
START_TIME = time.time()


@contextmanager
def route_errors(action: str, logger: logging.Logger):
    """
    Map service errors onto HTTP answers for the enclosed block.

    ValidationError -> 400 with its message; any other failure is logged
    and answers 500 with the error text. HTTPException passes through.
    """
    try:
        yield
    except HTTPException:
        raise
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.error(f"{action} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e) or f"{action} failed")
