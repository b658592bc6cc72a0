"""Analytics assistant endpoint."""
from fastapi import APIRouter, HTTPException, Request

from core.exceptions import ValidationError
from web.schemas import AssistantQueryRequest, AssistantAnswer
from web.services.assistant_service import AssistantService
from ._deps import limiter, get_logger

router = APIRouter(prefix="/assistant")
logger = get_logger(__name__)


@router.post("/query", response_model=AssistantAnswer)
@limiter.limit("20/minute")
async def assistant_query(request: Request, body: AssistantQueryRequest):
    """
    Answer a free-text analytics question.

    The LLM picks from the assistant tools; each tool is a GET on this API.
    Returns the answer and every tool call with its arguments and result.
    """
    try:
        return await AssistantService().query(body.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.error(f"Assistant query failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e) or "Assistant query failed")
