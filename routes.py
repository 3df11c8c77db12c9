"""API Routes for receipts and expenses"""
from fastapi import APIRouter, UploadFile, File, HTTPException, Body, Depends, Request, Response
from typing import List, Annotated, Optional
from services import receipt_service
from services.ledger import LedgerSession
from models.expense import Expense, ExpenseDraft, ParseFailure
from utils.errors import ExternalCallError, NotFound
from utils.error_handlers import error_response
from utils.rate_limit import limiter, DEFAULT_RATE_LIMIT
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

# --- Dependency Function ---
def get_ledger_session(request: Request) -> LedgerSession:
    """Dependency to get the ledger session from the request state."""
    session = getattr(request.state, "ledger_session", None)
    if session is None:
        logger.error("Ledger session not found in application state. Check startup logs.")
        raise HTTPException(status_code=503, detail="Expense storage not available.")
    return session

# Type hint for the dependency
LedgerSessionDep = Annotated[LedgerSession, Depends(get_ledger_session)]

# --- API Routes ---

@router.post("/process-image", summary="Extract Expense From Receipt", description="Uploads a receipt image and returns the expense fields extracted by the AI model. Nothing is stored.")
@limiter.limit(DEFAULT_RATE_LIMIT)
async def process_image(request: Request, image: Optional[UploadFile] = File(None)):
    """
    Handles a single receipt image upload (multipart field 'image').
    400 for a missing or invalid image, 500 for configuration, model or parse failures.
    """
    logger.info("POST /process-image endpoint called.")
    if image is None:
        logger.warning("No image provided in form data")
        return error_response(400, "No image provided")

    try:
        content = await image.read()
        logger.info(f"Received image '{image.filename}' ({image.content_type}, {len(content)} bytes)")
        result = await receipt_service.extract_expense_from_image(content, image.content_type)
    except ExternalCallError as e:
        return error_response(500, e.message)
    finally:
        await image.close()

    if isinstance(result, ParseFailure):
        return error_response(500, receipt_service.PARSE_FAILURE_MESSAGE)
    return result.model_dump(mode="json", by_alias=True)

@router.get("/expenses", response_model=List[Expense], summary="Get All Expenses", description="Retrieves all expenses, newest first.")
async def get_expenses(session: LedgerSessionDep) -> List[Expense]:
    logger.info("GET /expenses endpoint called.")
    return await session.refresh()

@router.post("/expenses", response_model=Expense, status_code=201, summary="Add Expense")
async def add_expense(session: LedgerSessionDep, draft: Annotated[ExpenseDraft, Body(...)]) -> Expense:
    """Adds an expense from manual entry or from a confirmed extraction result."""
    logger.info(f"POST /expenses endpoint called for vendor '{draft.vendor}'.")
    return await session.add(draft)

@router.put("/expenses/{expense_id}", response_model=Expense, summary="Update Expense")
async def update_expense(expense_id: str, session: LedgerSessionDep, draft: Annotated[ExpenseDraft, Body(...)]) -> Expense:
    """Replaces the editable fields of an expense; id and recorded date stay the same."""
    logger.info(f"PUT /expenses/{expense_id} endpoint called.")
    return await session.replace(expense_id, draft)

@router.delete("/expenses/{expense_id}", status_code=204, summary="Delete Expense")
async def delete_expense(expense_id: str, session: LedgerSessionDep) -> Response:
    logger.info(f"DELETE /expenses/{expense_id} endpoint called.")
    if not await session.remove(expense_id):
        raise NotFound(expense_id)
    return Response(status_code=204)

@router.get("/health", summary="Health Check")
async def health(request: Request):
    session = getattr(request.state, "ledger_session", None)
    storage = "unavailable" if session is None else ("mongodb" if session.persistent else "memory")
    return {"status": "ok", "storage": storage}
