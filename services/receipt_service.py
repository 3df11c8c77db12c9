"""Service layer for turning receipt images into expense drafts."""
import logging
from typing import Union

from models.expense import ExpenseDraft, ParseFailure
from utils import openai_agent
from utils.image_encoder import encode_image
from utils.response_normalizer import normalize_model_response

logger = logging.getLogger(__name__)

PARSE_FAILURE_MESSAGE = "Could not interpret the AI response"


async def extract_expense_from_image(image_bytes: bytes, mime_type: str) -> Union[ExpenseDraft, ParseFailure]:
    """
    Encodes the image, asks the model for the expense fields and normalizes the reply.
    - ValidationError is raised before any model call for bad images.
    - ConfigurationError / ExternalCallError propagate from the model call.
    - An unreadable reply is returned as a ParseFailure, with the raw text logged.
    """
    payload = encode_image(image_bytes, mime_type)
    logger.info(f"Encoded receipt image: {len(image_bytes)} bytes, type {payload.mime_type}")

    raw_text = await openai_agent.request_receipt_extraction(payload)
    result = normalize_model_response(raw_text)

    if isinstance(result, ParseFailure):
        logger.error(f"Failed to parse model response ({result.reason}). Raw response:\n{result.raw_text}")
    else:
        logger.info(f"Extracted expense: {result.vendor} {result.total} {result.currency} ({result.category})")
    return result
