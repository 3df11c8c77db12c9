"""Turns the free-text reply of the extraction model into an ExpenseDraft."""
import json
import logging
import re
from typing import Union

from pydantic import ValidationError as PydanticValidationError

from models.expense import ExpenseDraft, ParseFailure

logger = logging.getLogger(__name__)

MALFORMED_RESPONSE = "malformed response"

_CODE_FENCE = re.compile(r"```(?:json)?")


def _failure(raw_text: str) -> ParseFailure:
    return ParseFailure(reason=MALFORMED_RESPONSE, raw_text=raw_text)


def extract_json_candidate(text: str) -> str:
    """
    Strips code fences and surrounding prose from a model reply.

    When the cleaned text does not start with '{', everything from the first '{'
    to the last '}' is kept. Stray braces inside the prose are captured too.
    """
    candidate = _CODE_FENCE.sub("", text).strip()
    if not candidate.startswith("{") and "{" in candidate:
        start = candidate.index("{")
        end = candidate.rfind("}") + 1
        candidate = candidate[start:end]
    return candidate


def normalize_model_response(text: str) -> Union[ExpenseDraft, ParseFailure]:
    """
    Returns the ExpenseDraft encoded in `text`, or a ParseFailure carrying the
    untouched reply. Never raises.
    """
    if not isinstance(text, str):
        return _failure(str(text))

    candidate = extract_json_candidate(text)
    if "{" not in candidate:
        logger.warning("Model reply contains no JSON object.")
        return _failure(text)

    try:
        decoded = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning(f"Model reply is not valid JSON: {e}")
        return _failure(text)

    if not isinstance(decoded, dict):
        logger.warning(f"Model reply decoded to {type(decoded).__name__}, expected an object.")
        return _failure(text)

    try:
        return ExpenseDraft.model_validate(decoded)
    except PydanticValidationError as e:
        logger.warning(f"Model reply failed field validation: {e}")
        return _failure(text)
