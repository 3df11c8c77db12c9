"""Utility functions for calling the receipt extraction model through the OpenAI Agents SDK."""
import os
import asyncio
import logging
from typing import Optional

from dotenv import load_dotenv

from agents import Agent, Runner, ModelSettings
from openai import APIStatusError

from models.expense import EXPENSE_CATEGORIES, ImagePayload
from utils.errors import ConfigurationError, ExternalCallError

logger = logging.getLogger(__name__)

load_dotenv()

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
MODEL_TIMEOUT_SECONDS = float(os.getenv("MODEL_TIMEOUT_SECONDS", "60"))

# --- Receipt Extractor Agent ---
# No output_type: the reply comes back as free text and is cleaned up by utils.response_normalizer.
RECEIPT_EXTRACTOR_PROMPT = (
    "Analyze this receipt image and extract the following information: "
    "1. Total Price (as a number) "
    "2. Currency (e.g. USD, EUR, etc.) "
    f"3. Expense Category (e.g. {', '.join(EXPENSE_CATEGORIES)}) "
    "4. Vendor Name (the business name) "
    "5. Billing Date (the date of the transaction in YYYY-MM-DD format if visible on the receipt) "
    "Return the result as a JSON object with the following format: "
    '{"total": <number>, "currency": "<currency code>", "category": "<category>", '
    '"vendor": "<vendor name>", "billingDate": "<date in YYYY-MM-DD format or null if not available>"} '
    "Only return the JSON object, nothing else."
)

receipt_extractor_agent = Agent(
    name="ReceiptExtractor",
    instructions=RECEIPT_EXTRACTOR_PROMPT,
    model=OPENAI_MODEL,
    model_settings=ModelSettings(temperature=0.2)
)


def require_api_key() -> str:
    """Returns OPENAI_API_KEY or raises ConfigurationError. Read on every call so a late .env still works."""
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.error("OPENAI_API_KEY environment variable is not set")
        raise ConfigurationError("OPENAI_API_KEY environment variable is required")
    return api_key


def build_agent_input(payload: ImagePayload) -> list:
    """One user message holding the inline image; the prompt travels as the agent instructions."""
    return [
        {
            "role": "user",
            "content": [
                payload.to_input_image(),
            ],
        }
    ]


async def request_receipt_extraction(payload: ImagePayload, timeout: Optional[float] = None) -> str:
    """
    Sends the receipt image to the extraction model and returns its raw text reply.
    Raises ConfigurationError when no API key is configured and ExternalCallError on
    network failures, timeouts, non-2xx responses or an empty reply. Not retried.
    """
    require_api_key()
    timeout = MODEL_TIMEOUT_SECONDS if timeout is None else timeout

    logger.info(f"Sending receipt image ({payload.mime_type}) to model '{receipt_extractor_agent.model}'...")
    try:
        result = await asyncio.wait_for(
            Runner.run(receipt_extractor_agent, input=build_agent_input(payload)),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        logger.error(f"Model call timed out after {timeout} seconds.")
        raise ExternalCallError(f"Model call timed out after {timeout} seconds.") from e
    except APIStatusError as e:
        logger.error(f"Model call returned HTTP {e.status_code}: {e.message}")
        raise ExternalCallError(f"Model call failed with status {e.status_code}: {e.message}") from e
    except Exception as e:
        logger.exception(f"An error occurred during the model call: {e}")
        raise ExternalCallError(f"Model call failed: {e}") from e

    text = result.final_output
    if not isinstance(text, str) or not text.strip():
        logger.warning(f"Model returned an empty or non-text reply: {text!r}")
        raise ExternalCallError("Model returned an empty reply.")

    logger.info(f"Model replied with {len(text)} characters.")
    return text
