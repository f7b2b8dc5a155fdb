"""
Chat model setup and helpers for the signal extraction chain.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from langchain_google_genai import ChatGoogleGenerativeAI

from config import LLM_CONFIG

logger = logging.getLogger(__name__)

CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def llm_configured() -> bool:
    """Whether credentials for the chat model are available."""
    return bool(LLM_CONFIG["api_key"])


def get_llm() -> ChatGoogleGenerativeAI:
    """
    Build the chat model used for signal extraction.

    Returns:
        ChatGoogleGenerativeAI: Configured chat model
    """
    try:
        return ChatGoogleGenerativeAI(
            model=LLM_CONFIG["model"],
            temperature=LLM_CONFIG["temperature"],
            api_key=LLM_CONFIG["api_key"],
            timeout=LLM_CONFIG["timeout"],
            max_retries=LLM_CONFIG["max_retries"],
        )
    except Exception as e:
        logger.error(f"Failed to initialize LLM: {str(e)}")
        raise


def message_text(message: Any) -> str:
    """Plain text of a chat message whose content may be a list of parts."""
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return content if isinstance(content, str) else ""


def safe_llm_call(chain, inputs: Dict[str, Any], default_response: str = "") -> str:
    """
    Invoke a prompt | model chain, falling back on any model error.

    Args:
        chain: The chain to call
        inputs: Prompt variables
        default_response: Returned when the call fails

    Returns:
        Response text or the default response
    """
    try:
        return message_text(chain.invoke(inputs))
    except Exception as e:
        logger.error(f"LLM call failed: {str(e)}")
        return default_response


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parse a model answer expected to hold one JSON object.

    A surrounding markdown code fence is tolerated.

    Returns:
        The object, or None when the answer is not a JSON object
    """
    text = (text or "").strip()
    match = CODE_FENCE_PATTERN.match(text)
    if match:
        text = match.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse JSON from model answer: {text[:200]}")
        return None

    if not isinstance(data, dict):
        logger.warning(f"Model answer is not a JSON object: {text[:200]}")
        return None
    return data
