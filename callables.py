"""Client for the Firebase HTTPS callable functions."""

from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from config import CALLABLE_TIMEOUT_SECONDS, get_functions_base_url, get_logger
from errors import CallableError
from models import (
    SUBMIT_RESPONSE_FUNCTION,
    ContentKind,
    GenerateContentRequest,
    GenerationResult,
    SubmissionResult,
    SubmitResponseRequest,
)

logger = get_logger(__name__)


class CloudFunctionsClient:
    """Calls callable functions using the callable wire protocol.

    Requests are ``POST {base_url}/{name}`` with ``{"data": ...}``; replies
    carry either ``{"result": ...}`` or ``{"error": {"message", "status"}}``.
    """

    def __init__(self,
                 base_url: Optional[str] = None,
                 timeout: float = CALLABLE_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or get_functions_base_url()).rstrip('/')
        self.timeout = timeout
        self.transport = transport

    async def call(self, name: str, data: Dict[str, Any], id_token: Optional[str] = None) -> Dict[str, Any]:
        """Invoke a callable and return its ``result`` object.

        Raises:
            CallableError: On transport failure, error reply or malformed reply
        """
        headers = {"Content-Type": "application/json"}
        if id_token:
            headers["Authorization"] = f"Bearer {id_token}"

        logger.debug(f"Invoking callable {name}")
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(f"{self.base_url}/{name}", json={"data": data}, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Callable {name} request failed: {e}")
            raise CallableError(name, f"request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code != 200 or "error" in body:
            error = body.get("error") if isinstance(body.get("error"), dict) else {}
            message = error.get("message") or f"HTTP {response.status_code}"
            logger.error(f"Callable {name} failed: {message}")
            raise CallableError(name, message, error.get("status"))

        result = body.get("result")
        if not isinstance(result, dict):
            raise CallableError(name, "reply has no result object")
        return result

    async def generate_content(self,
                               kind: ContentKind,
                               request: GenerateContentRequest,
                               id_token: Optional[str] = None) -> GenerationResult:
        name = kind.generate_function
        result = await self.call(name, request.model_dump(by_alias=True), id_token)
        try:
            return GenerationResult.model_validate(result)
        except ValidationError as e:
            raise CallableError(name, f"unexpected reply: {e}") from e

    async def submit_response(self,
                              request: SubmitResponseRequest,
                              id_token: Optional[str] = None) -> SubmissionResult:
        result = await self.call(SUBMIT_RESPONSE_FUNCTION, request.model_dump(by_alias=True), id_token)
        try:
            return SubmissionResult.model_validate(result)
        except ValidationError as e:
            raise CallableError(SUBMIT_RESPONSE_FUNCTION, f"unexpected reply: {e}") from e


# Global instance
_functions_client = None


def get_functions_client() -> CloudFunctionsClient:
    """Get or create the global callable functions client."""
    global _functions_client
    if _functions_client is None:
        _functions_client = CloudFunctionsClient()
    return _functions_client
