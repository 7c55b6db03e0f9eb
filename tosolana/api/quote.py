from typing import Any, Dict

from fastapi import APIRouter

from ..core.bridge.aggregator import NO_PROVIDERS_MESSAGE, get_quote_aggregator
from ..core.bridge.models import QuoteRequest
from ..errors import ConfigurationError

router = APIRouter()


@router.post("/quote")
async def get_quote(request: QuoteRequest) -> Dict[str, Any]:
    """Ranked routes from every configured provider, plus per-provider errors."""
    result = await get_quote_aggregator().get_all_quotes(request)

    if not result.routes and NO_PROVIDERS_MESSAGE in result.errors:
        raise ConfigurationError(NO_PROVIDERS_MESSAGE)

    response: Dict[str, Any] = {
        "routes": [route.model_dump(by_alias=True, exclude_none=True) for route in result.routes],
    }
    if result.errors:
        response["errors"] = result.errors
    return response
