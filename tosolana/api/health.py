from typing import Any, Dict

from fastapi import APIRouter

from ..config import settings
from ..core.policy.execution_policy import EXPERIMENTAL_CHAIN_KINDS, ExecutionPolicy
from ..providers.registry import get_provider_registry

router = APIRouter()


@router.get("/healthz")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint that reports provider configuration and policy state"""
    registry = get_provider_registry()

    provider_status = {}
    for provider in registry.all():
        provider_status[provider.name.value] = await provider.health_check()

    configured = sum(
        1 for status in provider_status.values()
        if status["status"] == "configured"
    )

    policy = ExecutionPolicy()
    return {
        "status": "healthy" if registry.quote_providers() else "degraded",
        "environment": settings.environment,
        "providers": provider_status,
        "configured_providers": configured,
        "total_providers": len(provider_status),
        "policy": {
            "experimental_non_evm_execution": policy.experimental_enabled,
            "disabled_chain_types": sorted(
                kind.value for kind in EXPERIMENTAL_CHAIN_KINDS if policy.is_disabled(kind)
            ),
        },
    }
