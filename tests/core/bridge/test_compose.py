"""
Tests for Jupiter composition of SOL routes into SPL token routes.
"""

import httpx
import pytest

from tosolana.core.bridge.compose import WARNING_COMPOSED, WARNING_UNAVAILABLE, JupiterComposer
from tosolana.core.bridge.models import RouteAction, TokenAmount
from tosolana.core.chain_types import WRAPPED_SOL_MINT
from tosolana.providers.jupiter import JupiterProvider

from conftest import make_quote_request, make_route

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def _jupiter(handler) -> JupiterProvider:
    return JupiterProvider(transport=httpx.MockTransport(handler))


def _quote_handler(out_amount: str = "150000000"):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        params = request.url.params
        return httpx.Response(
            200,
            json={
                "inputMint": params["inputMint"],
                "outputMint": params["outputMint"],
                "inAmount": params["amount"],
                "outAmount": out_amount,
                "otherAmountThreshold": "149000000",
                "slippageBps": int(params["slippageBps"]),
                "routePlan": [],
            },
        )

    return handler, seen


class TestJupiterComposer:
    @pytest.mark.asyncio
    async def test_appends_swap_step_for_spl_destination(self, wallet):
        handler, seen = _quote_handler()
        composer = JupiterComposer(_jupiter(handler), enabled=True)
        request = make_quote_request(wallet, destinationTokenAddress=USDC_MINT, slippage=1.0)

        [route] = await composer.compose([make_route(output="1000000000")], request)

        assert len(route.steps) == 3
        swap = route.steps[-1]
        assert swap.provider == "jupiter"
        assert swap.metadata == {
            "inputMint": WRAPPED_SOL_MINT,
            "outputMint": USDC_MINT,
            "amountIn": "1000000000",
            "slippageBps": 100,
        }
        assert route.estimated_output == TokenAmount(token=USDC_MINT, amount="150000000")
        assert WARNING_COMPOSED in route.warnings
        assert seen[0].url.params["amount"] == "1000000000"

    @pytest.mark.asyncio
    async def test_jupiter_failure_keeps_sol_route_with_warning(self, wallet):
        composer = JupiterComposer(_jupiter(lambda request: httpx.Response(400, json={"error": "no route"})), enabled=True)
        request = make_quote_request(wallet, destinationTokenAddress=USDC_MINT)

        [route] = await composer.compose([make_route()], request)

        assert len(route.steps) == 2
        assert route.estimated_output.token == "SOL"
        assert route.warnings == [WARNING_UNAVAILABLE]

    @pytest.mark.asyncio
    async def test_sol_destination_is_left_alone(self, wallet):
        handler, seen = _quote_handler()
        composer = JupiterComposer(_jupiter(handler), enabled=True)
        original = make_route()

        routes = await composer.compose([original], make_quote_request(wallet))

        assert routes == [original]
        assert seen == []

    @pytest.mark.asyncio
    async def test_disabled_composer_does_nothing(self, wallet):
        handler, seen = _quote_handler()
        composer = JupiterComposer(_jupiter(handler), enabled=False)
        request = make_quote_request(wallet, destinationTokenAddress=USDC_MINT)

        [route] = await composer.compose([make_route()], request)

        assert len(route.steps) == 2
        assert seen == []

    @pytest.mark.asyncio
    async def test_action_routes_are_not_composed(self, wallet):
        handler, seen = _quote_handler()
        composer = JupiterComposer(_jupiter(handler), enabled=True)
        request = make_quote_request(wallet, destinationTokenAddress=USDC_MINT)
        route = make_route(
            steps=[],
            action=RouteAction(kind="external_link", href="https://example.com", label="Open"),
        )

        assert await composer.compose([route], request) == [route]
        assert seen == []
