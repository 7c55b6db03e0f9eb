from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="auto", description="json | console | auto (console only at DEBUG outside production)")
    environment: str = Field(default="development", description="development | production | test")
    debug: bool = Field(default=False, description="Expose internal error messages in responses")
    api_prefix: str = Field(default="/api", description="Base path for the bridge API")

    # Provider credentials and toggles
    lifi_api_key: str = Field(default="", description="LI.FI API key")
    lifi_integrator: str = Field(default="", description="LI.FI integrator tag")
    lifi_base_url: str = Field(default="https://li.quest/v1", description="LI.FI API base URL")
    relay_base_url: str = Field(
        default="",
        description="Override the default Relay API base URL",
    )
    enable_relay: bool = Field(default=False, description="Enable Relay bridge provider")
    maya_base_url: str = Field(
        default="https://mayanode.mayaprotocol.com",
        description="Maya Protocol node used for BTC -> SOL swaps",
    )
    enable_maya: bool = Field(default=False, description="Enable Maya Protocol provider")
    maya_affiliate: str = Field(default="ts", description="Affiliate tag sent with Maya quotes")
    maya_affiliate_bps: int = Field(default=10, description="Affiliate fee in basis points")

    # Jupiter composition (bridge SOL -> SPL token on Solana)
    enable_jupiter_swap: bool = Field(default=False, description="Append Jupiter swap steps to SOL routes")
    jupiter_quote_url: str = Field(default="https://quote-api.jup.ag/v6/quote", description="Jupiter quote endpoint")
    jupiter_swap_url: str = Field(default="https://quote-api.jup.ag/v6/swap", description="Jupiter swap endpoint")

    # Provider call behaviour
    provider_timeout_seconds: float = Field(default=20.0, description="Hard timeout per provider call")
    provider_max_retries: int = Field(default=2, description="Retries for transient provider failures")
    max_routes: int = Field(default=10, description="Maximum number of routes returned by /quote")

    # Execution policy
    enable_experimental_non_evm_execution: Optional[bool] = Field(
        default=None,
        description="Allow bitcoin/cosmos/ton execution (defaults to enabled outside production)",
    )

    # Session auth
    session_auth_secret: str = Field(default="", description="Secret used to sign session challenges")
    session_auth_ttl_seconds: int = Field(default=3600, description="Session challenge lifetime")
    session_auth_max_clock_skew_seconds: int = Field(
        default=60,
        description="Tolerated clock skew for challenge issued-at timestamps",
    )

    # Chain RPC endpoints used for finality verification
    evm_rpc_urls: Dict[int, str] = Field(
        default_factory=lambda: {
            1: "https://eth.llamarpc.com",
            10: "https://mainnet.optimism.io",
            56: "https://bsc-dataseed.binance.org",
            137: "https://polygon-rpc.com",
            8453: "https://mainnet.base.org",
            42161: "https://arb1.arbitrum.io/rpc",
            43114: "https://api.avax.network/ext/bc/C/rpc",
        },
        description="JSON-RPC URL per EVM chain id",
    )
    solana_rpc_url: str = Field(default="https://api.mainnet-beta.solana.com", description="Solana RPC URL")
    bitcoin_api_urls: List[str] = Field(
        default_factory=lambda: ["https://blockstream.info/api", "https://mempool.space/api"],
        description="Esplora-compatible Bitcoin APIs, tried in order",
    )
    cosmos_rest_endpoints: Dict[str, str] = Field(
        default_factory=lambda: {
            "cosmoshub-4": "https://cosmos-rest.publicnode.com",
            "osmosis-1": "https://osmosis-rest.publicnode.com",
            "injective-1": "https://injective-rest.publicnode.com",
        },
        description="Cosmos LCD endpoint per chain id",
    )
    default_cosmos_chain_id: str = Field(default="cosmoshub-4", description="Cosmos chain used when none is recorded")
    ton_api_url: str = Field(default="https://toncenter.com/api/v2", description="toncenter API base URL")
    ton_api_key: str = Field(default="", description="toncenter API key")
    finality_timeout_seconds: float = Field(default=15.0, description="Timeout for finality RPC calls")

    # Finality reconciliation
    auto_reconcile_chain_kinds: List[str] = Field(
        default_factory=lambda: ["evm", "solana"],
        description="Chain kinds confirmed server-side by the reconciler",
    )
    finality_reconcile_interval_seconds: float = Field(
        default=5.0,
        description="Background reconcile interval (0 disables the loop)",
    )
    status_wait_timeout_seconds: float = Field(default=30.0, description="Max wait for GET /status?waitForStep")
    status_wait_poll_seconds: float = Field(default=2.0, description="Poll interval while waiting for a step")

    # Rate limiting (requests per window)
    rate_limit_window_seconds: int = Field(default=60, description="Fixed rate limit window")
    rate_limit_quote: int = Field(default=30, description="POST /quote requests per window")
    rate_limit_execute: int = Field(default=60, description="POST /execute/* requests per window")
    rate_limit_status: int = Field(default=120, description="GET /status requests per window")
    rate_limit_default: int = Field(default=100, description="Requests per window for other endpoints")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def experimental_non_evm_execution_enabled(self) -> bool:
        if self.enable_experimental_non_evm_execution is None:
            return not self.is_production
        return self.enable_experimental_non_evm_execution

    @property
    def has_lifi(self) -> bool:
        return bool(self.lifi_api_key or self.lifi_integrator)


# Global settings instance
settings = Settings()
