"""
Execution Policy

Administrative switch that disables execution for chain kinds whose
broadcast and server-side finality are not production ready yet. The flag is
read on every check, so flipping it also affects sessions created earlier.
"""

from typing import Callable, Iterable, List, Optional, Sequence

from ...config import settings
from ...errors import PolicyError
from ..bridge.models import RouteStep
from ..chain_types import ChainKind

EXPERIMENTAL_CHAIN_KINDS = frozenset({ChainKind.BITCOIN, ChainKind.COSMOS, ChainKind.TON})


class ExecutionPolicy:
    """
    Decides whether a chain kind may be executed right now.

    Args:
        experimental_enabled: Fixed override. When omitted the value comes
            from ``settings.experimental_non_evm_execution_enabled`` at check time.
    """

    def __init__(
        self,
        experimental_enabled: Optional[bool] = None,
        flag_reader: Optional[Callable[[], bool]] = None,
    ):
        if experimental_enabled is not None:
            self._read_flag = lambda: experimental_enabled
        else:
            self._read_flag = flag_reader or (lambda: settings.experimental_non_evm_execution_enabled)

    @property
    def experimental_enabled(self) -> bool:
        return bool(self._read_flag())

    def is_disabled(self, chain_kind: ChainKind) -> bool:
        return ChainKind(chain_kind) in EXPERIMENTAL_CHAIN_KINDS and not self.experimental_enabled

    def blocked_chain_kinds(self, steps: Iterable[RouteStep]) -> List[ChainKind]:
        """Disabled kinds present in ``steps``, de-duplicated, in first-seen order."""
        blocked: List[ChainKind] = []
        for step in steps:
            kind = ChainKind(step.chain_type)
            if self.is_disabled(kind) and kind not in blocked:
                blocked.append(kind)
        return blocked

    @staticmethod
    def format_message(chain_kinds: Sequence[ChainKind]) -> str:
        names = ", ".join(ChainKind(kind).value.upper() for kind in chain_kinds)
        return (
            f"Execution for {names} routes is disabled until broadcast "
            "and server-side finality verification are implemented."
        )

    def ensure_route_allowed(self, steps: Iterable[RouteStep]) -> None:
        """
        Raises:
            PolicyError: listing every blocked chain kind in the route
        """
        blocked = self.blocked_chain_kinds(steps)
        if blocked:
            raise PolicyError(self.format_message(blocked), [kind.value for kind in blocked])

    def ensure_kind_allowed(self, chain_kind: ChainKind) -> None:
        if self.is_disabled(chain_kind):
            kind = ChainKind(chain_kind)
            raise PolicyError(self.format_message([kind]), [kind.value])
