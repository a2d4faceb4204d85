"""Chain client protocol — EVM RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for the EVM reads the dashboard needs."""

    async def eth_call(self, to: str, data: str, block: int | str = "latest") -> str: ...

    async def block_number(self) -> int: ...

    async def get_logs(
        self,
        address: str,
        topics: list[Any],
        from_block: int | str,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]: ...
