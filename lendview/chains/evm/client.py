"""EVM JSON-RPC client with endpoint fallback."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig

logger = logging.getLogger(__name__)


class RpcError(RuntimeError):
    """A JSON-RPC call failed on every configured endpoint."""


def _hex_block(block: int | str) -> str:
    return hex(block) if isinstance(block, int) else block


class EvmClient:
    """EVM node RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self._request_id = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RpcError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except (aiohttp.ClientError, asyncio.TimeoutError, RpcError, ValueError) as e:
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, method, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RpcError(f"All RPC endpoints failed. Last error: {last_error}")

    async def eth_call(self, to: str, data: str, block: int | str = "latest") -> str:
        """Execute a read-only contract call; returns the 0x-prefixed result."""
        result = await self.rpc_call(
            "eth_call", [{"to": to, "data": data}, _hex_block(block)]
        )
        if not isinstance(result, str):
            raise RpcError(f"eth_call to {to} returned {result!r}")
        return result

    async def block_number(self) -> int:
        result = await self.rpc_call("eth_blockNumber", [])
        return int(result, 16)

    async def get_logs(
        self,
        address: str,
        topics: list[Any],
        from_block: int | str,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]:
        """Fetch logs for one contract. ``None`` entries in ``topics`` are wildcards."""
        result = await self.rpc_call(
            "eth_getLogs",
            [
                {
                    "address": address,
                    "topics": topics,
                    "fromBlock": _hex_block(from_block),
                    "toBlock": _hex_block(to_block),
                }
            ],
        )
        return result or []
