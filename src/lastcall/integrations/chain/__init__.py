"""Polygon chain interactions - RPC failover, gas pricing, CTF settlement."""

from lastcall.integrations.chain.ctf import CTFClient, validate_condition_id
from lastcall.integrations.chain.gas import GasOracle, GasPrice
from lastcall.integrations.chain.rpc import RpcPool, build_rpc_urls

__all__ = [
    "CTFClient",
    "GasOracle",
    "GasPrice",
    "RpcPool",
    "build_rpc_urls",
    "validate_condition_id",
]
