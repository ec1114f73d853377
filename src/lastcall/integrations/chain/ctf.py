"""CTF (Conditional Tokens Framework) client for redemption and approvals.

Redemption paths:
- Standard markets: ``CTF.redeemPositions(USDC.e, 0x0, conditionId, [1, 2])``.
  The contract pays out only for winning tokens held.
- Neg-risk markets: ``NegRiskAdapter.redeemPositions(conditionId, amounts)``
  where amounts are the held balances of each outcome token.

Every call gets a fresh connection from RpcPool and a gas price from
GasOracle. Sends are never retried: once a transaction is broadcast, a
receipt timeout yields status UNKNOWN rather than a resubmission.

Reference: https://github.com/Polymarket/conditional-token-examples-py
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Iterable, Optional

import structlog

from lastcall.core.errors import (
    NothingToRedeemError,
    ReadOnlyModeError,
    RedemptionFailedError,
)
from lastcall.domain.results import RedemptionReceipt, RedemptionStatus
from lastcall.integrations.chain.contracts import (
    CTF_ABI,
    CTF_ADDRESS,
    CTF_EXCHANGE_ADDRESS,
    ERC20_ABI,
    MAX_UINT256,
    NEG_RISK_ADAPTER_ABI,
    NEG_RISK_ADAPTER_ADDRESS,
    NEG_RISK_EXCHANGE_ADDRESS,
    USDC_DECIMALS,
    USDC_E_ADDRESS,
    USDC_NATIVE_ADDRESS,
)
from lastcall.integrations.chain.gas import GasOracle
from lastcall.integrations.chain.rpc import RpcPool

log = structlog.get_logger()

POLYGON_CHAIN_ID = 137
BINARY_INDEX_SETS = [1, 2]
APPROVAL_GAS_LIMIT = 100_000
# Re-approve below 1,000,000 USDC of remaining allowance
APPROVAL_THRESHOLD = 1_000_000 * 10**USDC_DECIMALS
APPROVAL_SPENDERS = {
    "ctf_exchange": CTF_EXCHANGE_ADDRESS,
    "neg_risk_exchange": NEG_RISK_EXCHANGE_ADDRESS,
    "neg_risk_adapter": NEG_RISK_ADAPTER_ADDRESS,
}


def validate_condition_id(condition_id: str) -> bytes:
    """Condition id hex string (with or without 0x) to bytes32.

    Raises:
        RedemptionFailedError: Not 32 bytes of hex.
    """
    raw = condition_id[2:] if condition_id.startswith("0x") else condition_id
    try:
        condition_bytes = bytes.fromhex(raw)
    except ValueError:
        raise RedemptionFailedError(f"Invalid condition_id hex: {condition_id[:20]}") from None
    if len(condition_bytes) != 32:
        raise RedemptionFailedError(
            f"Invalid condition_id length: {len(condition_bytes)}, expected 32"
        )
    return condition_bytes


class CTFClient:
    """Settlement-layer client.

    All web3 calls are synchronous and run in a thread pool executor.
    """

    def __init__(
        self,
        rpc_pool: RpcPool,
        gas_oracle: GasOracle,
        private_key: str = "",
        gas_speed: str = "standard",
        receipt_timeout: float = 120.0,
        default_gas_limit: int = 300_000,
        gas_limit_multiplier: float = 1.2,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self._rpc_pool = rpc_pool
        self._gas_oracle = gas_oracle
        self._private_key = private_key
        self._gas_speed = gas_speed
        self._receipt_timeout = receipt_timeout
        self._default_gas_limit = default_gas_limit
        self._gas_limit_multiplier = gas_limit_multiplier
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._address: Optional[str] = None
        self._log = log.bind(component="ctf_client")

    @property
    def has_signer(self) -> bool:
        return bool(self._private_key)

    @property
    def address(self) -> Optional[str]:
        if self._address is None and self._private_key:
            from eth_account import Account

            self._address = Account.from_key(self._private_key).address
        return self._address

    @property
    def gas_speed(self) -> str:
        return self._gas_speed

    def set_gas_speed(self, tier: str) -> None:
        self._gas_speed = tier

    async def _run_sync(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, lambda: func(*args, **kwargs)
        )

    def _ensure_signer(self) -> str:
        if not self.has_signer:
            raise ReadOnlyModeError("No private key configured for settlement")
        return self.address

    # =========================================================================
    # Transactions
    # =========================================================================

    async def _send(self, w3: Any, call: Any, gas_limit: Optional[int] = None) -> str:
        """Build, sign and broadcast a contract call. Returns the tx hash."""
        address = self._ensure_signer()
        gas_price = await self._gas_oracle.get_gas_price(w3, self._gas_speed)
        nonce = await self._run_sync(w3.eth.get_transaction_count, address, "pending")

        tx = await self._run_sync(
            call.build_transaction,
            {
                "from": address,
                "nonce": nonce,
                "gasPrice": gas_price.wei,
                "gas": gas_limit or self._default_gas_limit,
                "chainId": POLYGON_CHAIN_ID,
            },
        )

        if gas_limit is None:
            # A call that would revert fails here, before anything is sent
            estimate = await self._run_sync(w3.eth.estimate_gas, tx)
            tx["gas"] = int(estimate * self._gas_limit_multiplier)

        signed = await self._run_sync(w3.eth.account.sign_transaction, tx, self._private_key)
        tx_hash = await self._run_sync(w3.eth.send_raw_transaction, signed.raw_transaction)
        tx_hash_hex = w3.to_hex(tx_hash)

        self._log.info(
            "tx_submitted",
            tx_hash=tx_hash_hex,
            nonce=nonce,
            gas_limit=tx["gas"],
            gas_price_gwei=str(gas_price.gwei),
            gas_source=gas_price.source,
        )
        return tx_hash_hex

    async def _wait_for_receipt(self, w3: Any, tx_hash: str) -> Optional[dict[str, Any]]:
        """Receipt, or None if the wait timed out or the RPC failed mid-wait."""
        try:
            return await self._run_sync(
                w3.eth.wait_for_transaction_receipt, tx_hash, timeout=self._receipt_timeout
            )
        except Exception as e:
            self._log.warning(
                "tx_receipt_unavailable",
                tx_hash=tx_hash,
                timeout=self._receipt_timeout,
                error=str(e),
            )
            return None

    # =========================================================================
    # Redemption
    # =========================================================================

    async def get_position_balances(self, w3: Any, token_ids: Iterable[str]) -> list[int]:
        from web3 import Web3

        ctf = w3.eth.contract(address=Web3.to_checksum_address(CTF_ADDRESS), abi=CTF_ABI)
        owner = self._ensure_signer()
        balances = []
        for token_id in token_ids:
            balance = await self._run_sync(ctf.functions.balanceOf(owner, int(token_id)).call)
            balances.append(int(balance))
        return balances

    async def redeem(
        self,
        condition_id: str,
        neg_risk: bool = False,
        token_ids: Iterable[str] = (),
    ) -> RedemptionReceipt:
        """Redeem a resolved market.

        Args:
            condition_id: Market condition id (bytes32 hex).
            neg_risk: Use the Neg Risk Adapter (alternate settlement path).
            token_ids: Outcome token ids [up, down]. When given, zero
                balances short-circuit with NothingToRedeemError; the
                neg-risk path requires them.

        Raises:
            ReadOnlyModeError: No private key.
            NothingToRedeemError: Token balances are all zero.
            RedemptionFailedError: Invalid input, estimation/send failure, or
                the transaction reverted.
            AllEndpointsFailedError: No RPC endpoint answered.
        """
        self._ensure_signer()
        from web3 import Web3

        condition_bytes = validate_condition_id(condition_id)
        token_ids = [t for t in token_ids if t]
        w3 = await self._rpc_pool.connect()

        balances: list[int] = []
        if token_ids:
            balances = await self.get_position_balances(w3, token_ids)
            if not any(balances):
                raise NothingToRedeemError(f"nothing to redeem for {condition_id[:16]}")

        if neg_risk:
            if len(balances) != 2:
                raise RedemptionFailedError("neg-risk redemption needs both outcome token ids")
            adapter = w3.eth.contract(
                address=Web3.to_checksum_address(NEG_RISK_ADAPTER_ADDRESS),
                abi=NEG_RISK_ADAPTER_ABI,
            )
            call = adapter.functions.redeemPositions(condition_bytes, balances)
        else:
            ctf = w3.eth.contract(address=Web3.to_checksum_address(CTF_ADDRESS), abi=CTF_ABI)
            call = ctf.functions.redeemPositions(
                Web3.to_checksum_address(USDC_E_ADDRESS),
                bytes(32),
                condition_bytes,
                BINARY_INDEX_SETS,
            )

        self._log.info(
            "redeeming_positions",
            condition_id=condition_id[:16],
            neg_risk=neg_risk,
            balances=balances,
        )

        try:
            tx_hash = await self._send(w3, call)
        except Exception as e:
            raise RedemptionFailedError(str(e), cause=e) from e

        receipt = await self._wait_for_receipt(w3, tx_hash)
        if receipt is None:
            return RedemptionReceipt(
                condition_id=condition_id,
                tx_hash=tx_hash,
                status=RedemptionStatus.UNKNOWN,
                neg_risk=neg_risk,
            )

        if receipt["status"] != 1:
            self._log.error("redemption_tx_reverted", tx_hash=tx_hash, block=receipt.get("blockNumber"))
            raise RedemptionFailedError("transaction reverted", tx_hash=tx_hash)

        self._log.info(
            "redemption_confirmed",
            tx_hash=tx_hash,
            block=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )
        return RedemptionReceipt(
            condition_id=condition_id,
            tx_hash=tx_hash,
            status=RedemptionStatus.CONFIRMED,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
            neg_risk=neg_risk,
        )

    # =========================================================================
    # USDC approvals
    # =========================================================================

    async def approve_usdc(self) -> list[dict[str, Any]]:
        """Approve USDC.e spending for the exchanges and the neg-risk adapter.

        Spenders whose allowance is already above the threshold are skipped.
        """
        owner = self._ensure_signer()
        from web3 import Web3

        w3 = await self._rpc_pool.connect()
        usdc = w3.eth.contract(address=Web3.to_checksum_address(USDC_E_ADDRESS), abi=ERC20_ABI)

        results = []
        for name, spender in APPROVAL_SPENDERS.items():
            spender_cs = Web3.to_checksum_address(spender)
            allowance = int(await self._run_sync(usdc.functions.allowance(owner, spender_cs).call))
            if allowance >= APPROVAL_THRESHOLD:
                self._log.info("approval_not_needed", spender=name)
                results.append({"spender": name, "status": "skipped", "tx_hash": None})
                continue

            tx_hash = await self._send(
                w3, usdc.functions.approve(spender_cs, MAX_UINT256), gas_limit=APPROVAL_GAS_LIMIT
            )
            receipt = await self._wait_for_receipt(w3, tx_hash)
            if receipt is None:
                status = "unknown"
            elif receipt["status"] == 1:
                status = "confirmed"
            else:
                status = "reverted"
            self._log.info("approval_finished", spender=name, tx_hash=tx_hash, status=status)
            results.append({"spender": name, "status": status, "tx_hash": tx_hash})
        return results

    async def get_usdc_status(self) -> dict[str, dict[str, str]]:
        """USDC.e and native USDC balances and exchange allowances."""
        owner = self._ensure_signer()
        from web3 import Web3

        w3 = await self._rpc_pool.connect()
        scale = Decimal(10**USDC_DECIMALS)
        status: dict[str, dict[str, str]] = {}
        for label, token in (("usdc_e", USDC_E_ADDRESS), ("usdc_native", USDC_NATIVE_ADDRESS)):
            contract = w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
            balance = await self._run_sync(contract.functions.balanceOf(owner).call)
            ctf_allowance = await self._run_sync(
                contract.functions.allowance(owner, Web3.to_checksum_address(CTF_EXCHANGE_ADDRESS)).call
            )
            neg_allowance = await self._run_sync(
                contract.functions.allowance(owner, Web3.to_checksum_address(NEG_RISK_EXCHANGE_ADDRESS)).call
            )
            status[label] = {
                "balance": str(Decimal(int(balance)) / scale),
                "ctf_allowance": str(Decimal(int(ctf_allowance)) / scale),
                "neg_risk_allowance": str(Decimal(int(neg_allowance)) / scale),
            }
        return status
