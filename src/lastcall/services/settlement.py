"""Claim Service - redeems resolved markets.

This service:
- Enumerates markets that closed within the lookback window, per asset
- Attempts a redemption for every one of them, without pre-filtering
- Classifies each failure as skipped (no position / already redeemed) or
  failed (anything else) by matching configurable message signatures
- Records every attempt in the store and resolves the trades of each
  market with realized PnL

A sweep is non-reentrant: a second call while one runs raises
ClaimInProgressError. Redemptions are never retried within a sweep; the
next sweep simply tries again.
"""

import asyncio
from datetime import datetime, timezone
from typing import Iterable, Optional

import structlog

from lastcall.core.errors import ClaimInProgressError
from lastcall.domain.market import ResolvedMarket
from lastcall.domain.results import ClaimOutcome, ClaimSummary, RedemptionStatus
from lastcall.domain.settings import SUPPORTED_ASSETS
from lastcall.integrations.chain.ctf import CTFClient
from lastcall.services.market_data import MarketDataService
from lastcall.services.metrics import MetricsEmitter
from lastcall.services.trade_store import TradeStore

log = structlog.get_logger()

DEFAULT_SKIP_SIGNATURES = ("nothing to redeem", "already redeemed")
DEFAULT_SUCCESS_DELAY = 5.0
DEFAULT_SKIP_DELAY = 1.0


class ClaimService:
    """Sweeps resolved markets and redeems positions."""

    def __init__(
        self,
        market_data: MarketDataService,
        ctf: CTFClient,
        store: TradeStore,
        skip_signatures: Iterable[str] = DEFAULT_SKIP_SIGNATURES,
        success_delay: float = DEFAULT_SUCCESS_DELAY,
        skip_delay: float = DEFAULT_SKIP_DELAY,
        metrics: Optional[MetricsEmitter] = None,
    ):
        self._market_data = market_data
        self._ctf = ctf
        self._store = store
        self._skip_signatures = tuple(s.lower() for s in skip_signatures if s)
        self._success_delay = success_delay
        self._skip_delay = skip_delay
        self._metrics = metrics
        self._is_claiming = False
        self._last_summary: Optional[ClaimSummary] = None
        self._log = log.bind(component="claim_service")

    @property
    def is_claiming(self) -> bool:
        return self._is_claiming

    @property
    def last_summary(self) -> Optional[ClaimSummary]:
        return self._last_summary

    def classify_error(self, message: str) -> ClaimOutcome:
        lowered = message.lower()
        if any(sig in lowered for sig in self._skip_signatures):
            return ClaimOutcome.SKIPPED
        return ClaimOutcome.FAILED

    async def claim_all(
        self,
        days_back: int = 7,
        assets: Optional[Iterable[str]] = None,
    ) -> ClaimSummary:
        """Attempt redemption of every market resolved in the last days_back days.

        Raises:
            ClaimInProgressError: A sweep is already running.
        """
        if self._is_claiming:
            raise ClaimInProgressError("Claim sweep already in progress")

        self._is_claiming = True
        summary = ClaimSummary(days_back=days_back)
        try:
            if not self._ctf.has_signer:
                self._log.warning("claim_sweep_skipped", reason="no signing key")
                return summary

            assets = [a.lower() for a in (SUPPORTED_ASSETS if assets is None else assets)]
            self._log.info("claim_sweep_started", days_back=days_back, assets=assets)

            for asset in assets:
                try:
                    markets = await self._market_data.list_resolved_markets(asset, days_back)
                except Exception as e:
                    self._log.error("resolved_markets_failed", asset=asset, error=str(e))
                    summary.errors.append({"market_id": "", "error": f"{asset}: {e}"})
                    continue

                for market in markets:
                    outcome = await self._claim_one(market, summary)
                    delay = self._success_delay if outcome is ClaimOutcome.SUCCESS else self._skip_delay
                    if delay > 0:
                        await asyncio.sleep(delay)
        finally:
            summary.finished_at = datetime.now(timezone.utc)
            self._last_summary = summary
            self._is_claiming = False

        self._log.info(
            "claim_sweep_finished",
            attempted=summary.attempted,
            success=summary.success,
            skipped=summary.skipped,
            failed=summary.failed,
        )
        return summary

    async def _claim_one(self, market: ResolvedMarket, summary: ClaimSummary) -> ClaimOutcome:
        tx_hash = None
        error = None
        try:
            receipt = await self._ctf.redeem(
                market.market_id,
                neg_risk=market.neg_risk,
                token_ids=market.token_ids,
            )
            tx_hash = receipt.tx_hash
            outcome = ClaimOutcome.SUCCESS
            if receipt.status is RedemptionStatus.UNKNOWN:
                self._log.warning(
                    "claim_receipt_unknown",
                    market_id=market.market_id[:16],
                    tx_hash=tx_hash,
                )
        except Exception as e:
            error = str(e)
            tx_hash = getattr(e, "tx_hash", None)
            outcome = self.classify_error(error)
            if outcome is ClaimOutcome.SKIPPED:
                self._log.debug("claim_skipped", market_id=market.market_id[:16], reason=error)
            else:
                self._log.warning("claim_failed", market_id=market.market_id[:16], error=error)

        summary.record(outcome, market.market_id, error or "")
        if self._metrics:
            self._metrics.record_claim(outcome.value)

        try:
            await self._store.record_claim(
                market.market_id,
                outcome.value,
                asset=market.asset,
                tx_hash=tx_hash,
                error=error,
            )
            await self._store.resolve_trades_for_market(
                market.market_id, market.winning_side, market.resolved_at
            )
        except Exception as e:
            self._log.error("claim_record_failed", market_id=market.market_id[:16], error=str(e))

        return outcome
