"""Risk gate result model."""
from dataclasses import dataclass


@dataclass(frozen=True)
class GateResult:
    """Outcome of a risk gate: whether trading may proceed, and why not."""
    can_trade: bool
    reasons: tuple[str, ...] = ()
    gate: str = ""

    @classmethod
    def passed(cls, gate: str = "") -> "GateResult":
        return cls(can_trade=True, gate=gate)

    @classmethod
    def blocked(cls, *reasons: str, gate: str = "") -> "GateResult":
        return cls(can_trade=False, reasons=tuple(reasons), gate=gate)

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)

    def combine(self, other: "GateResult") -> "GateResult":
        """Both must pass; reasons are concatenated."""
        return GateResult(
            can_trade=self.can_trade and other.can_trade,
            reasons=self.reasons + other.reasons,
            gate=self.gate or other.gate,
        )
