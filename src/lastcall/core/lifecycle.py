"""
Start/stop plumbing shared by the scheduler and the application.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

log = structlog.get_logger()


@dataclass
class ComponentHealth:
    """Point-in-time health of one component."""
    component: str
    ok: bool
    detail: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "component": self.component,
            "ok": self.ok,
            "detail": self.detail,
            **self.extra,
        }


class BaseComponent:
    """A long-lived component with idempotent start() and stop().

    Subclasses put their work in _on_start()/_on_stop() and may refine
    _report_health(); health() already answers "not running" when stopped.
    """

    def __init__(self, name: Optional[str] = None) -> None:
        self._name = name or type(self).__name__
        self._running = False
        self._started_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def started_at(self) -> Optional[datetime]:
        return self._started_at

    async def start(self) -> None:
        if self._running:
            return
        await self._on_start()
        self._running = True
        self._started_at = datetime.now(timezone.utc)
        log.debug("component_started", component=self._name)

    async def stop(self) -> None:
        if not self._running:
            return
        try:
            await self._on_stop()
        finally:
            self._running = False
            log.debug("component_stopped", component=self._name)

    def health(self) -> ComponentHealth:
        if not self._running:
            return ComponentHealth(self._name, ok=False, detail="not running")
        return self._report_health()

    async def _on_start(self) -> None:
        pass

    async def _on_stop(self) -> None:
        pass

    def _report_health(self) -> ComponentHealth:
        return ComponentHealth(self._name, ok=True, extra={
            "started_at": self._started_at.isoformat() if self._started_at else None,
        })
