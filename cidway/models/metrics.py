"""Stream records consumed by the metrics updaters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from cidway.models.agent import Capability, Invocation, Receipt


class StreamRecord(BaseModel):
    """One invocation or receipt as delivered by the event stream.

    ``workflow`` records carry an invocation that has not run yet and are
    ignored by the metrics updaters; only ``receipt`` records with an
    ``ok`` outcome are counted.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["workflow", "receipt"] = "receipt"
    capabilities: list[Capability]
    out: dict[str, Any] = Field(default_factory=dict)
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> StreamRecord:
        if not isinstance(receipt.ran, Invocation):
            raise ValueError("receipt does not embed the invocation it ran")
        return cls(type="receipt", capabilities=receipt.ran.capabilities, out=receipt.out)

    @classmethod
    def from_invocation(cls, invocation: Invocation) -> StreamRecord:
        return cls(type="workflow", capabilities=invocation.capabilities)

    @property
    def ok(self) -> dict[str, Any] | None:
        if self.type != "receipt":
            return None
        value = self.out.get("ok")
        return value if isinstance(value, dict) else None
