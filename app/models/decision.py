import math
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models.trading_state import CURRENCY_PAIRS


class TradeRequest(BaseModel):
    """The `trade` block of an OPEN_TRADE reply."""
    model_config = ConfigDict(populate_by_name=True)

    pair: str = Field(strict=True)
    type: Literal["BUY", "SELL"]
    volume: float
    entry_price: float = Field(alias="entryPrice")
    reasoning: str = Field(default="", strict=True)

    @field_validator("pair")
    @classmethod
    def _known_pair(cls, value: str) -> str:
        if value not in CURRENCY_PAIRS:
            raise ValueError(f"unknown pair {value!r}")
        return value

    @field_validator("volume", "entry_price", mode="before")
    @classmethod
    def _json_number(cls, value):
        # No coercion from "0.5" or true
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a JSON number")
        return value

    @field_validator("volume", "entry_price")
    @classmethod
    def _finite_positive(cls, value: float) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError("must be a finite positive number")
        return value


class DecisionPayload(BaseModel):
    """
    One trading decision as returned by the reasoning service.
    Replies are untrusted, so every field is checked before the ledger sees it.
    """
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["OPEN_TRADE", "CLOSE_TRADE", "HOLD"]
    analysis: str = Field(default="", strict=True)
    trade: Optional[TradeRequest] = None
    trade_id: Optional[str] = Field(default=None, alias="tradeId", strict=True)

    @field_validator("trade_id", mode="before")
    @classmethod
    def _id_as_string(cls, value):
        # Models sometimes echo numeric ids without quotes
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def _action_has_arguments(self):
        if self.action == "OPEN_TRADE" and self.trade is None:
            raise ValueError("OPEN_TRADE requires a trade")
        if self.action == "CLOSE_TRADE" and not self.trade_id:
            raise ValueError("CLOSE_TRADE requires a tradeId")
        return self

    @classmethod
    def hold(cls, analysis: str) -> "DecisionPayload":
        return cls(action="HOLD", analysis=analysis)

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
