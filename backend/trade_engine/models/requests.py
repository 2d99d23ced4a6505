"""
Request bodies for the HTTP command and reporting surface.
"""

from enum import Enum

from pydantic import BaseModel, Field

from trade_engine.models.trade import TradeEntry
from trade_engine.utils.filters import FilterExpr


class StartTradeRequest(BaseModel):
    player1_id: int
    player2_id: int


class EntryOp(str, Enum):
    ADD = "add"
    REMOVE = "remove"


class MutateTradeRequest(BaseModel):
    acting_user_id: int
    op: EntryOp = EntryOp.ADD
    entry: TradeEntry


class ConfirmTradeRequest(BaseModel):
    acting_user_id: int
    confirmed: bool = True


class CancelTradeRequest(BaseModel):
    acting_user_id: int


class EdgeSearchRequest(BaseModel):
    window_days: int = Field(30, ge=1, le=365)
    filter: FilterExpr
    limit: int = Field(500, ge=1, le=5000)


class WhitelistRequest(BaseModel):
    whitelisted: bool = True
