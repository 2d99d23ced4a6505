"""
Trade session model.

A session is the shared, mutable offer between two participants. It owns
its entries, confirmations and lifecycle status; every state change goes
through the methods below so the transition table is enforced in one place.

  active ──confirm──▶ pending_confirmation ──both confirmed──▶ processing
    │  ▲                     │                                     │
    │  └──entries changed────┘                         completed / failed
    └──────────── cancel ───────────┘
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from trade_engine.core.exceptions import TradeConflict, TradeValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TradeStatus(str, Enum):
    ACTIVE = "active"
    PENDING_CONFIRMATION = "pending_confirmation"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = {TradeStatus.COMPLETED, TradeStatus.CANCELLED, TradeStatus.FAILED}

ALLOWED_TRANSITIONS: Dict[TradeStatus, set] = {
    TradeStatus.ACTIVE: {TradeStatus.PENDING_CONFIRMATION, TradeStatus.CANCELLED},
    TradeStatus.PENDING_CONFIRMATION: {
        TradeStatus.ACTIVE,
        TradeStatus.PROCESSING,
        TradeStatus.FAILED,
        TradeStatus.CANCELLED,
    },
    TradeStatus.PROCESSING: {TradeStatus.COMPLETED, TradeStatus.FAILED},
    TradeStatus.COMPLETED: set(),
    TradeStatus.CANCELLED: set(),
    TradeStatus.FAILED: set(),
}


class TokenType(str, Enum):
    DARK = "Dark"
    BUG = "Bug"
    GROUND = "Ground"
    FIGHTING = "Fighting"
    STEEL = "Steel"
    ELECTRIC = "Electric"
    GRASS = "Grass"
    FAIRY = "Fairy"
    WATER = "Water"
    ROCK = "Rock"
    FLYING = "Flying"
    PSYCHIC = "Psychic"
    NORMAL = "Normal"
    DRAGON = "Dragon"
    FIRE = "Fire"
    GHOST = "Ghost"
    ICE = "Ice"
    POISON = "Poison"


def _entry_id() -> str:
    return uuid.uuid4().hex


# ── Entries (tagged union) ───────────────────────────────────

class AssetEntry(BaseModel):
    """A single owned creature offered in the trade."""
    item_type: Literal["asset"] = "asset"
    entry_id: str = Field(default_factory=_entry_id)
    owner_id: int
    asset_ref: int


class CurrencyEntry(BaseModel):
    item_type: Literal["currency"] = "currency"
    entry_id: str = Field(default_factory=_entry_id)
    owner_id: int
    amount: int = Field(gt=0)


class TokenEntry(BaseModel):
    item_type: Literal["token"] = "token"
    entry_id: str = Field(default_factory=_entry_id)
    owner_id: int
    token_type: TokenType
    count: int = Field(gt=0)


TradeEntry = Annotated[
    Union[AssetEntry, CurrencyEntry, TokenEntry],
    Field(discriminator="item_type"),
]


# ── Session ──────────────────────────────────────────────────

class TradeSession(BaseModel):
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    player1_id: int
    player2_id: int
    entries: List[TradeEntry] = []
    confirmations: Dict[int, bool] = {}
    status: TradeStatus = TradeStatus.ACTIVE
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_modified_at: datetime = Field(default_factory=utcnow)

    def model_post_init(self, __context) -> None:
        for uid in (self.player1_id, self.player2_id):
            self.confirmations.setdefault(uid, False)

    # ── queries ──────────────────────────────────────────────

    @property
    def participants(self) -> List[int]:
        return [self.player1_id, self.player2_id]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def both_confirmed(self) -> bool:
        return all(self.confirmations.get(uid, False) for uid in self.participants)

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.player1_id, self.player2_id)

    def counterpart_of(self, user_id: int) -> int:
        self._require_participant(user_id)
        return self.player2_id if user_id == self.player1_id else self.player1_id

    def entries_of(self, user_id: int) -> List[TradeEntry]:
        return [e for e in self.entries if e.owner_id == user_id]

    def assets_of(self, user_id: int) -> List[AssetEntry]:
        return [e for e in self.entries_of(user_id) if isinstance(e, AssetEntry)]

    def currency_of(self, user_id: int) -> int:
        return sum(e.amount for e in self.entries_of(user_id) if isinstance(e, CurrencyEntry))

    def tokens_of(self, user_id: int) -> Dict[TokenType, int]:
        tokens: Dict[TokenType, int] = {}
        for e in self.entries_of(user_id):
            if isinstance(e, TokenEntry):
                tokens[e.token_type] = tokens.get(e.token_type, 0) + e.count
        return tokens

    # ── entry mutation ───────────────────────────────────────

    def add_entry(self, user_id: int, entry: TradeEntry) -> None:
        """Add an entry on behalf of ``user_id``; resets confirmations."""
        self._require_participant(user_id)
        self._require_open()
        if entry.owner_id != user_id:
            raise TradeValidationError("You can only offer your own items")

        if isinstance(entry, AssetEntry):
            if any(isinstance(e, AssetEntry) and e.asset_ref == entry.asset_ref for e in self.entries):
                raise TradeConflict(f"Asset {entry.asset_ref} is already in this trade")
            self.entries.append(entry)
        elif isinstance(entry, CurrencyEntry):
            # one currency line per owner; a new amount replaces the old one
            self.entries = [
                e for e in self.entries
                if not (isinstance(e, CurrencyEntry) and e.owner_id == user_id)
            ]
            self.entries.append(entry)
        else:
            existing = self._find_token(user_id, entry.token_type)
            if existing is not None:
                existing.count += entry.count
            else:
                self.entries.append(entry)

        self._entries_changed()

    def remove_entry(self, user_id: int, entry: TradeEntry) -> None:
        """Remove (or reduce) a matching entry owned by ``user_id``."""
        self._require_participant(user_id)
        self._require_open()
        if entry.owner_id != user_id:
            raise TradeValidationError("You can only remove your own items")

        if isinstance(entry, AssetEntry):
            target = next(
                (e for e in self.entries if isinstance(e, AssetEntry) and e.asset_ref == entry.asset_ref),
                None,
            )
            if target is None:
                raise TradeValidationError(f"Asset {entry.asset_ref} is not in this trade")
            self.entries.remove(target)
        elif isinstance(entry, CurrencyEntry):
            target = next(
                (e for e in self.entries if isinstance(e, CurrencyEntry) and e.owner_id == user_id),
                None,
            )
            if target is None:
                raise TradeValidationError("You have no currency in this trade")
            if entry.amount >= target.amount:
                self.entries.remove(target)
            else:
                target.amount -= entry.amount
        else:
            target = self._find_token(user_id, entry.token_type)
            if target is None:
                raise TradeValidationError(f"You have no {entry.token_type.value} tokens in this trade")
            if entry.count >= target.count:
                self.entries.remove(target)
            else:
                target.count -= entry.count

        self._entries_changed()

    # ── confirmation ─────────────────────────────────────────

    def set_confirmation(self, user_id: int, confirmed: bool = True) -> TradeStatus:
        self._require_participant(user_id)
        self._require_open()
        if confirmed and not self.entries:
            raise TradeValidationError("Add at least one item before confirming")

        self.confirmations[user_id] = confirmed
        target = (
            TradeStatus.PENDING_CONFIRMATION
            if any(self.confirmations.values())
            else TradeStatus.ACTIVE
        )
        if target != self.status:
            self._transition(target)
        self._touch()
        return self.status

    def reset_confirmations(self) -> None:
        for uid in self.participants:
            self.confirmations[uid] = False
        if self.status == TradeStatus.PENDING_CONFIRMATION:
            self._transition(TradeStatus.ACTIVE)

    # ── lifecycle ────────────────────────────────────────────

    def begin_processing(self) -> None:
        """Check-and-set guard for the dual-confirm race."""
        if self.status == TradeStatus.PROCESSING:
            raise TradeConflict("This trade is already being processed")
        if self.status != TradeStatus.PENDING_CONFIRMATION or not self.both_confirmed:
            raise TradeConflict(f"Trade cannot be processed from status {self.status.value}")
        self._transition(TradeStatus.PROCESSING)

    def mark_completed(self) -> None:
        self._transition(TradeStatus.COMPLETED)

    def mark_failed(self, reason: str) -> None:
        self._transition(TradeStatus.FAILED)
        self.failure_reason = reason

    def cancel(self) -> None:
        if self.status == TradeStatus.PROCESSING:
            raise TradeConflict("This trade is already being processed and can no longer be cancelled")
        self._transition(TradeStatus.CANCELLED)

    # ── internals ────────────────────────────────────────────

    def _transition(self, target: TradeStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise TradeConflict(
                f"Invalid trade transition {self.status.value} → {target.value}"
            )
        self.status = target
        self._touch()

    def _entries_changed(self) -> None:
        self.reset_confirmations()
        self._touch()

    def _touch(self) -> None:
        self.last_modified_at = utcnow()

    def _require_participant(self, user_id: int) -> None:
        if not self.is_participant(user_id):
            raise TradeValidationError("You are not part of this trade")

    def _require_open(self) -> None:
        if self.status == TradeStatus.PROCESSING:
            raise TradeConflict("This trade is already being processed")
        if self.is_terminal:
            raise TradeConflict(f"This trade is already {self.status.value}")

    def _find_token(self, user_id: int, token_type: TokenType) -> Optional[TokenEntry]:
        return next(
            (
                e for e in self.entries
                if isinstance(e, TokenEntry) and e.owner_id == user_id and e.token_type == token_type
            ),
            None,
        )
