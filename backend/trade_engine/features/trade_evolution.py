"""
Trade evolution eligibility.

Some species evolve when they change hands, optionally only while holding
a specific item. After a completed trade every moved asset is checked and
the eligible ones are reported back to the caller; applying the evolution
belongs to the creature subsystem.
"""

from __future__ import annotations

import logging
from typing import Dict, List, NamedTuple, Optional

from trade_engine.models.results import EvolutionCandidate
from trade_engine.models.trade import TradeSession

logger = logging.getLogger(__name__)


class TradeEvolution(NamedTuple):
    evolves_to: str
    held_item: Optional[str] = None


TRADE_EVOLUTIONS: Dict[str, TradeEvolution] = {
    "kadabra": TradeEvolution("alakazam"),
    "machoke": TradeEvolution("machamp"),
    "graveler": TradeEvolution("golem"),
    "haunter": TradeEvolution("gengar"),
    "boldore": TradeEvolution("gigalith"),
    "gurdurr": TradeEvolution("conkeldurr"),
    "phantump": TradeEvolution("trevenant"),
    "pumpkaboo": TradeEvolution("gourgeist"),
    "karrablast": TradeEvolution("escavalier"),
    "shelmet": TradeEvolution("accelgor"),
    "poliwhirl": TradeEvolution("politoed", "kings-rock"),
    "slowpoke": TradeEvolution("slowking", "kings-rock"),
    "onix": TradeEvolution("steelix", "metal-coat"),
    "scyther": TradeEvolution("scizor", "metal-coat"),
    "seadra": TradeEvolution("kingdra", "dragon-scale"),
    "porygon": TradeEvolution("porygon2", "up-grade"),
    "porygon2": TradeEvolution("porygon-z", "dubious-disc"),
    "clamperl": TradeEvolution("huntail", "deep-sea-tooth"),
    "rhydon": TradeEvolution("rhyperior", "protector"),
    "electabuzz": TradeEvolution("electivire", "electirizer"),
    "magmar": TradeEvolution("magmortar", "magmarizer"),
    "dusclops": TradeEvolution("dusknoir", "reaper-cloth"),
    "feebas": TradeEvolution("milotic", "prism-scale"),
    "spritzee": TradeEvolution("aromatisse", "sachet"),
    "swirlix": TradeEvolution("slurpuff", "whipped-dream"),
}


def trade_evolution_for(species: str, held_item: Optional[str]) -> Optional[TradeEvolution]:
    evolution = TRADE_EVOLUTIONS.get(species.lower())
    if evolution is None:
        return None
    if evolution.held_item and (held_item or "").lower() != evolution.held_item:
        return None
    return evolution


class TradeEvolutionChecker:
    def __init__(self, inventory) -> None:
        self.inventory = inventory

    async def eligible(self, session: TradeSession) -> List[EvolutionCandidate]:
        """Assets in a completed session that qualify for a trade evolution."""
        candidates: List[EvolutionCandidate] = []
        for uid in session.participants:
            new_owner = session.counterpart_of(uid)
            for entry in session.assets_of(uid):
                try:
                    info = await self.inventory.asset_info(entry.asset_ref)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Evolution check failed for asset %s: %s", entry.asset_ref, exc)
                    continue
                if info is None:
                    continue
                evolution = trade_evolution_for(info.species, info.held_item)
                if evolution is None:
                    continue
                candidates.append(EvolutionCandidate(
                    asset_ref=entry.asset_ref,
                    species=info.species,
                    evolves_to=evolution.evolves_to,
                    new_owner_id=new_owner,
                    required_item=evolution.held_item,
                ))
        return candidates
