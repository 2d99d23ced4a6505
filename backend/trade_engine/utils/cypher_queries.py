"""
Centralised Cypher query repository.

Organisation
────────────
SCHEMA_*        – constraints & indexes (run once at startup)
REL_*           – trade relationship upserts & window reads
INV_*           – inventory reads & transfers (assets, currency, tokens)
MAINT_*         – maintenance helpers

Neo4j Graph Schema
──────────────────
Nodes   :User {user_id, credits}  :Asset {asset_ref, species, value, tradable, held_item}
        :TokenBalance {user_id, token_type, count}
Edges   :TRADED_WITH  (User→User, always lower user_id → higher user_id)
        :OWNED_BY     (Asset→User)

Timestamps on TRADED_WITH are epoch milliseconds (first_trade_ms,
last_trade_ms) so window filters are plain integer comparisons.
"""

# ==============================================================
# SCHEMA – constraints & indexes
# ==============================================================

SCHEMA_CONSTRAINTS: list[str] = [
    "CREATE CONSTRAINT user_id_uniq   IF NOT EXISTS FOR (u:User)         REQUIRE u.user_id   IS UNIQUE",
    "CREATE CONSTRAINT asset_ref_uniq IF NOT EXISTS FOR (a:Asset)        REQUIRE a.asset_ref IS UNIQUE",
    "CREATE CONSTRAINT token_bal_uniq IF NOT EXISTS FOR (t:TokenBalance) REQUIRE (t.user_id, t.token_type) IS UNIQUE",
]

SCHEMA_INDEXES: list[str] = [
    "CREATE INDEX idx_traded_last  IF NOT EXISTS FOR ()-[r:TRADED_WITH]-() ON (r.last_trade_ms)",
    "CREATE INDEX idx_traded_risk  IF NOT EXISTS FOR ()-[r:TRADED_WITH]-() ON (r.risk_score)",
    "CREATE INDEX idx_asset_species IF NOT EXISTS FOR (a:Asset)             ON (a.species)",
]

# ==============================================================
# REL – cumulative per-pair trade statistics
# ==============================================================

_REL_PROJECTION = """
    a.user_id                       AS user1_id,
    b.user_id                       AS user2_id,
    r.total_trades                  AS total_trades,
    r.user1_given                   AS user1_total_given_value,
    r.user2_given                   AS user2_total_given_value,
    r.user1_favoring                AS user1_favoring_trades,
    r.user2_favoring                AS user2_favoring_trades,
    r.balanced                      AS balanced_trades,
    r.first_trade_ms                AS first_trade_ms,
    r.last_trade_ms                 AS last_trade_ms,
    r.imbalance_ratio               AS value_imbalance_ratio,
    r.frequency                     AS trading_frequency,
    r.age_difference_days           AS account_age_difference_days,
    r.risk_score                    AS relationship_risk_score,
    r.alts                          AS flagged_potential_alts,
    r.rmt                           AS flagged_potential_rmt,
    r.newbie                        AS flagged_newbie_exploitation,
    coalesce(r.whitelisted, false)  AS whitelisted
"""

# Atomic counter increment: the whole upsert runs in one write transaction
REL_INCREMENT = """
MERGE (a:User {user_id: $user1_id})
MERGE (b:User {user_id: $user2_id})
MERGE (a)-[r:TRADED_WITH]->(b)
  ON CREATE SET
    r.total_trades        = 0,
    r.user1_given         = 0.0,
    r.user2_given         = 0.0,
    r.user1_favoring      = 0,
    r.user2_favoring      = 0,
    r.balanced            = 0,
    r.first_trade_ms      = $traded_ms,
    r.imbalance_ratio     = 1.0,
    r.frequency           = 0.0,
    r.age_difference_days = 0.0,
    r.risk_score          = 0.0,
    r.alts                = false,
    r.rmt                 = false,
    r.newbie              = false,
    r.whitelisted         = false
SET r.total_trades   = r.total_trades + 1,
    r.user1_given    = r.user1_given + $user1_value,
    r.user2_given    = r.user2_given + $user2_value,
    r.user1_favoring = r.user1_favoring + $user1_favoring,
    r.user2_favoring = r.user2_favoring + $user2_favoring,
    r.balanced       = r.balanced + $balanced,
    r.last_trade_ms  = $traded_ms
RETURN """ + _REL_PROJECTION

# Derived fields; risk flags are sticky once raised
REL_UPDATE_RISK = """
MATCH (a:User {user_id: $user1_id})-[r:TRADED_WITH]->(b:User {user_id: $user2_id})
SET r.imbalance_ratio     = $value_imbalance_ratio,
    r.frequency           = $trading_frequency,
    r.age_difference_days = $account_age_difference_days,
    r.risk_score          = $relationship_risk_score,
    r.alts                = r.alts   OR $flagged_potential_alts,
    r.rmt                 = r.rmt    OR $flagged_potential_rmt,
    r.newbie              = r.newbie OR $flagged_newbie_exploitation
RETURN """ + _REL_PROJECTION

REL_GET = """
MATCH (a:User {user_id: $user1_id})-[r:TRADED_WITH]->(b:User {user_id: $user2_id})
RETURN """ + _REL_PROJECTION

REL_IN_WINDOW = """
MATCH (a:User)-[r:TRADED_WITH]->(b:User)
WHERE r.last_trade_ms >= $cutoff_ms
RETURN """ + _REL_PROJECTION + """
ORDER BY user1_id, user2_id
"""

REL_USER_CONNECTIONS = """
MATCH (:User {user_id: $user_id})-[r:TRADED_WITH]-(:User)
WHERE r.last_trade_ms >= $cutoff_ms
WITH r, startNode(r) AS a, endNode(r) AS b
RETURN """ + _REL_PROJECTION + """
ORDER BY user1_id, user2_id
"""

REL_AMONG = """
MATCH (a:User)-[r:TRADED_WITH]->(b:User)
WHERE a.user_id IN $user_ids AND b.user_id IN $user_ids
  AND r.last_trade_ms >= $cutoff_ms
RETURN """ + _REL_PROJECTION + """
ORDER BY user1_id, user2_id
"""

REL_SET_WHITELIST = """
MATCH (a:User {user_id: $user1_id})-[r:TRADED_WITH]->(b:User {user_id: $user2_id})
SET r.whitelisted = $whitelisted
RETURN """ + _REL_PROJECTION

# ==============================================================
# INV – inventory
# ==============================================================

INV_USER_EXISTS = """
MATCH (u:User {user_id: $user_id})
WHERE u.credits IS NOT NULL
RETURN u.user_id AS user_id
"""

INV_CURRENCY_BALANCE = """
MATCH (u:User {user_id: $user_id})
RETURN coalesce(u.credits, 0) AS credits
"""

# Returns no row when the debit would overdraw
INV_ADJUST_CURRENCY = """
MATCH (u:User {user_id: $user_id})
WHERE coalesce(u.credits, 0) + $delta >= 0
SET u.credits = coalesce(u.credits, 0) + $delta
RETURN u.credits AS credits
"""

INV_TOKEN_BALANCE = """
OPTIONAL MATCH (t:TokenBalance {user_id: $user_id, token_type: $token_type})
RETURN coalesce(t.count, 0) AS count
"""

INV_ADJUST_TOKENS = """
MERGE (t:TokenBalance {user_id: $user_id, token_type: $token_type})
  ON CREATE SET t.count = 0
WITH t
WHERE t.count + $delta >= 0
SET t.count = t.count + $delta
RETURN t.count AS count
"""

INV_GET_ASSET = """
MATCH (a:Asset {asset_ref: $asset_ref})
OPTIONAL MATCH (a)-[:OWNED_BY]->(u:User)
RETURN a.asset_ref                        AS asset_ref,
       a.species                          AS species,
       coalesce(a.value, $default_value)  AS value,
       coalesce(a.tradable, true)         AS tradable,
       a.held_item                        AS held_item,
       u.user_id                          AS owner_id
"""

INV_TRANSFER_ASSET = """
MATCH (a:Asset {asset_ref: $asset_ref})-[o:OWNED_BY]->(:User {user_id: $from_user_id})
MATCH (t:User {user_id: $to_user_id})
DELETE o
CREATE (a)-[:OWNED_BY]->(t)
SET a.listed = false
RETURN a.asset_ref AS asset_ref
"""

# ==============================================================
# MAINT – maintenance
# ==============================================================

MAINT_COUNT_NODES = """
MATCH (n)
RETURN labels(n)[0] AS label, count(n) AS count
"""

MAINT_COUNT_RELS = """
MATCH ()-[r]->()
RETURN type(r) AS type, count(r) AS count
"""
