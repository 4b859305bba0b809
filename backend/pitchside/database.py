"""
backend/pitchside/database.py

Purpose:
    MongoDB connection bootstrap and index management for all collections.
    Multi-document writes run in transactions, so MONGO_URI must point at a
    replica set (a single-node replica set is enough for development).

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - pitchside.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from pitchside.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("pitchside.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def get_db() -> AsyncIOMotorDatabase:
    return db


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Users / Sessions ----

    await db.users.create_index("email", unique=True)
    await db.users.create_index("is_deleted")

    await db.sessions.create_index("user_id")
    await db.sessions.create_index("expires_at", expireAfterSeconds=0)

    # ---- Pitches / Promotions ----

    await db.pitches.create_index("owner_id")
    await db.promotions.create_index([("valid_from", 1), ("valid_to", 1)])
    await db.promotions.create_index("pitch_ids")

    # ---- Reservations ----

    await db.reservations.create_index([("pitch_id", 1), ("date", 1)])
    await db.reservations.create_index([("actor_id", 1), ("date", -1)])
    await db.reservations.create_index("status")

    # ---- Matches ----

    await db.matches.create_index([("pitch_id", 1), ("date", 1)])
    await db.matches.create_index("reservation_id", unique=True, sparse=True)
    await db.matches.create_index([("status", 1), ("date", 1)])
    await db.matches.create_index("manager_id")
    await db.matches.create_index("team_a_id")
    await db.matches.create_index("team_b_id")
    await db.matches.create_index("team_a_players")
    await db.matches.create_index("team_b_players")

    # ---- Teams / Player profiles ----

    await db.teams.create_index("manager_id")
    await db.teams.create_index("player_ids")
    await db.player_profiles.create_index("user_ref", unique=True)

    # ---- Roster intake ----

    await db.match_invitations.create_index([("match_id", 1), ("status", 1)])
    await db.match_invitations.create_index([("player_id", 1), ("status", 1)])
    await db.match_invitations.create_index(
        [("match_id", 1), ("player_id", 1)],
        unique=True,
        partialFilterExpression={"status": "pending"},
    )

    # ---- Notifications ----

    await db.notifications.create_index([("recipient_id", 1), ("created_at", -1)])
    await db.notifications.create_index([("recipient_id", 1), ("read", 1)])
    await db.notifications.create_index(
        [("type", 1), ("status", 1), ("payload.match_id", 1)],
        partialFilterExpression={"type": "Challenge"},
    )

    # ---- Payments ----

    await db.payments.create_index([("reservation_id", 1), ("status", 1)])
    await db.payments.create_index([("payer_id", 1), ("created_at", -1)])
    await db.payments.create_index("match_id", sparse=True)

    # ---- MVP votes ----

    await db.mvp_votes.create_index([("match_id", 1), ("voter_id", 1)], unique=True)
    await db.mvp_votes.create_index("match_id")

    # ---- Audit Logs ----

    await db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
    await db.audit_logs.create_index([("actor_id", 1), ("timestamp", -1)])
    await db.audit_logs.create_index([("target_id", 1), ("timestamp", -1)])
    await db.audit_logs.create_index("timestamp")

    logger.info("MongoDB indexes ensured for database %s", settings.MONGO_DB)
