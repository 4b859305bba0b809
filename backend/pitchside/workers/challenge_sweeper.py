"""Challenge sweeper: declines pending challenges that can no longer be accepted.

A challenge goes stale when its match found an opponent, stopped accepting
challenges, kicked off, or was deleted. Accepting a challenge declines its
competitors directly; this job catches everything else.
"""

import logging

import pitchside.database as _db
from pitchside.errors import NotFoundError
from pitchside.models.common import to_object_id
from pitchside.models.match import PRE_START_STATUSES
from pitchside.models.notification import NotificationType
from pitchside.models.roster import ChallengePayload, ChallengeStatus
from pitchside.services.write_batch import WriteBatch
from pitchside.utils import format_match_day

logger = logging.getLogger("pitchside.challenge_sweeper")


def _is_open(match_doc: dict | None) -> bool:
    return bool(
        match_doc
        and match_doc.get("status") in PRE_START_STATUSES
        and match_doc.get("allow_challenges")
        and not match_doc.get("team_b_id")
    )


async def sweep_stale_challenges() -> int:
    """Decline stale pending challenges. Returns the number of records touched."""
    pending = await _db.db.notifications.find({
        "type": NotificationType.challenge.value,
        "status": ChallengeStatus.pending.value,
    }).to_list(length=1000)
    if not pending:
        return 0

    parsed: list[tuple[dict, ChallengePayload]] = []
    corrupted: list = []
    for doc in pending:
        payload = ChallengePayload.parse(doc.get("payload"))
        if payload is None:
            corrupted.append(doc["_id"])
        else:
            parsed.append((doc, payload))

    match_oids = []
    for _, payload in parsed:
        try:
            match_oids.append(to_object_id(payload.match_id))
        except NotFoundError:
            continue
    match_docs = await _db.db.matches.find(
        {"_id": {"$in": match_oids}},
        {"status": 1, "allow_challenges": 1, "team_b_id": 1, "date": 1},
    ).to_list(length=len(match_oids) or 1)
    matches = {str(m["_id"]): m for m in match_docs}

    batch = WriteBatch(source="challenge_sweeper")
    declined = 0
    for doc, payload in parsed:
        match_doc = matches.get(payload.match_id)
        if _is_open(match_doc):
            continue
        batch.update(
            "notifications",
            {"_id": doc["_id"], "status": ChallengeStatus.pending.value},
            {"$set": {"status": ChallengeStatus.declined.value, "read": True}},
        )
        day = format_match_day(match_doc["date"]) if match_doc and match_doc.get("date") else None
        batch.notify(
            payload.challenger_manager_id,
            f"Your challenge for the game on {day} was declined." if day else "Your challenge was declined: the game is no longer available.",
            f"/matches/{payload.match_id}" if match_doc else "/matches",
            type=NotificationType.challenge_response.value,
            payload={"match_id": payload.match_id, "accepted": False},
        )
        declined += 1
    if corrupted:
        batch.delete_many("notifications", {"_id": {"$in": corrupted}})
        logger.warning("Challenge sweeper removed %d corrupted challenge(s)", len(corrupted))

    if not len(batch):
        logger.debug("Challenge sweeper: nothing stale among %d pending", len(pending))
        return 0
    await batch.commit()
    logger.info("Challenge sweeper declined %d stale challenge(s)", declined)
    return declined + len(corrupted)
