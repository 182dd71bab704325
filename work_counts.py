"""
Per-work counts and global totals.

Work.counts is a cache over Work.status, and the single Worktotals document is
a cache over every Work.counts. Every status mutation goes through
`upsert_status`, which re-derives both layers. `repair_all_counts` rebuilds
them from scratch.

Writes to a work's status list use compare-and-set on its `rev` field so two
users updating the same work concurrently cannot drop each other's entry.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import now_utc, parse_object_id
from schemas import StatusEntry, Worktotals

logger = logging.getLogger(__name__)

WORK_COLLECTION = "work"
TOTALS_COLLECTION = "worktotals"
COUNTER_COLLECTION = "counters"
TOTALS_KEY = "global"

STATE_COMPLETED = "completed"
STATE_DOING = "doing"
STATE_NOT_YET_STARTED = "not yet started"
VALID_STATES = (STATE_COMPLETED, STATE_DOING, STATE_NOT_YET_STARTED)

MAX_WRITE_ATTEMPTS = 10


class InvalidStateError(ValueError):
    pass


class WorkNotFoundError(LookupError):
    pass


class ConcurrentUpdateError(RuntimeError):
    pass


def is_valid_state(state: Any) -> bool:
    return state in VALID_STATES


def empty_counts() -> Dict[str, int]:
    return {"completed": 0, "doing": 0, "notYetStarted": 0}


def tally_counts(statuses: Optional[Iterable[Dict[str, Any]]]) -> Dict[str, int]:
    """Count status entries by state; anything unrecognised is not yet started."""
    counts = empty_counts()
    for entry in statuses or []:
        state = entry.get("state")
        if state == STATE_COMPLETED:
            counts["completed"] += 1
        elif state == STATE_DOING:
            counts["doing"] += 1
        else:
            counts["notYetStarted"] += 1
    return counts


def apply_status(statuses: List[Dict[str, Any]], user_id: str, username: str, state: str, when) -> List[Dict[str, Any]]:
    """Return a new status list with the user's entry updated or appended."""
    updated = [dict(entry) for entry in statuses]
    for entry in updated:
        if str(entry.get("userId")) == user_id:
            entry["state"] = state
            entry["username"] = username
            entry["updatedAt"] = when
            return updated
    updated.append(StatusEntry(userId=user_id, username=username, state=state, updatedAt=when).model_dump())
    return updated


def _compare_and_set(db: Database, work: Dict[str, Any], changes: Dict[str, Any]) -> bool:
    rev = work.get("rev")
    result = db[WORK_COLLECTION].update_one({"_id": work["_id"], "rev": rev}, {"$set": changes, "$inc": {"rev": 1}})
    if result.matched_count == 1:
        work.update(changes)
        work["rev"] = (rev or 0) + 1
        return True
    return False


def _load_work(db: Database, work_id) -> Optional[Dict[str, Any]]:
    oid = parse_object_id(str(work_id))
    if oid is None:
        return None
    return db[WORK_COLLECTION].find_one({"_id": oid})


def recalc_work_counts(db: Database, work_id) -> Optional[Dict[str, int]]:
    """Derive a work's counts from its status list and store them.

    Returns the counts, or None if the work does not exist.
    """
    for _ in range(MAX_WRITE_ATTEMPTS):
        work = _load_work(db, work_id)
        if work is None:
            return None
        counts = tally_counts(work.get("status"))
        if work.get("counts") == counts:
            return counts
        if _compare_and_set(db, work, {"counts": counts}):
            return counts
    raise ConcurrentUpdateError(f"Could not store counts for work {work_id}")


def _next_ticket(db: Database) -> int:
    """Hand out increasing numbers so recomputes can be ordered."""
    doc = db[COUNTER_COLLECTION].find_one_and_update(
        {"_id": TOTALS_KEY},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return doc["seq"]


def _aggregate_totals(db: Database) -> Dict[str, Any]:
    agg = list(
        db[WORK_COLLECTION].aggregate(
            [
                {
                    "$group": {
                        "_id": None,
                        "totalWorks": {"$sum": 1},
                        "completed": {"$sum": "$counts.completed"},
                        "doing": {"$sum": "$counts.doing"},
                        "notYetStarted": {"$sum": "$counts.notYetStarted"},
                    }
                }
            ]
        )
    )
    row = agg[0] if agg else {}
    return Worktotals(
        totalWorks=row.get("totalWorks") or 0,
        completed=row.get("completed") or 0,
        doing=row.get("doing") or 0,
        notYetStarted=row.get("notYetStarted") or 0,
        updatedAt=now_utc(),
    ).model_dump()


def _save_totals(db: Database, totals: Dict[str, Any], ticket: int) -> Dict[str, Any]:
    """Store totals unless a recompute that started later already has.

    Returns the totals document as stored.
    """
    fields = dict(totals, seq=ticket)
    result = db[TOTALS_COLLECTION].update_one({"_id": TOTALS_KEY, "seq": {"$lt": ticket}}, {"$set": fields})
    if result.matched_count == 0:
        try:
            db[TOTALS_COLLECTION].insert_one(dict(fields, _id=TOTALS_KEY))
        except DuplicateKeyError:
            logger.debug(f"Totals from recompute {ticket} superseded by a newer one")
    return get_global_totals(db)


def recompute_global_totals(db: Database) -> Dict[str, Any]:
    """Sum counts over all works into the single totals document."""
    ticket = _next_ticket(db)
    return _save_totals(db, _aggregate_totals(db), ticket)


def get_global_totals(db: Database) -> Optional[Dict[str, Any]]:
    return db[TOTALS_COLLECTION].find_one({"_id": TOTALS_KEY})


def upsert_status(db: Database, work_id, user_id, username: str, state: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Record one user's state on a work, then refresh counts and totals.

    Returns the updated work document and the recomputed totals.
    """
    if not is_valid_state(state):
        raise InvalidStateError(f"Invalid state: {state!r}")
    user_id = str(user_id)

    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        work = _load_work(db, work_id)
        if work is None:
            raise WorkNotFoundError(str(work_id))
        statuses = apply_status(work.get("status") or [], user_id, username, state, now_utc())
        if _compare_and_set(db, work, {"status": statuses, "counts": tally_counts(statuses)}):
            break
        logger.debug(f"Status write on work {work_id} lost a race (attempt {attempt}), retrying")
    else:
        raise ConcurrentUpdateError(f"Could not update status on work {work_id}")

    totals = recompute_global_totals(db)
    return work, totals


def repair_all_counts(db: Database) -> Dict[str, Any]:
    """Recalculate every work's counts, then the global totals."""
    repaired = 0
    for work in db[WORK_COLLECTION].find({}, {"_id": 1}):
        if recalc_work_counts(db, work["_id"]) is not None:
            repaired += 1
    totals = recompute_global_totals(db)
    logger.info(f"Recomputed counts for {repaired} works; totals={totals.get('totalWorks')}")
    return totals
