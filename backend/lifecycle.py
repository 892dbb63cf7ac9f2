"""Election lifecycle: Upcoming -> Ongoing -> Ended.

The persisted ``status`` field is written only here, by the periodic sweep
and by the manual end. Everything else reads it as-is.
"""
import logging
import threading

from pymongo.errors import PyMongoError

from errors import InvalidState, NotFound
from models import ENDED, ONGOING, UPCOMING, log_audit, to_object_id, utcnow

logger = logging.getLogger(__name__)


def reconcile_election_statuses(db, now=None, election_id=None):
    """Move elections forward according to ``now``.

    Returns ``{"started": n, "ended": m}``. Running it twice with the same
    ``now`` changes nothing the second time, and ``Ended`` is never left.
    """
    now = now or utcnow()
    scope = {"_id": to_object_id(election_id, "Election")} if election_id is not None else {}

    started = db.elections.update_many(
        dict(scope, status=UPCOMING, start_date={"$lte": now}),
        {"$set": {"status": ONGOING, "updated_at": now}},
    )
    # runs after the first step so a window that already closed ends in one pass
    ended = db.elections.update_many(
        dict(scope, status=ONGOING, end_date={"$lte": now}),
        {"$set": {"status": ENDED, "updated_at": now}},
    )
    result = {"started": started.modified_count, "ended": ended.modified_count}
    if result["started"] or result["ended"]:
        logger.info("Election statuses updated: %(started)d started, %(ended)d ended", result)
    return result


def end_election(db, election_id, now=None, actor=None):
    now = now or utcnow()
    oid = to_object_id(election_id, "Election")
    election = db.elections.find_one({"_id": oid})
    if not election:
        raise NotFound("Election not found")
    if election["status"] == ENDED:
        raise InvalidState("Election has already ended")

    db.elections.update_one({"_id": oid}, {"$set": {"status": ENDED, "end_date": now, "updated_at": now}})
    log_audit(db, "election_ended", actor, {"election_id": str(oid), "previous_status": election["status"]})
    return db.elections.find_one({"_id": oid})


class StatusSweeper:
    """Periodic status sweep owned by the process.

    ``start()`` sweeps once right away and then every ``interval`` seconds on
    a daemon thread until ``stop()``. Persistence errors are logged and the
    next tick simply tries again.
    """

    def __init__(self, db, interval=60, clock=utcnow):
        self.db = db
        self.interval = interval
        self.clock = clock
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def run_once(self):
        try:
            return reconcile_election_statuses(self.db, now=self.clock())
        except PyMongoError:
            logger.exception("Error updating election statuses")
            return None

    def _run(self):
        self.run_once()
        while not self._stop_event.wait(self.interval):
            self.run_once()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="election-status-sweeper", daemon=True)
        self._thread.start()
        logger.info("Election status sweeper started (every %ss)", self.interval)

    def stop(self, timeout=5):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Election status sweeper stopped")
