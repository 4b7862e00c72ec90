"""
Repository pattern for data access.

Each repository owns exactly one table: RequestStore owns redeem_requests,
KeyRegistry owns used_keys and CooldownTracker owns cooldowns. None of them
reads another's table.
"""

import sqlite3
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    Cooldown,
    RedeemDraft,
    RedeemRequest,
    RequestStatus,
    ThrottleScope,
    UsedKey,
)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _to_text(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical order equal to time order
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_text(value: str) -> datetime:
    return datetime.fromisoformat(value)


class DuplicateKeyError(Exception):
    """Raised when a redeem key already belongs to a stored request."""
    def __init__(self, redeem_key: str):
        super().__init__(f"Redeem key already recorded: {redeem_key}")
        self.redeem_key = redeem_key


class TransitionResult(Enum):
    """Outcome of a status update."""
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the requests, used-keys and cooldowns tables if missing.

    used_keys is an append-only ledger: no UPDATE or DELETE is ever issued
    against it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS redeem_requests (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                redeem_key TEXT UNIQUE NOT NULL,
                invite_link TEXT NOT NULL,
                contact_email TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'PENDING',
                submitted_at TEXT NOT NULL,
                submitter_address TEXT,
                submitter_agent TEXT,
                order_id TEXT,
                submitter_identity TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_redeem_requests_origin
                ON redeem_requests (submitter_address, submitted_at);

            CREATE TABLE IF NOT EXISTS used_keys (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                redeem_key TEXT UNIQUE NOT NULL,
                used_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS cooldowns (
                identity TEXT PRIMARY KEY,
                last_request_at TEXT NOT NULL
            );
        """)
        conn.commit()
    finally:
        conn.close()


_REQUEST_COLUMNS = """
    id, name, redeem_key, invite_link, contact_email, status, submitted_at,
    submitter_address, submitter_agent, order_id, submitter_identity
"""


def _row_to_request(row: sqlite3.Row) -> RedeemRequest:
    return RedeemRequest(
        id=row["id"],
        name=row["name"],
        redeem_key=row["redeem_key"],
        invite_link=row["invite_link"],
        contact_email=row["contact_email"],
        status=RequestStatus(row["status"]),
        submitted_at=_from_text(row["submitted_at"]),
        submitter_address=row["submitter_address"],
        submitter_agent=row["submitter_agent"],
        order_id=row["order_id"],
        submitter_identity=row["submitter_identity"],
    )


class RequestStore:
    """Durable record of every redeem request and its current status.

    `set_status` is the only mutation; all other fields are written once by
    `create`.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Optional[Clock] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            clock: Callable returning the current aware datetime
        """
        self.db_path = db_path
        self.clock = clock or utcnow

    def create(self, draft: RedeemDraft, contact_email: str) -> int:
        """Persist a new PENDING request.

        Args:
            draft: Validated submission
            contact_email: Configured contact address stored with the request

        Returns:
            The new request id

        Raises:
            DuplicateKeyError: If a request already carries this redeem key
        """
        identity = None
        address = draft.submitter_address
        if draft.scope is ThrottleScope.SUBMITTER:
            identity = draft.identity
        elif address is None:
            # Origin-throttled drafts are keyed by the client address
            address = draft.identity

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO redeem_requests
                (name, redeem_key, invite_link, contact_email, status,
                 submitted_at, submitter_address, submitter_agent, order_id,
                 submitter_identity)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                draft.name,
                draft.redeem_key,
                draft.invite_link,
                contact_email,
                RequestStatus.PENDING.value,
                _to_text(self.clock()),
                address,
                draft.submitter_agent,
                draft.order_id,
                identity,
            ))
            conn.commit()
            return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "redeem_key" in str(e):
                raise DuplicateKeyError(draft.redeem_key) from e
            raise
        finally:
            conn.close()

    def get(self, request_id: int) -> Optional[RedeemRequest]:
        """Fetch one request, or None if the id is unknown."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM redeem_requests WHERE id = ?",
                (request_id,),
            ).fetchone()
            return _row_to_request(row) if row else None
        finally:
            conn.close()

    def list_requests(self, status: Optional[RequestStatus] = None) -> List[RedeemRequest]:
        """List requests, optionally filtered by status.

        Args:
            status: Optional status filter

        Returns:
            Requests ordered newest first
        """
        query = f"SELECT {_REQUEST_COLUMNS} FROM redeem_requests"
        params = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY submitted_at DESC, id DESC"

        conn = get_connection(self.db_path)
        try:
            return [_row_to_request(row) for row in conn.execute(query, params)]
        finally:
            conn.close()

    def set_status(self, request_id: int, new_status: RequestStatus) -> TransitionResult:
        """Move a PENDING request to APPROVED or REJECTED.

        The update is conditional on the stored status still being PENDING,
        so a terminal request is never rewritten.

        Args:
            request_id: Request to update
            new_status: APPROVED or REJECTED

        Returns:
            OK, NOT_FOUND, or INVALID_TRANSITION
        """
        conn = get_connection(self.db_path)
        try:
            if new_status.is_terminal:
                cursor = conn.execute(
                    "UPDATE redeem_requests SET status = ? WHERE id = ? AND status = ?",
                    (new_status.value, request_id, RequestStatus.PENDING.value),
                )
                conn.commit()
                if cursor.rowcount == 1:
                    return TransitionResult.OK

            row = conn.execute(
                "SELECT status FROM redeem_requests WHERE id = ?", (request_id,)
            ).fetchone()
            if row is None:
                return TransitionResult.NOT_FOUND
            return TransitionResult.INVALID_TRANSITION
        finally:
            conn.close()

    def recent_by_origin(self, origin: str, window: timedelta) -> List[RedeemRequest]:
        """Requests from one client address submitted within the window, newest first."""
        cutoff = _to_text(self.clock() - window)
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(f"""
                SELECT {_REQUEST_COLUMNS} FROM redeem_requests
                WHERE submitter_address = ? AND submitted_at > ?
                ORDER BY submitted_at DESC, id DESC
            """, (origin, cutoff))
            return [_row_to_request(row) for row in rows]
        finally:
            conn.close()

    def count_by_status(self) -> Dict[RequestStatus, int]:
        """Number of requests per status, zero-filled."""
        counts = {status: 0 for status in RequestStatus}
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS total FROM redeem_requests GROUP BY status"
            )
            for row in rows:
                counts[RequestStatus(row["status"])] = row["total"]
            return counts
        finally:
            conn.close()


class KeyRegistry:
    """Permanent ledger of consumed redeem keys.

    An entry outlives whatever happens to the request that consumed the key,
    including rejection. There is no delete operation.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Optional[Clock] = None):
        self.db_path = db_path
        self.clock = clock or utcnow

    def is_used(self, redeem_key: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT 1 FROM used_keys WHERE redeem_key = ?", (redeem_key,)
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    def mark_used(self, redeem_key: str) -> bool:
        """Record a key as consumed.

        The UNIQUE constraint makes this a single check-and-set.

        Returns:
            True if recorded, False if the key was already in the ledger
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO used_keys (redeem_key, used_at) VALUES (?, ?)",
                (redeem_key, _to_text(self.clock())),
            )
            conn.commit()
            return True
        except sqlite3.IntegrityError:
            conn.rollback()
            return False
        finally:
            conn.close()

    def list_used(self) -> List[UsedKey]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT redeem_key, used_at FROM used_keys ORDER BY used_at DESC, id DESC"
            )
            return [
                UsedKey(redeem_key=row["redeem_key"], used_at=_from_text(row["used_at"]))
                for row in rows
            ]
        finally:
            conn.close()


class CooldownTracker:
    """Last accepted submission time per submitter identity."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Optional[Clock] = None):
        self.db_path = db_path
        self.clock = clock or utcnow

    def get(self, identity: str) -> Optional[Cooldown]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT identity, last_request_at FROM cooldowns WHERE identity = ?",
                (identity,),
            ).fetchone()
            if row is None:
                return None
            return Cooldown(
                identity=row["identity"],
                last_request_at=_from_text(row["last_request_at"]),
            )
        finally:
            conn.close()

    def remaining(self, identity: str, window: timedelta) -> timedelta:
        """Time left before the identity may submit again; zero if not throttled."""
        cooldown = self.get(identity)
        if cooldown is None:
            return timedelta(0)
        elapsed = self.clock() - cooldown.last_request_at
        return max(window - elapsed, timedelta(0))

    def is_on_cooldown(self, identity: str, window: timedelta) -> bool:
        return self.remaining(identity, window) > timedelta(0)

    def record_attempt(self, identity: str) -> None:
        """Set last_request_at to now, overwriting any earlier value."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO cooldowns (identity, last_request_at) VALUES (?, ?)
                ON CONFLICT(identity) DO UPDATE SET last_request_at = excluded.last_request_at
            """, (identity, _to_text(self.clock())))
            conn.commit()
        finally:
            conn.close()

    def purge_expired(self, window: timedelta) -> int:
        """Delete entries older than the window.

        Expired entries are already inert, so this is storage hygiene only.

        Returns:
            Number of entries removed
        """
        cutoff = _to_text(self.clock() - window)
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM cooldowns WHERE last_request_at < ?", (cutoff,)
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
