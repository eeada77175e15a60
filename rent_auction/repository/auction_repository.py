"""Repository layer responsible for all auction snapshot persistence."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from pathlib import Path
from threading import RLock
from typing import Callable, Optional

from rent_auction.domain.errors import AuctionNotFoundError, AuctionValidationError
from rent_auction.domain.models import AuctionAggregate, TransitionResult
from rent_auction.utils.config import Settings, get_settings
from rent_auction.utils.logger import get_logger


logger = get_logger(__name__)

SnapshotListener = Callable[[AuctionAggregate], None]
Transition = Callable[[AuctionAggregate], TransitionResult]


class AuctionRepository:
    """Stores one JSON snapshot per auction and serializes writes per auction.

    ``update`` is the only write path for an existing auction: it reads,
    applies the transition and writes back inside one ``BEGIN IMMEDIATE``
    transaction, so concurrent submissions never evaluate a stale snapshot.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self._listeners: dict[str, list[SnapshotListener]] = {}

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, isolation_level=None, timeout=30.0)
        connection.row_factory = sqlite3.Row
        return connection

    def initialize_database(self) -> None:
        """Create persistence artifacts before API startup."""
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Auctions (
                        id TEXT PRIMARY KEY,
                        phase TEXT NOT NULL,
                        snapshot TEXT NOT NULL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_auctions_phase ON Auctions(phase);"
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def create(self, aggregate: AuctionAggregate) -> AuctionAggregate:
        with self._lock, closing(self._connect()) as conn:
            try:
                conn.execute(
                    "INSERT INTO Auctions (id, phase, snapshot) VALUES (?, ?, ?);",
                    (
                        aggregate.auction_id,
                        aggregate.phase.value,
                        json.dumps(aggregate.to_dict()),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise AuctionValidationError(
                    f"auction {aggregate.auction_id} already exists"
                ) from exc
        self._notify(aggregate)
        return aggregate

    def get(self, auction_id: str) -> Optional[AuctionAggregate]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT snapshot FROM Auctions WHERE id = ?;",
                (auction_id,),
            ).fetchone()
        if row is None:
            return None
        return AuctionAggregate.from_dict(json.loads(row["snapshot"]))

    def update(self, auction_id: str, transition: Transition) -> TransitionResult:
        """Atomically apply ``transition`` to the stored snapshot.

        Nothing is written when the transition returns an error or leaves the
        snapshot unchanged.
        """
        with self._lock, closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                row = conn.execute(
                    "SELECT snapshot FROM Auctions WHERE id = ?;",
                    (auction_id,),
                ).fetchone()
                if row is None:
                    raise AuctionNotFoundError(f"auction {auction_id} does not exist")
                current = AuctionAggregate.from_dict(json.loads(row["snapshot"]))
                result = transition(current)
                changed = result.ok and result.aggregate != current
                if changed:
                    conn.execute(
                        """
                        UPDATE Auctions
                        SET phase = ?, snapshot = ?, updated_at = CURRENT_TIMESTAMP
                        WHERE id = ?;
                        """,
                        (
                            result.aggregate.phase.value,
                            json.dumps(result.aggregate.to_dict()),
                            auction_id,
                        ),
                    )
                conn.execute("COMMIT;")
            except BaseException:
                conn.execute("ROLLBACK;")
                raise
        if changed:
            self._notify(result.aggregate)
        return result

    def delete(self, auction_id: str) -> bool:
        with self._lock, closing(self._connect()) as conn:
            cursor = conn.execute("DELETE FROM Auctions WHERE id = ?;", (auction_id,))
            removed = cursor.rowcount > 0
        if removed:
            self._listeners.pop(auction_id, None)
        return removed

    def count_auctions(self) -> int:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM Auctions;").fetchone()
        return int(row["count"])

    def subscribe(self, auction_id: str, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener`` for new snapshots of ``auction_id``; returns an unsubscribe hook."""
        with self._lock:
            self._listeners.setdefault(auction_id, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(auction_id, [])
                if listener in listeners:
                    listeners.remove(listener)
                if not listeners:
                    self._listeners.pop(auction_id, None)

        return unsubscribe

    def _notify(self, aggregate: AuctionAggregate) -> None:
        with self._lock:
            listeners = list(self._listeners.get(aggregate.auction_id, []))
        for listener in listeners:
            try:
                listener(aggregate)
            except Exception:
                logger.exception(
                    "Snapshot listener failed | auction_id=%s",
                    aggregate.auction_id,
                )
