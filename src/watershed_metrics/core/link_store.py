"""
SQLite-backed durable table of site to COMID links.

The resolver writes each batch here as soon as it finishes, so an interrupted
run keeps everything resolved before the in-flight batch. Rows are keyed by
site id and overwritten on re-resolution.
"""

import sqlite3
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path

from watershed_metrics.core.models import CatchmentLink, LinkStatus

# SQLite caps bound parameters per statement; stay well below it
_QUERY_CHUNK = 500


class LinkStore:
    """SQLite table of CatchmentLinks keyed by site id."""

    def __init__(self, db_path: Path) -> None:
        """
        Open (and create if needed) the link table.

        Args:
            db_path: Path to the SQLite database file
        """
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS catchment_links (
                    site_id TEXT PRIMARY KEY,
                    longitude REAL NOT NULL,
                    latitude REAL NOT NULL,
                    comid TEXT,
                    status TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    @staticmethod
    def _row_to_link(row: tuple) -> CatchmentLink:
        site_id, longitude, latitude, comid, status = row
        return CatchmentLink(
            site_id=site_id,
            comid=comid,
            status=LinkStatus(status),
            longitude=longitude,
            latitude=latitude,
        )

    def get_many(self, site_ids: Sequence[str]) -> dict[str, CatchmentLink]:
        """
        Fetch stored links for the given site ids.

        Returns:
            Mapping of site id to link, for the ids that have a stored row
        """
        links: dict[str, CatchmentLink] = {}
        ids = list(site_ids)

        with sqlite3.connect(self.db_path) as conn:
            for start in range(0, len(ids), _QUERY_CHUNK):
                chunk = ids[start : start + _QUERY_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                cursor = conn.execute(
                    f"SELECT site_id, longitude, latitude, comid, status FROM catchment_links "
                    f"WHERE site_id IN ({placeholders})",
                    chunk,
                )
                for row in cursor.fetchall():
                    links[row[0]] = self._row_to_link(row)

        return links

    def put_many(self, links: Iterable[CatchmentLink]) -> int:
        """
        Insert or replace links in a single transaction.

        Returns:
            Number of rows written
        """
        updated_at = datetime.now(UTC).isoformat()
        rows = [
            (link.site_id, link.longitude, link.latitude, link.comid, link.status.value, updated_at)
            for link in links
        ]

        with sqlite3.connect(self.db_path) as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO catchment_links
                (site_id, longitude, latitude, comid, status, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()

        return len(rows)

    def all(self) -> list[CatchmentLink]:
        """Every stored link, ordered by site id."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT site_id, longitude, latitude, comid, status FROM catchment_links ORDER BY site_id"
            )
            return [self._row_to_link(row) for row in cursor.fetchall()]

    def delete(self, site_ids: Sequence[str]) -> int:
        """
        Delete stored links for the given site ids.

        Returns:
            Number of rows deleted
        """
        ids = list(site_ids)
        deleted = 0

        with sqlite3.connect(self.db_path) as conn:
            for start in range(0, len(ids), _QUERY_CHUNK):
                chunk = ids[start : start + _QUERY_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                cursor = conn.execute(f"DELETE FROM catchment_links WHERE site_id IN ({placeholders})", chunk)
                deleted += cursor.rowcount
            conn.commit()

        return deleted

    def stats(self) -> dict:
        """
        Get link table statistics.

        Returns:
            Dictionary with total, resolved and unresolved counts
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("SELECT status, COUNT(*) FROM catchment_links GROUP BY status")
            counts = dict(cursor.fetchall())

        resolved = counts.get(LinkStatus.RESOLVED.value, 0)
        unresolved = counts.get(LinkStatus.UNRESOLVED.value, 0)
        return {"total": resolved + unresolved, "resolved": resolved, "unresolved": unresolved}
