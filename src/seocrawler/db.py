from __future__ import annotations
import aiosqlite, asyncio, json, logging, sqlite3, time
from typing import Any, Dict, List, Optional

from .errors import PersistenceConflict
from .models import LinkResult, PageResult

logger = logging.getLogger(__name__)

# ------------------ schema ------------------

CRAWL_SCHEMA = """
CREATE TABLE IF NOT EXISTS crawl_runs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  start_time INTEGER NOT NULL,
  end_time INTEGER,
  seed_url TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  crawl_run_id INTEGER NOT NULL,
  url TEXT NOT NULL,
  status_code INTEGER,
  content_type TEXT,
  content_length INTEGER DEFAULT 0,
  title TEXT,
  meta_description TEXT,
  canonical TEXT,
  meta_robots TEXT,
  hreflang TEXT,
  extra_data TEXT,  -- JSON object of per-page facts
  size INTEGER DEFAULT 0,  -- same as content_length
  FOREIGN KEY (crawl_run_id) REFERENCES crawl_runs (id),
  UNIQUE(crawl_run_id, url)
);
CREATE INDEX IF NOT EXISTS idx_pages_crawl_run_id ON pages(crawl_run_id);

CREATE TABLE IF NOT EXISTS links (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  crawl_run_id INTEGER NOT NULL,
  from_page_id INTEGER NOT NULL,
  to_url TEXT NOT NULL,
  alt_text TEXT,  -- images only
  lazy_load TEXT,  -- images only
  link_kind TEXT NOT NULL CHECK (link_kind IN ('anchor','image')),
  link_scope TEXT NOT NULL CHECK (link_scope IN ('internal','external')),
  FOREIGN KEY (crawl_run_id) REFERENCES crawl_runs (id),
  FOREIGN KEY (from_page_id) REFERENCES pages (id),
  UNIQUE(crawl_run_id, from_page_id, to_url, link_kind)
);
CREATE INDEX IF NOT EXISTS idx_links_crawl_run_id ON links(crawl_run_id);
CREATE INDEX IF NOT EXISTS idx_links_from_page_id ON links(from_page_id);
"""

PAGE_UPSERT = """
INSERT INTO pages
  (crawl_run_id, url, status_code, content_type, content_length, title, meta_description,
   canonical, meta_robots, hreflang, extra_data, size)
VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
ON CONFLICT(crawl_run_id, url) DO UPDATE SET
  status_code=excluded.status_code,
  content_type=excluded.content_type,
  content_length=excluded.content_length,
  title=excluded.title,
  meta_description=excluded.meta_description,
  canonical=excluded.canonical,
  meta_robots=excluded.meta_robots,
  hreflang=excluded.hreflang,
  extra_data=excluded.extra_data,
  size=excluded.size
RETURNING id
"""

LINK_UPSERT = """
INSERT INTO links (crawl_run_id, from_page_id, to_url, alt_text, lazy_load, link_kind, link_scope)
VALUES (?,?,?,?,?,?,?)
ON CONFLICT(crawl_run_id, from_page_id, to_url, link_kind) DO UPDATE SET
  alt_text=excluded.alt_text,
  lazy_load=excluded.lazy_load,
  link_scope=excluded.link_scope
"""

# ------------------ store ------------------

class CrawlStore:
    """SQLite store for crawl runs, pages and links.

    Construct it explicitly and pass it to the crawler; the underlying
    connection is released by close() or by leaving `async with`.
    All writes go through one connection, one statement+commit at a time.
    """

    def __init__(self, db_path: str, id_lookup_retries: int = 3):
        self.db_path = db_path
        self.id_lookup_retries = id_lookup_retries
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "CrawlStore":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def open(self) -> None:
        if self._conn is not None:
            return
        conn = await aiosqlite.connect(self.db_path)
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.executescript(CRAWL_SCHEMA)
            await conn.commit()
        except Exception:
            await conn.close()
            raise
        self._conn = conn

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("CrawlStore is not open")
        return self._conn

    async def _write(self, sql: str, params: tuple) -> List[aiosqlite.Row]:
        conn = self.conn
        async with self._lock:
            try:
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()
                await cursor.close()
                await conn.commit()
                return list(rows)
            except Exception:
                await conn.rollback()
                raise

    # ------------------ crawl runs ------------------

    async def start_crawl(self, seed_url: str) -> int:
        rows = await self._write(
            "INSERT INTO crawl_runs (start_time, seed_url) VALUES (?, ?) RETURNING id",
            (int(time.time()), seed_url),
        )
        return rows[0]["id"]

    async def finalize_crawl(self, crawl_run_id: int) -> None:
        await self._write("UPDATE crawl_runs SET end_time = ? WHERE id = ?", (int(time.time()), crawl_run_id))

    # ------------------ pages ------------------

    async def upsert_page(self, crawl_run_id: int, page: PageResult) -> int:
        """Insert or update the page for (crawl_run_id, url) and return its id either way."""
        params = (
            crawl_run_id, page.url, page.status_code, page.content_type, page.content_length,
            page.title, page.meta_description, page.canonical, page.meta_robots, page.hreflang,
            json.dumps(page.extra_data, ensure_ascii=False), page.size,
        )
        try:
            rows = await self._write(PAGE_UPSERT, params)
        except sqlite3.IntegrityError as e:
            # Lost a race on the unique key: the row exists, fetch its id instead of inserting again
            logger.debug("Page upsert conflict for %s: %s", page.url, e)
            rows = []
        if rows:
            return rows[0]["id"]
        return await self._resolve_page_id(crawl_run_id, page.url)

    async def _resolve_page_id(self, crawl_run_id: int, url: str) -> int:
        for attempt in range(self.id_lookup_retries):
            page_id = await self.get_page_id(crawl_run_id, url)
            if page_id is not None:
                return page_id
            await asyncio.sleep(0.05 * (attempt + 1))
        raise PersistenceConflict(f"could not resolve page id for {url} in crawl {crawl_run_id}")

    async def get_page_id(self, crawl_run_id: int, url: str) -> Optional[int]:
        cursor = await self.conn.execute(
            "SELECT id FROM pages WHERE crawl_run_id = ? AND url = ?", (crawl_run_id, url)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row["id"] if row else None

    # ------------------ links ------------------

    async def upsert_link(self, crawl_run_id: int, from_page_id: int, link: LinkResult) -> bool:
        """Insert or update a link. Failures are logged and reported as False, never raised."""
        try:
            await self._write(
                LINK_UPSERT,
                (crawl_run_id, from_page_id, link.to_url, link.alt_text, link.lazy_load, link.kind, link.scope),
            )
            return True
        except sqlite3.Error as e:
            logger.error("Link save error %s (%s) from page %s: %s", link.to_url, link.kind, from_page_id, e)
            return False

    # ------------------ queries ------------------

    async def _fetch_all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        cursor = await self.conn.execute(sql, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return [dict(r) for r in rows]

    async def get_crawl_run(self, crawl_run_id: int) -> Optional[Dict[str, Any]]:
        rows = await self._fetch_all("SELECT * FROM crawl_runs WHERE id = ?", (crawl_run_id,))
        return rows[0] if rows else None

    async def list_crawl_runs(self) -> List[Dict[str, Any]]:
        return await self._fetch_all("SELECT * FROM crawl_runs ORDER BY id")

    async def list_pages(self, crawl_run_id: Optional[int] = None) -> List[Dict[str, Any]]:
        if crawl_run_id is None:
            rows = await self._fetch_all("SELECT * FROM pages ORDER BY id")
        else:
            rows = await self._fetch_all("SELECT * FROM pages WHERE crawl_run_id = ? ORDER BY id", (crawl_run_id,))
        for row in rows:
            row["extra_data"] = json.loads(row["extra_data"]) if row["extra_data"] else {}
        return rows

    async def list_links(self, crawl_run_id: Optional[int] = None) -> List[Dict[str, Any]]:
        if crawl_run_id is None:
            return await self._fetch_all("SELECT * FROM links ORDER BY id")
        return await self._fetch_all("SELECT * FROM links WHERE crawl_run_id = ? ORDER BY id", (crawl_run_id,))
