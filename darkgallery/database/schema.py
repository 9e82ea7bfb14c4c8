"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        # Initialize version if missing
        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Core Item Table
        # Location is relative to the gallery root; lost items keep everything.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS items (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            type                TEXT NOT NULL,        -- IMG / VID
            hash                TEXT NOT NULL,        -- SHA-1, 40 hex chars
            directory           TEXT NOT NULL,
            filename            TEXT NOT NULL,
            lost                INTEGER NOT NULL DEFAULT 0,
            size                INTEGER NOT NULL,
            mtime               REAL NOT NULL,
            time                TEXT NOT NULL,
            time_mode           TEXT NOT NULL,        -- METAD / MTIME
            width               INTEGER NOT NULL,
            height              INTEGER NOT NULL,
            duration            INTEGER,              -- Microseconds, NULL for images
            thumbnail_base64    TEXT,
            thumbnail_path      TEXT,
            preview_video_path  TEXT,
            title               TEXT,
            rating              INTEGER NOT NULL DEFAULT 0,
            memo                TEXT,
            created_at          TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at          TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );
        """)

        # A path belongs to at most one live item; lost items may share history.
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_items_live_path
            ON items(directory, filename) WHERE lost = 0;
        """)

        # 3. User Data (Tags). Never written by the indexer.
        conn.execute("""
        CREATE TABLE IF NOT EXISTS tag_groups (
            id      INTEGER PRIMARY KEY AUTOINCREMENT,
            name    TEXT NOT NULL,
            memo    TEXT,
            color   TEXT,
            icon    TEXT
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS tags (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            name          TEXT NOT NULL,
            memo          TEXT,
            icon          TEXT,
            tag_group_id  INTEGER,
            FOREIGN KEY(tag_group_id) REFERENCES tag_groups(id) ON DELETE SET NULL
        );
        """)

        conn.execute("""
        CREATE TABLE IF NOT EXISTS item_tags (
            item_id  INTEGER NOT NULL,
            tag_id   INTEGER NOT NULL,
            PRIMARY KEY (item_id, tag_id),
            FOREIGN KEY(item_id) REFERENCES items(id) ON DELETE CASCADE,
            FOREIGN KEY(tag_id) REFERENCES tags(id) ON DELETE CASCADE
        );
        """)

        # 4. Gallery Settings (key -> JSON text)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS configs (
            key    TEXT PRIMARY KEY,
            value  TEXT NOT NULL
        );
        """)

        # 5. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_items_hash ON items(hash);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_items_lost ON items(lost);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_items_directory ON items(directory);")

    logging.debug("Database schema initialized.")
