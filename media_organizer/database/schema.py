"""
Journal schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1


def init_schema(conn: sqlite3.Connection):
    """
    Applies the journal schema to the database.
    Idempotent: safe to run on every startup.
    """
    # 1. Version Tracking (For future migrations)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        );
    """)

    cur = conn.cursor()
    cur.execute("SELECT version FROM schema_version")
    if not cur.fetchone():
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

    # 2. One row per discovered file (or pre-indexed destination file)
    conn.execute("""
    CREATE TABLE IF NOT EXISTS files (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        source_path      TEXT NOT NULL UNIQUE,
        file_size        INTEGER NOT NULL,
        media_type       TEXT NOT NULL,
        extension        TEXT NOT NULL,
        creation_time    TEXT NOT NULL,
        larger_dimension INTEGER NOT NULL DEFAULT 0,
        original_name    TEXT NOT NULL,
        timestamp_key    TEXT NOT NULL,          -- creation time + type + extension
        hash             TEXT NOT NULL DEFAULT '',  -- XXH64, empty until computed
        dest_path        TEXT NOT NULL DEFAULT '',
        sequence_num     INTEGER NOT NULL DEFAULT 0,
        is_duplicate     INTEGER NOT NULL DEFAULT 0,
        status           TEXT NOT NULL DEFAULT 'pending',
        error_message    TEXT NOT NULL DEFAULT '',
        created_at       TEXT NOT NULL,
        updated_at       TEXT NOT NULL
    );
    """)

    # 3. Indices for the dedup / resume queries
    conn.execute("CREATE INDEX IF NOT EXISTS idx_files_status ON files(status);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_files_file_size ON files(file_size);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_files_hash ON files(hash) WHERE hash != '';")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_files_timestamp_key ON files(timestamp_key);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_files_dest_path ON files(dest_path) WHERE dest_path != '';")

    logging.debug("Journal schema initialized.")
