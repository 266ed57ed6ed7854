"""SQLite store builders shared by the composer and scanner tests."""
import json
import sqlite3
from pathlib import Path


def make_global_store(path: Path, bubbles: dict[str, list[dict]], raw_rows: list[tuple[str, object]] = ()) -> None:
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE IF NOT EXISTS cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    for composer_id, payloads in bubbles.items():
        for idx, payload in enumerate(payloads):
            bubble_id = payload.get("bubbleId", f"b{idx}")
            conn.execute(
                "INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)",
                (f"bubbleId:{composer_id}:{bubble_id}", json.dumps(payload)),
            )
    for key, value in raw_rows:
        conn.execute("INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)", (key, value))
    conn.commit()
    conn.close()


def make_workspace_store(path: Path, composers: list[dict], table: str = "ItemTable") -> None:
    conn = sqlite3.connect(path)
    conn.execute(f"CREATE TABLE IF NOT EXISTS {table} (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute(
        f"INSERT INTO {table} (key, value) VALUES (?, ?)",
        ("composer.composerData", json.dumps({"allComposers": composers})),
    )
    conn.commit()
    conn.close()
