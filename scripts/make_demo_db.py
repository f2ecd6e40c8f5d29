"""
Create the demo SQLite database referenced by configs/sqlgrep.yaml.

users(id, name, email, status, created_at) and orders(id, user_id, total,
placed_at) with a foreign key, so the schema context carries a relationship.
"""

import sqlite3
import sys
from pathlib import Path

DEFAULT_PATH = Path(__file__).resolve().parents[1] / "data" / "demo.db"

USERS = [
    (1, "Alice", "alice@example.com", "active", "2024-01-03"),
    (2, "Bob", "bob@example.com", "suspended", "2024-02-11"),
    (3, "Carol", "carol@example.com", "active", "2024-03-27"),
    (4, "Dave", "dave@example.com", "active", "2024-05-09"),
]

ORDERS = [
    (10, 1, 9.5, "2024-06-01"),
    (11, 1, 120.0, "2024-06-15"),
    (12, 3, 42.25, "2024-07-02"),
    (13, 4, 15.0, "2024-07-20"),
    (14, 3, 7.75, "2024-08-05"),
]


def ensure_demo_db(path: Path) -> None:
    """Create demo SQLite DB if missing."""
    if path.exists():
        print(f"Demo DB already exists at {path}")
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE users (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT,
                status TEXT,
                created_at TEXT
            );
            CREATE TABLE orders (
                id INTEGER PRIMARY KEY,
                user_id INTEGER REFERENCES users(id),
                total REAL,
                placed_at TEXT
            );
            """
        )
        conn.executemany("INSERT INTO users VALUES (?, ?, ?, ?, ?);", USERS)
        conn.executemany("INSERT INTO orders VALUES (?, ?, ?, ?);", ORDERS)
        conn.commit()
    finally:
        conn.close()
    print(f"Created demo DB at {path}")


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_PATH
    ensure_demo_db(target)
