import json
import sqlite3
from typing import Dict, Optional

import os

DB_NAME = os.getenv("DB_PATH", "trading_bot.db")

CONFIG_KEY = "tradingBotConfig"


def init_db():
    """Initialize the database with the settings key-value table."""
    conn = sqlite3.connect(DB_NAME)
    cursor = conn.cursor()
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')
    conn.commit()
    conn.close()


def set_setting(key: str, value: Dict):
    """Stores a JSON-serializable value under key, replacing any previous value."""
    conn = sqlite3.connect(DB_NAME)
    try:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
        ''', (key, json.dumps(value)))
        conn.commit()
    finally:
        conn.close()


def get_setting(key: str) -> Optional[Dict]:
    """Returns the stored value for key, or None if it was never set."""
    conn = sqlite3.connect(DB_NAME)
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM settings WHERE key = ?", (key,))
        row = cursor.fetchone()
    finally:
        conn.close()
    if row is None:
        return None
    return json.loads(row[0])


def save_config(config: Dict):
    set_setting(CONFIG_KEY, config)


def get_config() -> Optional[Dict]:
    """
    The stored bot configuration. When nothing has been saved yet, a record built
    from GEMINI_API_KEY is returned instead so the bot can run from .env alone.
    """
    try:
        config = get_setting(CONFIG_KEY)
    except sqlite3.OperationalError as e:
        # Table missing until init_db has run
        print(f"Error reading config: {e}")
        config = None
    if config is None and os.getenv("GEMINI_API_KEY"):
        config = {
            "geminiApiKey": os.getenv("GEMINI_API_KEY"),
            "mt5Server": "",
            "mt5Login": "",
            "mt5Password": "",
        }
    return config
