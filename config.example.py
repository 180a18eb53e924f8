# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "TODO_TIMER_APP_NAME": "App display name (default: todo-timer).",
    "TODO_TIMER_LOG_LEVEL": "Console logging level (default: INFO).",
    # Paths (gitignored)
    "TODO_TIMER_DATA_DIR": "Local data directory (default: .local/todo_timer).",
    "TODO_TIMER_DB_PATH": "SQLite store path (default: <data_dir>/todo_timer.sqlite3).",
    "TODO_TIMER_OWNER_FILE": "Persisted user name (default: <data_dir>/owner.txt).",
    "TODO_TIMER_BACKUP_DIR": "Where /export writes backups (default: <data_dir>/backups).",
    # Views / timer
    "TODO_TIMER_PAGE_SIZE": "Tasks per page in /list (default: 10).",
    "TODO_TIMER_TICK_INTERVAL": "Seconds between stopwatch display refreshes (default: 1.0).",
}
