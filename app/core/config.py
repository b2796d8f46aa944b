from __future__ import annotations

import os


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///cemetery.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Seconds a request waits for a plot lock before giving up with 409.
    PLOT_LOCK_TIMEOUT = float(os.getenv("PLOT_LOCK_TIMEOUT", "5"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
