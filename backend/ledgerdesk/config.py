# backend/ledgerdesk/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///ledgerdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Matching policy. These are tuned per deployment, not in code.
    MATCH_AUTO_THRESHOLD = _env_float("MATCH_AUTO_THRESHOLD", 0.9)
    MATCH_SUGGEST_FLOOR = _env_float("MATCH_SUGGEST_FLOOR", 0.5)
    MATCH_AMOUNT_TOLERANCE = _env_float("MATCH_AMOUNT_TOLERANCE", 0.05)
    MATCH_WINDOW_HOURS = _env_float("MATCH_WINDOW_HOURS", 24)
    MATCH_AMBIGUITY_DELTA = _env_float("MATCH_AMBIGUITY_DELTA", 0.05)

    MATCH_WEIGHT_EXACT_AMOUNT = _env_float("MATCH_WEIGHT_EXACT_AMOUNT", 0.55)
    MATCH_WEIGHT_TOLERANT_AMOUNT = _env_float("MATCH_WEIGHT_TOLERANT_AMOUNT", 0.3)
    MATCH_WEIGHT_REFERENCE_EXACT = _env_float("MATCH_WEIGHT_REFERENCE_EXACT", 0.4)
    MATCH_WEIGHT_REFERENCE_PARTIAL = _env_float("MATCH_WEIGHT_REFERENCE_PARTIAL", 0.25)
    MATCH_WEIGHT_TEMPORAL = _env_float("MATCH_WEIGHT_TEMPORAL", 0.2)
    MATCH_UNIQUENESS_BONUS = _env_float("MATCH_UNIQUENESS_BONUS", 0.1)
    MATCH_AMBIGUITY_PENALTY = _env_float("MATCH_AMBIGUITY_PENALTY", 0.05)
