"""
Runtime settings, read from environment variables.

A .env file in the working directory is loaded once at import time (existing
environment variables win). get_settings() re-reads os.environ on every call
so tests can override values with monkeypatch.setenv without reloading
modules.

    FOLIO_DB_PATH           SQLite database used for policies, configs, ingestions, events
    FOLIO_SERVICE_DB_PATH   database for the elevated (service) store; unset = no elevated store
    FOLIO_POLICY_CACHE_TTL  policy cache lifetime in seconds
    FOLIO_WEBHOOK_TIMEOUT   per-request timeout for webhook actions, in seconds
    FOLIO_REMOTE_SCHEME     destination prefix that routes a copy action to remote storage
    FOLIO_SLACK_TOKEN       bot token for notify actions that name a Slack channel
"""
import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    db_path: str = "folio.db"
    service_db_path: str | None = None
    policy_cache_ttl: float = 30.0
    webhook_timeout: float = 10.0
    remote_scheme: str = "gdrive://"
    slack_token: str | None = None


def get_settings() -> Settings:
    env = os.environ
    return Settings(
        db_path=env.get("FOLIO_DB_PATH", "folio.db"),
        service_db_path=env.get("FOLIO_SERVICE_DB_PATH") or None,
        policy_cache_ttl=float(env.get("FOLIO_POLICY_CACHE_TTL", "30")),
        webhook_timeout=float(env.get("FOLIO_WEBHOOK_TIMEOUT", "10")),
        remote_scheme=env.get("FOLIO_REMOTE_SCHEME", "gdrive://"),
        slack_token=env.get("FOLIO_SLACK_TOKEN") or None,
    )
