import os
import json
from dataclasses import dataclass
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from exceptions import DestinationError

ENV = os.getenv("ENV", "TEST").upper()

# Destination is resolved from the "destinations" env var (SAP BTP convention)
DESTINATION_NAME = "S4HCLOUD"
JOB_NAME = "salesreasonforrejection"
DEFAULT_FREQUENCY_MIN = 1

# ---------------- Paths (stable, absolute) ----------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Logging
LOG_DIR = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
LOG_FILE = os.getenv("LOG_FILE", "credit_block_job.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


@dataclass(frozen=True)
class Destination:
    name: str
    url: str
    username: Optional[str] = None
    password: Optional[str] = None
    sap_client: Optional[str] = None


@dataclass(frozen=True)
class JobConfig:
    env: str
    destination: Destination
    frequency_minutes: int = DEFAULT_FREQUENCY_MIN
    request_timeout: float = 60.0
    http_retries: int = 0
    library_log_level: str = "ERROR"


def parse_frequency(raw: Optional[str]) -> int:
    """JOB_FREQUENCY_MIN -> minutes. Anything unusable falls back to 1."""
    try:
        minutes = int(str(raw).strip())
    except (TypeError, ValueError):
        return DEFAULT_FREQUENCY_MIN
    return minutes if minutes >= 1 else DEFAULT_FREQUENCY_MIN


def parse_timeout(raw: Optional[str], default: float = 60.0) -> float:
    """HTTP_TIMEOUT_SECONDS -> seconds. Non-numeric or <= 0 falls back to default."""
    try:
        seconds = float(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return seconds if seconds > 0 else default


def parse_retries(raw: Optional[str], default: int = 0) -> int:
    """HTTP_RETRIES -> retry count. Non-numeric or negative falls back to default."""
    try:
        retries = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return retries if retries >= 0 else default


def resolve_destination(name: str, raw: Optional[str] = None) -> Destination:
    """
    Look up a destination by name in the "destinations" env var:
    [{"name": "S4HCLOUD", "url": "https://...", "username": "...", "password": "...", "sapClient": "100"}]
    """
    if raw is None:
        raw = os.getenv("destinations")
    if not raw:
        raise DestinationError(f"No destinations configured; expected '{name}' in env 'destinations'")

    try:
        entries = json.loads(raw)
    except ValueError as e:
        raise DestinationError(f"env 'destinations' is not valid JSON: {e}") from e

    if isinstance(entries, dict):
        entries = [entries]

    for entry in entries or []:
        if not isinstance(entry, dict) or entry.get("name") != name:
            continue
        url = (entry.get("url") or "").strip()
        if not url:
            raise DestinationError(f"Destination '{name}' has no url")
        return Destination(
            name=name,
            url=url.rstrip("/"),
            username=entry.get("username") or entry.get("User"),
            password=entry.get("password") or entry.get("Password"),
            sap_client=entry.get("sapClient") or entry.get("sap-client"),
        )

    raise DestinationError(f"Destination '{name}' not found in env 'destinations'")


def load_config() -> JobConfig:
    return JobConfig(
        env=ENV,
        destination=resolve_destination(DESTINATION_NAME),
        frequency_minutes=parse_frequency(os.getenv("JOB_FREQUENCY_MIN")),
        request_timeout=parse_timeout(os.getenv("HTTP_TIMEOUT_SECONDS")),
        http_retries=parse_retries(os.getenv("HTTP_RETRIES")),
        library_log_level=os.getenv("LIBRARY_LOG_LEVEL", "ERROR").upper(),
    )


# -------------- HTTP Session --------------
def build_session(config: JobConfig) -> requests.Session:
    dest = config.destination

    session = requests.Session()
    retries = Retry(
        total=config.http_retries,
        backoff_factor=2.0,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET", "HEAD", "POST"],
        raise_on_status=False,      # hand the last 5xx back so its body gets logged
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))

    session.headers.update({"Accept": "application/json"})
    if dest.username:
        session.auth = (dest.username, dest.password or "")
    if dest.sap_client:
        session.params = {"sap-client": dest.sap_client}
    return session
