"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path

from interceptor.core.exceptions import ConfigError


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            print(f"[settings] ✓ Loaded {env_var} from environment (fallback)")
            return secret_value

    return None


def _get_int(var_name: str, default: int, minimum: int = 0) -> int:
    """Read an integer environment variable with a lower bound."""
    raw = os.environ.get(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(f"Environment variable {var_name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"Environment variable {var_name} must be >= {minimum}, got {value}")
    return value


@dataclass
class AppConfig:
    """Process-wide configuration container."""
    # Application records (per-endpoint connection parameters and schemas)
    applications_file: str = "config/applications.yaml"

    # Receive loop policy
    retry_interval_minutes: int = 5
    error_pause_ms: int = 500

    # Header identification fields
    data_center_id: str = "1"
    app_id: str = "PE"
    workstation_id: str = "01"

    # Downstream provisioning API
    event_sink_url: str = ""
    event_sink_token: str = ""

    # Audit
    audit_log_dir: str = ".runtime/audit"
    audit_log_signing_key: str = ""

    # Status API
    health_host: str = "0.0.0.0"
    health_port: int = 8081

    log_level: str = "INFO"

    @property
    def retry_interval_seconds(self) -> float:
        return self.retry_interval_minutes * 60.0

    @property
    def error_pause_seconds(self) -> float:
        return self.error_pause_ms / 1000.0

    @property
    def event_sink_enabled(self) -> bool:
        return bool(self.event_sink_url)


def load_settings() -> AppConfig:
    """Load interceptor settings from environment and /run/secrets."""
    applications_file = os.environ.get("SM_APPLICATIONS_FILE", "config/applications.yaml")

    retry_interval_minutes = _get_int("SM_RETRY_INTERVAL_MINUTES", 5, minimum=1)
    error_pause_ms = _get_int("SM_ERROR_PAUSE_MS", 500)

    data_center_id = os.environ.get("SM_DATA_CENTER_ID", "1")
    app_id = os.environ.get("SM_APP_ID", "PE")
    workstation_id = os.environ.get("SM_WORKSTATION_ID", "01")

    event_sink_url = os.environ.get("EVENT_SINK_URL", "").strip().rstrip("/")
    event_sink_token = _load_secret_from_file("event_sink_token", "EVENT_SINK_TOKEN") or ""
    if event_sink_url and not event_sink_token:
        print("[settings] ⚠️ EVENT_SINK_URL set without EVENT_SINK_TOKEN; requests will be unauthenticated")

    audit_log_dir = os.environ.get("AUDIT_LOG_DIR", ".runtime/audit")
    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key

    health_host = os.environ.get("HEALTH_HOST", "0.0.0.0")
    health_port = _get_int("HEALTH_PORT", 8081)

    log_level = os.environ.get("LOG_LEVEL", "INFO").strip().upper()

    sink_label = event_sink_url or "disabled"
    print(f"[settings] applications={applications_file}; retry={retry_interval_minutes}m; sink={sink_label}")

    return AppConfig(
        applications_file=applications_file,
        retry_interval_minutes=retry_interval_minutes,
        error_pause_ms=error_pause_ms,
        data_center_id=data_center_id,
        app_id=app_id,
        workstation_id=workstation_id,
        event_sink_url=event_sink_url,
        event_sink_token=event_sink_token,
        audit_log_dir=audit_log_dir,
        audit_log_signing_key=audit_log_signing_key,
        health_host=health_host,
        health_port=health_port,
        log_level=log_level,
    )
