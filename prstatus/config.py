"""Exporter configuration loaded from environment variables."""
import os
from typing import Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, field_validator

DEFAULT_STATUS_TAXONOMY: Tuple[str, ...] = (
    "Pending",
    "Started",
    "Running",
    "Cancelled",
    "Succeeded",
    "Completed",
    "Failed",
    "PipelineRunTimeout",
    "CreateRunFailed",
    "Unknown",
)

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"


class Settings(BaseModel):
    mode: Literal["reactive", "pull"] = "reactive"
    reconcile_interval: float = 30.0
    cache_max_age: float = 0.0
    source_timeout: float = 10.0
    backoff_initial: float = 1.0
    backoff_max: float = 60.0
    status_taxonomy: Tuple[str, ...] = DEFAULT_STATUS_TAXONOMY
    platform_param: str = "build-platforms"
    # Unset: in-cluster service account, then kubeconfig.
    kube_api_url: Optional[str] = None
    kube_token_path: str = f"{SERVICE_ACCOUNT_DIR}/token"
    kube_ca_path: str = f"{SERVICE_ACCOUNT_DIR}/ca.crt"
    kubeconfig: Optional[str] = None
    kube_context: Optional[str] = None
    log_level: str = "INFO"
    port: int = 9090

    @field_validator("status_taxonomy", mode="before")
    @classmethod
    def _split_taxonomy(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        # Order kept, blanks and duplicates dropped.
        return tuple(dict.fromkeys(item.strip() for item in value if item and item.strip()))

    @field_validator("status_taxonomy")
    @classmethod
    def _require_taxonomy(cls, value):
        if not value:
            raise ValueError("status taxonomy must name at least one status")
        return value

    @field_validator("source_timeout", "backoff_initial", "backoff_max")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("cache_max_age")
    @classmethod
    def _not_negative(cls, value):
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value):
        return value.upper()



def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment; unset variables keep their defaults.

    Raises:
        pydantic.ValidationError: If a variable has an invalid value
    """
    environ = os.environ if environ is None else environ
    mapping = {
        "mode": "PRSTATUS_MODE",
        "reconcile_interval": "PRSTATUS_RECONCILE_INTERVAL",
        "cache_max_age": "PRSTATUS_CACHE_MAX_AGE",
        "source_timeout": "PRSTATUS_SOURCE_TIMEOUT",
        "backoff_initial": "PRSTATUS_BACKOFF_INITIAL",
        "backoff_max": "PRSTATUS_BACKOFF_MAX",
        "status_taxonomy": "PRSTATUS_STATUS_TAXONOMY",
        "platform_param": "PRSTATUS_PLATFORM_PARAM",
        "kube_api_url": "KUBE_API_URL",
        "kube_token_path": "KUBE_TOKEN_PATH",
        "kube_ca_path": "KUBE_CA_PATH",
        "kubeconfig": "KUBECONFIG",
        "kube_context": "KUBE_CONTEXT",
        "log_level": "LOG_LEVEL",
        "port": "PRSTATUS_PORT",
    }
    values = {field: environ[var] for field, var in mapping.items() if environ.get(var)}
    return Settings(**values)
