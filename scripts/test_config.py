import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from prstatus.config import DEFAULT_STATUS_TAXONOMY, load_settings  # noqa: E402


def test_defaults():
    settings = load_settings({})
    assert settings.mode == "reactive"
    assert settings.status_taxonomy == DEFAULT_STATUS_TAXONOMY
    assert settings.cache_max_age == 0
    assert settings.kube_api_url is None
    assert settings.kubeconfig is None


def test_environment_overrides():
    settings = load_settings({
        "PRSTATUS_MODE": "pull",
        "PRSTATUS_CACHE_MAX_AGE": "15",
        "PRSTATUS_STATUS_TAXONOMY": "Pending, Running,,Running,Failed",
        "KUBECONFIG": "/home/dev/.kube/lab",
        "KUBE_CONTEXT": "lab",
        "LOG_LEVEL": "debug",
    })
    assert settings.mode == "pull"
    assert settings.cache_max_age == 15.0
    assert settings.status_taxonomy == ("Pending", "Running", "Failed")
    assert settings.kubeconfig == "/home/dev/.kube/lab"
    assert settings.kube_context == "lab"
    assert settings.log_level == "DEBUG"


def test_explicit_api_url():
    settings = load_settings({"KUBE_API_URL": "https://api.example:6443", "KUBERNETES_SERVICE_HOST": "10.0.0.1"})
    assert settings.kube_api_url == "https://api.example:6443"


@pytest.mark.parametrize("environ", [
    {"PRSTATUS_MODE": "push"},
    {"PRSTATUS_CACHE_MAX_AGE": "-1"},
    {"PRSTATUS_SOURCE_TIMEOUT": "0"},
    {"PRSTATUS_STATUS_TAXONOMY": " , "},
])
def test_invalid_values_are_rejected(environ):
    with pytest.raises(ValidationError):
        load_settings(environ)
