import os

import google.auth
import requests
from google.auth.exceptions import DefaultCredentialsError

_METADATA_PROJECT_URL = "http://metadata.google.internal/computeMetadata/v1/project/project-id"
_METADATA_HEADERS = {"Metadata-Flavor": "Google"}
_PROJECT_ENV_NAMES = ("GCP_PROJECT_ID", "GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT")


def _normalize_project_id(value):
    if not value:
        return None
    cleaned = value.strip().strip("'\"")
    return cleaned or None


def _seed_project_env(project_id):
    for env_name in _PROJECT_ENV_NAMES[:2]:
        if not os.getenv(env_name):
            os.environ[env_name] = project_id


def _project_id_from_metadata(timeout_seconds=0.2):
    # Only answers on Cloud Run / Compute Engine.
    try:
        response = requests.get(
            _METADATA_PROJECT_URL, headers=_METADATA_HEADERS, timeout=timeout_seconds
        )
    except requests.RequestException:
        return None
    if not response.ok:
        return None
    return _normalize_project_id(response.text)


def _project_id_from_adc():
    try:
        _, project = google.auth.default()
    except DefaultCredentialsError:
        return None
    return _normalize_project_id(project)


def resolve_gcp_project_id(set_env=True):
    """Project for the Vertex AI generation backend: env, then ADC, then metadata server."""
    for env_name in _PROJECT_ENV_NAMES:
        project = _normalize_project_id(os.getenv(env_name))
        if project:
            if set_env:
                _seed_project_env(project)
            return project

    project = _project_id_from_adc() or _project_id_from_metadata()
    if project and set_env:
        _seed_project_env(project)
    return project
