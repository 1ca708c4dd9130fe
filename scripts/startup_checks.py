#!/usr/bin/env python3
"""Startup checks for environment and dependencies.

Reports missing env vars for the selected generation backend, Gmail OAuth
and bearer-token verification, plus missing Python packages.

Raises SystemExit when run with `raise_on_error=True` and something is missing.
"""
import importlib
import os
import sys

from dotenv import load_dotenv

load_dotenv()

SUPPORTED_BACKENDS = {"api_key", "vertex"}

REQUIRED_MODULES = [
    ("fastapi", "fastapi"),
    ("sqlalchemy", "sqlalchemy"),
    ("requests", "requests"),
    ("jose", "python-jose"),
    ("googleapiclient", "google-api-python-client"),
    ("google.oauth2", "google-auth"),
    ("vertexai", "google-cloud-aiplatform"),
]


def _module_available(name: str) -> bool:
    try:
        importlib.import_module(name)
        return True
    except ImportError:
        return False


def _env(name):
    value = os.getenv(name)
    if not value:
        return None
    return value.strip().strip("'\"") or None


def run_checks(raise_on_error: bool = True):
    errors = []
    warnings = []

    backend = (_env("GENERATION_BACKEND") or "api_key").lower()
    if backend not in SUPPORTED_BACKENDS:
        errors.append(
            f"GENERATION_BACKEND must be one of {sorted(SUPPORTED_BACKENDS)} (found: {backend!r})"
        )
    elif backend == "api_key":
        key = _env("GEMINI_API_KEY") or _env("VITE_GEMINI_API_KEY")
        if not key or key == "your_gemini_api_key_here":
            errors.append("Missing env var: GEMINI_API_KEY")
    elif not (_env("GCP_PROJECT_ID") or _env("GOOGLE_CLOUD_PROJECT")):
        warnings.append("GCP_PROJECT_ID not set; Vertex backend will try to auto-detect the project")

    for name in ("SUPABASE_JWT_SECRET",):
        if not _env(name):
            errors.append(f"Missing env var: {name}")

    for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "GOOGLE_REDIRECT_URI"):
        if not _env(name):
            warnings.append(f"Missing env var: {name} (Gmail import disabled)")

    database_url = _env("DATABASE_URL")
    if not database_url:
        warnings.append("DATABASE_URL not set; using local sqlite:///tracker.db")

    for mod, pkg in REQUIRED_MODULES:
        if not _module_available(mod):
            errors.append(f"Missing Python module: {mod} (install package: {pkg})")

    report = {"errors": errors, "warnings": warnings}
    if errors and raise_on_error:
        msg = "Startup checks failed:\n" + "\n".join(errors + warnings)
        raise SystemExit(msg)
    return report


def main():
    report = run_checks(raise_on_error=False)
    print("STARTUP CHECKS:")
    print("Errors:", report.get("errors"))
    print("Warnings:", report.get("warnings"))
    if report.get("errors"):
        missing_pkgs = []
        for err in report.get("errors", []):
            if "install package:" in err:
                missing_pkgs.append(err.split("install package:")[-1].strip().rstrip(")"))

        if missing_pkgs:
            print("\nSuggested fix:")
            print("pip install " + " ".join(sorted(set(missing_pkgs))))

        sys.exit(2)


if __name__ == "__main__":
    main()
