from scripts import startup_checks


def test_run_checks_returns_report_structure():
    report = startup_checks.run_checks(raise_on_error=False)
    assert isinstance(report, dict)
    assert "errors" in report and "warnings" in report
    assert isinstance(report["errors"], list)
    assert isinstance(report["warnings"], list)


def test_run_checks_flags_missing_gemini_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("VITE_GEMINI_API_KEY", "your_gemini_api_key_here")
    monkeypatch.setenv("GENERATION_BACKEND", "api_key")

    report = startup_checks.run_checks(raise_on_error=False)

    assert "Missing env var: GEMINI_API_KEY" in report["errors"]


def test_run_checks_rejects_unknown_backend(monkeypatch):
    monkeypatch.setenv("GENERATION_BACKEND", "openai")

    report = startup_checks.run_checks(raise_on_error=False)

    assert any("GENERATION_BACKEND" in err for err in report["errors"])
