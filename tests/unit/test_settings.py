from sqlcheck.common.settings import Settings


def test_defaults(monkeypatch):
    for name in ("SQLCHECK_DEFAULT_TIMEOUT_MS", "SQLCHECK_DEFAULT_MAX_ROWS", "SQLCHECK_MAX_SQL_LENGTH"):
        monkeypatch.delenv(name, raising=False)

    s = Settings()

    assert s.default_timeout_ms == 30000
    assert s.default_max_rows == 1000
    assert s.max_sql_length == 10000


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SQLCHECK_DEFAULT_MAX_ROWS", "50")
    monkeypatch.setenv("SQLCHECK_BREAKER_FAIL_MAX", "2")

    s = Settings()

    assert s.default_max_rows == 50
    assert s.breaker_fail_max == 2
