from salonbook.database import build_engine_options


def test_sqlite_options_use_busy_timeout_only():
    options = build_engine_options("sqlite:///./salonbook.db")

    assert set(options) == {"connect_args"}
    assert options["connect_args"]["check_same_thread"] is False
    assert options["connect_args"]["timeout"] > 0
    assert "isolation_level" not in options["connect_args"]


def test_postgres_options_set_statement_timeout():
    options = build_engine_options("postgresql://salon:secret@db/salonbook")

    assert options["pool_pre_ping"] is True
    assert options["connect_args"]["options"].startswith("-c statement_timeout=")
