from sqlalchemy import inspect, text

from database import build_engine, init_db


def test_sqlite_engine_enforces_foreign_keys_and_creates_tables() -> None:
    eng = build_engine("sqlite://")
    init_db(eng)

    with eng.connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
    assert {"expenses", "line_items", "categories", "monthly_budgets"} <= set(
        inspect(eng).get_table_names()
    )
