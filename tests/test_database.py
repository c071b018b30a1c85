from sqlalchemy import text
from sqlalchemy.pool import StaticPool

from database import build_engine, create_schema, session_factory
from models import Category


def test_in_memory_engine_shares_one_store_across_sessions() -> None:
    engine = create_schema(build_engine("sqlite:///:memory:"))
    assert isinstance(engine.pool, StaticPool)
    Session = session_factory(engine)

    with Session() as writer:
        writer.add(Category(id="c1", name="Fuel", cashback_percent=1.5))
        writer.commit()

    with Session() as reader:
        assert reader.get(Category, "c1").name == "Fuel"


def test_file_engine_uses_wal_and_busy_timeout(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'cashback.db'}")

    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"
        assert conn.execute(text("PRAGMA busy_timeout")).scalar() == 5000
