import importlib.util
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "alembic" / "versions"


def _load_migration(name: str):
    spec = importlib.util.spec_from_file_location(name, MIGRATIONS_DIR / f"{name}.py")
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_documents_migration_creates_and_drops_table(tmp_path: Path) -> None:
    migration = _load_migration("20261017_0001_create_documents_table")
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'migrations.db'}")

    with engine.begin() as connection:
        with Operations.context(MigrationContext.configure(connection)):
            migration.upgrade()

    inspector = inspect(engine)
    columns = {column["name"] for column in inspector.get_columns("documents")}
    assert columns == {
        "id",
        "content",
        "title",
        "source",
        "type",
        "metadata_json",
        "embedding",
        "embedding_dim",
        "created_at",
    }

    with engine.begin() as connection:
        with Operations.context(MigrationContext.configure(connection)):
            migration.downgrade()

    assert "documents" not in inspect(engine).get_table_names()
    engine.dispose()
