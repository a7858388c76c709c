import create_supabase_tables
from videoai_studio.schema import PROJECT_FULL_COLUMNS, PROJECT_METADATA_COLUMNS, Base, VideoProject


def test_metadata_columns_exclude_documents():
    assert "script" not in PROJECT_METADATA_COLUMNS
    assert "media" not in PROJECT_METADATA_COLUMNS
    assert set(PROJECT_FULL_COLUMNS) == {column.name for column in VideoProject.__table__.columns}


def test_ddl_uses_jsonb_and_installs_quota_functions():
    statements = create_supabase_tables.build_statements()
    ddl = "\n".join(statements)

    assert "CREATE TABLE IF NOT EXISTS video_projects" in ddl
    assert "CREATE TABLE IF NOT EXISTS subscriptions" in ddl
    assert "script JSONB" in ddl
    assert "media JSONB DEFAULT" in ddl
    for name in ("check_user_quota", "increment_video_count", "get_user_subscription"):
        assert f"create or replace function {name}(p_user_id uuid)" in ddl
    assert len(Base.metadata.sorted_tables) == 2
