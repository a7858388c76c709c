"""Script de création des tables et des fonctions de quota sur Supabase.

Le DDL des tables est compilé depuis les métadonnées SQLAlchemy de
``videoai_studio.schema`` afin que la couche REST et la base restent
alignées. Les fonctions RPC utilisées par le contrôle de quota sont écrites
en SQL. La variable d'environnement `SUPABASE_DB_URL` doit contenir la
chaîne de connexion (rôle service).

Utilisation ::

    export SUPABASE_DB_URL="postgresql://..."
    python scripts/create_supabase_tables.py
"""

from __future__ import annotations

import os

import psycopg2
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateIndex, CreateTable

from videoai_studio.schema import Base

CHECK_USER_QUOTA = """
create or replace function check_user_quota(p_user_id uuid)
returns table (
    has_quota boolean,
    videos_generated integer,
    videos_quota integer,
    plan_name text,
    reason text
)
language plpgsql security definer as $$
declare
    sub subscriptions%rowtype;
begin
    select * into sub from subscriptions s
    where s.user_id = p_user_id and s.status = 'active';

    if not found then
        return query select false, 0, 0, 'none'::text, 'No active subscription'::text;
        return;
    end if;

    if sub.videos_generated >= sub.videos_quota then
        return query select false, sub.videos_generated, sub.videos_quota,
            sub.plan_name::text, 'Monthly quota exceeded'::text;
        return;
    end if;

    return query select true, sub.videos_generated, sub.videos_quota,
        sub.plan_name::text, null::text;
end;
$$;
"""

INCREMENT_VIDEO_COUNT = """
create or replace function increment_video_count(p_user_id uuid)
returns table (success boolean, new_count integer, quota integer)
language plpgsql security definer as $$
begin
    return query
    update subscriptions s
    set videos_generated = s.videos_generated + 1
    where s.user_id = p_user_id and s.status = 'active'
    returning true, s.videos_generated, s.videos_quota;

    if not found then
        return query select false, 0, 0;
    end if;
end;
$$;
"""

GET_USER_SUBSCRIPTION = """
create or replace function get_user_subscription(p_user_id uuid)
returns table (
    plan_name text,
    plan_display_name text,
    status text,
    videos_generated integer,
    videos_quota integer,
    current_period_end timestamp with time zone,
    cancel_at_period_end boolean
)
language sql security definer as $$
    select s.plan_name::text, s.plan_display_name::text, s.status::text,
        s.videos_generated, s.videos_quota, s.current_period_end,
        s.cancel_at_period_end
    from subscriptions s
    where s.user_id = p_user_id;
$$;
"""

FUNCTIONS = (CHECK_USER_QUOTA, INCREMENT_VIDEO_COUNT, GET_USER_SUBSCRIPTION)


def build_statements() -> list[str]:
    """Retourne toutes les instructions DDL dans l'ordre d'exécution."""

    dialect = postgresql.dialect()
    statements = []
    for table in Base.metadata.sorted_tables:
        statements.append(str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)))
        for index in table.indexes:
            statements.append(str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect)))
    statements.extend(FUNCTIONS)
    return statements


def main() -> None:
    db_url = os.getenv("SUPABASE_DB_URL")
    if not db_url:
        raise RuntimeError("SUPABASE_DB_URL non définie")
    conn = psycopg2.connect(db_url)
    try:
        with conn, conn.cursor() as cur:
            for statement in build_statements():
                cur.execute(statement)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
