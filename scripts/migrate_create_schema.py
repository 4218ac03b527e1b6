#!/usr/bin/env python3
"""
Create the PostgreSQL schema for the grant application assistant.

Every statement is CREATE ... IF NOT EXISTS, so the script can be re-run.

Usage:
    python3 scripts/migrate_create_schema.py [--database-url postgresql://...]
"""

import os
import argparse

import psycopg2
from dotenv import load_dotenv


SCHEMA = [
    'CREATE EXTENSION IF NOT EXISTS "pgcrypto"',
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name        TEXT NOT NULL,
        type        TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS foas (
        id                        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        agency                    TEXT,
        title                     TEXT,
        foa_code                  TEXT UNIQUE,
        grant_type                JSONB,
        description               TEXT,
        deadline                  TEXT,
        num_awards                INTEGER,
        award_ceiling             NUMERIC,
        award_floor               NUMERIC,
        letters_of_intent         BOOLEAN DEFAULT FALSE,
        preliminary_proposal      BOOLEAN DEFAULT FALSE,
        animal_trials             BOOLEAN DEFAULT FALSE,
        human_trials              BOOLEAN DEFAULT FALSE,
        organization_eligibility  JSONB,
        user_eligibility          JSONB,
        grant_url                 TEXT UNIQUE,
        published_date            DATE,
        pinecone_ids              TEXT[],
        created_at                TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS research_projects (
        id                        UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name                      TEXT,
        user_id                   TEXT,
        organization_id           UUID REFERENCES organizations(id),
        foa                       UUID REFERENCES foas(id) ON DELETE SET NULL,
        application_factors       JSONB,
        application_requirements  JSONB,
        attachments               JSONB DEFAULT '{}'::jsonb,
        created_at                TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name              TEXT NOT NULL,
        prompt            TEXT,
        page_limit        INTEGER,
        agency            TEXT,
        grant_types       JSONB,
        custom_processor  TEXT,
        project_id        UUID REFERENCES research_projects(id) ON DELETE CASCADE,
        sources           JSONB,
        optional          BOOLEAN DEFAULT FALSE,
        created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS document_fields (
        id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        document_id  UUID REFERENCES documents(id) ON DELETE CASCADE,
        label        TEXT,
        answer       TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS completed_documents (
        id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        document_id  UUID REFERENCES documents(id) ON DELETE CASCADE,
        project_id   UUID REFERENCES research_projects(id) ON DELETE CASCADE,
        content      TEXT,
        file_url     TEXT,
        file_type    TEXT,
        file_path    TEXT,
        created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (document_id, project_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chalk_talks (
        id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        project_id            UUID REFERENCES research_projects(id) ON DELETE CASCADE,
        media_path            TEXT,
        transcription         TEXT,
        transcription_status  TEXT DEFAULT 'pending',
        transcription_error   TEXT,
        vectorization_status  TEXT DEFAULT 'pending',
        pinecone_ids          TEXT[],
        created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS research_descriptions (
        id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        project_id            UUID REFERENCES research_projects(id) ON DELETE CASCADE,
        file_path             TEXT,
        file_name             TEXT,
        file_type             TEXT,
        vectorization_status  TEXT DEFAULT 'pending',
        vectorization_error   TEXT,
        last_vectorized_at    TIMESTAMPTZ,
        pinecone_ids          TEXT[]
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scientific_figures (
        id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        project_id            UUID REFERENCES research_projects(id) ON DELETE CASCADE,
        image_path            TEXT,
        caption               TEXT,
        ai_description        TEXT,
        vectorization_status  TEXT DEFAULT 'pending',
        pinecone_id           TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS researcher_profiles (
        id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        project_id            UUID REFERENCES research_projects(id) ON DELETE CASCADE,
        name                  TEXT,
        title                 TEXT,
        institution           TEXT,
        bio                   TEXT,
        vectorization_status  TEXT DEFAULT 'pending',
        last_vectorized_at    TIMESTAMPTZ,
        pinecone_id           TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS processing_queue (
        id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        project_id     UUID,
        content_type   TEXT NOT NULL,
        content_id     UUID NOT NULL,
        status         TEXT NOT NULL DEFAULT 'pending',
        priority       INTEGER DEFAULT 0,
        retry_count    INTEGER DEFAULT 0,
        error_message  TEXT,
        created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        processed_at   TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS project_sources (
        id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        project_id   UUID REFERENCES research_projects(id) ON DELETE CASCADE,
        url          TEXT,
        reason       TEXT,
        description  TEXT,
        citation     TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attachments (
        id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name         TEXT NOT NULL,
        file_url     TEXT NOT NULL,
        file_type    TEXT,
        project_id   UUID REFERENCES research_projects(id) ON DELETE CASCADE,
        description  TEXT,
        user_id      TEXT,
        created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recommended_equipment (
        id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        project_id  UUID UNIQUE REFERENCES research_projects(id) ON DELETE CASCADE,
        equipment   JSONB,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    # Queue polling
    """
    CREATE INDEX IF NOT EXISTS idx_processing_queue_status
    ON processing_queue (status, priority DESC, created_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_organizations_name
    ON organizations (lower(name))
    """,
]


def migrate(database_url: str) -> None:
    """
    Create all tables and indexes.
    """
    print("Running schema migration")

    conn = psycopg2.connect(database_url)
    try:
        with conn.cursor() as cur:
            for statement in SCHEMA:
                cur.execute(statement)
        conn.commit()
    finally:
        conn.close()

    print(f"✅ Migration complete: {len(SCHEMA)} statements applied")


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Create grant assistant tables in PostgreSQL"
    )
    parser.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL"),
        help="PostgreSQL connection string (defaults to DATABASE_URL)"
    )

    args = parser.parse_args()
    if not args.database_url:
        raise SystemExit("❌ DATABASE_URL is not set")
    migrate(args.database_url)


if __name__ == "__main__":
    main()
