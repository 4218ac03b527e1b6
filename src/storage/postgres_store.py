"""
PostgreSQL adapter for application data.

All tables share a small set of generic operations (get/select/insert/
update/delete/upsert). Table names are checked against TABLES and all
identifiers are composed with psycopg2.sql, so callers never build SQL.
"""

import os
import logging
from typing import List, Dict, Any, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import sql
from psycopg2.errors import UniqueViolation
from psycopg2.extras import RealDictCursor, Json
from psycopg2.pool import SimpleConnectionPool

logger = logging.getLogger(__name__)


TABLES = {
    "research_projects",
    "foas",
    "documents",
    "document_fields",
    "completed_documents",
    "chalk_talks",
    "research_descriptions",
    "scientific_figures",
    "researcher_profiles",
    "processing_queue",
    "project_sources",
    "organizations",
    "attachments",
    "recommended_equipment",
}


# jsonb columns; lists in any other column are Postgres arrays (pinecone_ids)
JSON_COLUMNS = {
    "application_factors",
    "application_requirements",
    "attachments",
    "grant_type",
    "grant_types",
    "organization_eligibility",
    "user_eligibility",
    "sources",
    "equipment",
}


class DuplicateRecordError(Exception):
    """Raised when an insert violates a unique constraint."""


def _adapt(value: Any, column: Optional[str] = None) -> Any:
    """Wrap values destined for jsonb columns."""
    if isinstance(value, dict) or (column in JSON_COLUMNS and value is not None):
        return Json(value)
    return value


class PostgresStore:
    """PostgreSQL adapter for the grant assistant tables."""

    def __init__(self):
        """Initialize PostgreSQL connection."""
        self.database_url = os.getenv("DATABASE_URL")
        if not self.database_url:
            raise ValueError("DATABASE_URL environment variable is required")

        try:
            self.pool = SimpleConnectionPool(
                minconn=1,
                maxconn=10,
                dsn=self.database_url
            )
            logger.info("PostgreSQL connection pool created successfully")
        except Exception as e:
            logger.error(f"Failed to create PostgreSQL connection pool: {e}")
            raise

    def _get_connection(self):
        """Get a connection from the pool."""
        try:
            return self.pool.getconn()
        except Exception as e:
            logger.error(f"Failed to get connection from pool: {e}")
            raise

    def _release_connection(self, conn):
        """Return a connection to the pool."""
        if conn:
            self.pool.putconn(conn)

    # -------------------------------------------------------------------------
    # SQL helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _table(table: str) -> sql.Identifier:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        return sql.Identifier(table)

    @staticmethod
    def _where(filters: Optional[Dict[str, Any]]) -> Tuple[sql.Composable, List[Any]]:
        """
        Build a WHERE clause from equality filters.

        List/tuple values become `col = ANY(%s)`, None becomes `col IS NULL`.
        """
        clauses = [sql.SQL("1=1")]
        params: List[Any] = []
        for column, value in (filters or {}).items():
            ident = sql.Identifier(column)
            if value is None:
                clauses.append(sql.SQL("{} IS NULL").format(ident))
            elif isinstance(value, (list, tuple, set)):
                clauses.append(sql.SQL("{} = ANY(%s)").format(ident))
                params.append(list(value))
            else:
                clauses.append(sql.SQL("{} = %s").format(ident))
                params.append(_adapt(value, column))
        return sql.SQL(" AND ").join(clauses), params

    @staticmethod
    def _order(order_by: Optional[Sequence[str]]) -> sql.Composable:
        """Order terms use a leading '-' for descending, e.g. ["-priority", "created_at"]."""
        if not order_by:
            return sql.SQL("")
        terms = []
        for term in order_by:
            direction = sql.SQL("DESC") if term.startswith("-") else sql.SQL("ASC")
            terms.append(sql.SQL("{} {}").format(sql.Identifier(term.lstrip("-")), direction))
        return sql.SQL(" ORDER BY ") + sql.SQL(", ").join(terms)

    def _execute(self, query: sql.Composable, params: Sequence[Any], fetch: str = "all", commit: bool = False):
        conn = None
        try:
            conn = self._get_connection()
            cursor = conn.cursor(cursor_factory=RealDictCursor)
            cursor.execute(query, params)

            if fetch == "one":
                result = cursor.fetchone()
                result = dict(result) if result else None
            elif fetch == "all":
                result = [dict(row) for row in cursor.fetchall()]
            else:
                result = cursor.rowcount

            cursor.close()
            if commit:
                conn.commit()
            return result

        except UniqueViolation as e:
            if conn:
                conn.rollback()
            logger.warning(f"Unique constraint violated: {e}")
            raise DuplicateRecordError(str(e)) from e
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            self._release_connection(conn)

    # -------------------------------------------------------------------------
    # Generic operations
    # -------------------------------------------------------------------------

    def get(self, table: str, row_id: Any) -> Optional[Dict[str, Any]]:
        """Fetch one row by primary key `id`."""
        query = sql.SQL("SELECT * FROM {} WHERE id = %s").format(self._table(table))
        return self._execute(query, [row_id], fetch="one")

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows matching equality filters.

        Args:
            table: Table name (must be in TABLES)
            filters: Column -> value; lists match any value
            order_by: Column names, '-' prefix for descending
            limit: Maximum number of rows
            offset: Number of rows to skip

        Returns:
            List of row dicts
        """
        where, params = self._where(filters)
        query = sql.SQL("SELECT * FROM {} WHERE ").format(self._table(table)) + where + self._order(order_by)
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(limit)
        if offset:
            query += sql.SQL(" OFFSET %s")
            params.append(offset)
        return self._execute(query, params)

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it."""
        columns = list(values.keys())
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            self._table(table),
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(sql.Placeholder() * len(columns)),
        )
        return self._execute(query, [_adapt(values[c], c) for c in columns], fetch="one", commit=True)

    def update(self, table: str, filters: Dict[str, Any], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Update matching rows and return them."""
        if not filters:
            raise ValueError("update requires at least one filter")
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in values
        )
        where, where_params = self._where(filters)
        query = sql.SQL("UPDATE {} SET ").format(self._table(table)) + assignments + \
            sql.SQL(" WHERE ") + where + sql.SQL(" RETURNING *")
        params = [_adapt(v, c) for c, v in values.items()] + where_params
        return self._execute(query, params, commit=True)

    def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete matching rows, returning the number removed."""
        if not filters:
            raise ValueError("delete requires at least one filter")
        where, params = self._where(filters)
        query = sql.SQL("DELETE FROM {} WHERE ").format(self._table(table)) + where
        return self._execute(query, params, fetch="count", commit=True)

    def upsert(self, table: str, values: Dict[str, Any], conflict: Sequence[str]) -> Dict[str, Any]:
        """Insert or update on the given conflict columns."""
        columns = list(values.keys())
        updates = [c for c in columns if c not in conflict]
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) ").format(
            self._table(table),
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(sql.Placeholder() * len(columns)),
            sql.SQL(", ").join(map(sql.Identifier, conflict)),
        )
        if updates:
            query += sql.SQL("DO UPDATE SET ") + sql.SQL(", ").join(
                sql.SQL("{0} = EXCLUDED.{0}").format(sql.Identifier(c)) for c in updates
            )
        else:
            query += sql.SQL("DO NOTHING")
        query += sql.SQL(" RETURNING *")
        return self._execute(query, [_adapt(values[c], c) for c in columns], fetch="one", commit=True)

    # -------------------------------------------------------------------------
    # Table-specific queries
    # -------------------------------------------------------------------------

    def search_organizations(self, query: str, limit: int = 20, offset: int = 0) -> Tuple[List[Dict[str, Any]], int]:
        """
        Case-insensitive name search.

        Returns:
            (rows ordered by name, total matching count)
        """
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"

        rows = self._execute(
            sql.SQL("SELECT * FROM organizations WHERE name ILIKE %s ORDER BY name LIMIT %s OFFSET %s"),
            [pattern, limit, offset],
        )
        total = self._execute(
            sql.SQL("SELECT COUNT(*) AS total FROM organizations WHERE name ILIKE %s"),
            [pattern],
            fetch="one",
        )
        return rows, (total or {}).get("total", 0)

    def list_foas(
        self,
        agency: Optional[str] = None,
        grant_type: Optional[str] = None,
        deadline_after: Optional[str] = None,
        deadline_before: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """List FOAs ordered by deadline with optional filters."""
        query = "SELECT * FROM foas WHERE 1=1"
        params: List[Any] = []

        if agency:
            query += " AND agency = %s"
            params.append(agency)

        if grant_type:
            query += " AND grant_type ? %s"
            params.append(grant_type)

        # deadline is stored as "Month Day, Year"
        if deadline_after:
            query += " AND to_date(NULLIF(deadline, ''), 'FMMonth FMDD, YYYY') >= %s::date"
            params.append(deadline_after)

        if deadline_before:
            query += " AND to_date(NULLIF(deadline, ''), 'FMMonth FMDD, YYYY') <= %s::date"
            params.append(deadline_before)

        query += " ORDER BY to_date(NULLIF(deadline, ''), 'FMMonth FMDD, YYYY') ASC NULLS LAST LIMIT %s OFFSET %s"
        params.extend([limit, offset])

        return self._execute(sql.SQL(query), params)

    def ping(self) -> bool:
        """Cheap connectivity check used by /health."""
        result = self._execute(sql.SQL("SELECT 1 AS ok"), [], fetch="one")
        return bool(result and result.get("ok") == 1)

    def close(self):
        """Close all connections in the pool."""
        try:
            if hasattr(self, 'pool') and self.pool:
                self.pool.closeall()
                logger.info("PostgreSQL connection pool closed")
        except Exception as e:
            logger.error(f"Error closing connection pool: {e}")
