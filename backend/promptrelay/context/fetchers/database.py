from typing import Any, Dict, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from promptrelay.context.fetchers.base import Fetcher

DEFAULT_ROW_LIMIT = 50


class DatabaseQueryFetcher(Fetcher):
    """
    Runs one preconfigured SQL query with bound parameters.

    Only the query supplied at construction can run; request params are bind
    values, never SQL. Rows are exposed as a list of dicts under ``result_key``.
    """

    description = "Runs a named database query"

    def __init__(
        self,
        engine: AsyncEngine,
        query: str,
        result_key: str,
        params: Sequence[str] = (),
        required: Sequence[str] = (),
        row_limit: int = DEFAULT_ROW_LIMIT,
    ):
        self._engine = engine
        self._query = text(query)
        self.result_key = result_key
        self.allowed_params = tuple(params)
        self.required_params = tuple(required)
        self.row_limit = row_limit

    async def fetch(self, params: Dict[str, Any]) -> Dict[str, Any]:
        async with self._engine.connect() as conn:
            result = await conn.execute(self._query, params)
            rows = [dict(row) for row in result.mappings().fetchmany(self.row_limit)]
        return {self.result_key: rows}
