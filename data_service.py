"""
Data Service client

CRUD over the hosted Supabase collections (challenges, quiz_questions, user_progress)
through the PostgREST HTTP interface. Calls use `requests` and run in a worker
thread so the event loop keeps serving sandbox messages meanwhile.
"""

import asyncio
from typing import Any, Dict, List, Optional

import requests

import config
from logger import playground_logger
from models import Challenge, QuizQuestion, SubmissionRecord

CHALLENGES = "challenges"
QUIZ_QUESTIONS = "quiz_questions"
USER_PROGRESS = "user_progress"


class DataServiceError(Exception):
    """The data service rejected a request or could not be reached."""


class DataService:
    """
    Collection-level operations shared by every backend.
    Subclasses provide `select` and `insert`.
    """

    async def select(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None
    ) -> List[dict]:
        raise NotImplementedError

    async def insert(self, collection: str, rows: List[dict]) -> List[dict]:
        raise NotImplementedError

    # --- Helpers used by the API and the editor ---

    async def fetch_challenges(self, level: str) -> List[Challenge]:
        rows = await self.select(CHALLENGES, {"level": level}, order="order_index")
        return [Challenge.model_validate(row) for row in rows]

    async def fetch_challenge(self, challenge_id: str) -> Optional[Challenge]:
        rows = await self.select(CHALLENGES, {"id": challenge_id})
        return Challenge.model_validate(rows[0]) if rows else None

    async def fetch_quiz_questions(self, category: str) -> List[QuizQuestion]:
        rows = await self.select(QUIZ_QUESTIONS, {"category": category}, order="order_index")
        return [QuizQuestion.model_validate(row) for row in rows]

    async def fetch_completed_challenge_ids(self, session_id: str) -> List[str]:
        rows = await self.select(USER_PROGRESS, {"session_id": session_id, "completed": True})
        # A challenge can be submitted once per load, so ids may repeat
        return list(dict.fromkeys(row["challenge_id"] for row in rows if row.get("challenge_id")))

    async def insert_submission(self, record: SubmissionRecord) -> dict:
        rows = await self.insert(USER_PROGRESS, [record.to_row()])
        return rows[0] if rows else record.to_row()


def _filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


class SupabaseDataService(DataService):
    """PostgREST client for a Supabase project (anon key)."""

    def __init__(
        self,
        url: str = config.SUPABASE_URL,
        api_key: str = config.SUPABASE_ANON_KEY,
        timeout: float = config.DATA_SERVICE_TIMEOUT_SECONDS
    ):
        if not url or not api_key:
            raise DataServiceError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.http = requests.Session()
        self.http.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, collection: str, **kwargs) -> List[dict]:
        url = f"{self.base_url}/{collection}"
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            playground_logger.error(f"❌ Data service unreachable ({method} {collection}): {e}")
            raise DataServiceError(f"Data service unreachable: {e}") from e

        if response.status_code >= 400:
            playground_logger.error(
                f"❌ Data service rejected {method} {collection}: "
                f"HTTP {response.status_code} {response.text[:200]}"
            )
            raise DataServiceError(f"Data service returned HTTP {response.status_code}")

        if not response.text.strip():
            return []
        try:
            return response.json()
        except ValueError as e:
            raise DataServiceError(f"Data service returned non-JSON response: {e}") from e

    def _select(self, collection: str, filters: Optional[Dict[str, Any]], order: Optional[str]) -> List[dict]:
        params = {"select": "*"}
        for column, value in (filters or {}).items():
            params[column] = _filter_value(value)
        if order:
            params["order"] = f"{order}.asc"
        return self._request("GET", collection, params=params)

    def _insert(self, collection: str, rows: List[dict]) -> List[dict]:
        return self._request(
            "POST", collection,
            json=rows,
            headers={"Prefer": "return=representation"}
        )

    async def select(self, collection, filters=None, order=None):
        return await asyncio.to_thread(self._select, collection, filters, order)

    async def insert(self, collection, rows):
        playground_logger.info(f"💾 Inserting {len(rows)} row(s) into {collection}")
        return await asyncio.to_thread(self._insert, collection, rows)


# Global data service instance
_data_service = None


def get_data_service() -> DataService:
    """Get or create the global data service (in-memory when USE_MOCK_SERVICES=true)."""
    global _data_service
    if _data_service is None:
        if config.USE_MOCK_SERVICES:
            from data_service_mock import InMemoryDataService
            playground_logger.warning("⚠️  MOCK DATA SERVICE ENABLED - nothing is persisted")
            _data_service = InMemoryDataService()
        else:
            _data_service = SupabaseDataService()
    return _data_service
