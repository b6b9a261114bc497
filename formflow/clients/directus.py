"""Directus REST client for form catalogs and response persistence.

Implements both external boundaries of the core: loading a form version
(questions, choices, branching rules) and upserting answer batches.
Blocking HTTP calls run in a worker thread so the event loop, and with it
the autosave timer, keeps running.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

import requests
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_base,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from formflow.answers.persistence import AnswerPersistence
from formflow.answers.types import BatchItem
from formflow.navigation.ir import FormDefinition
from formflow.navigation.loader import FormLoadError, build_form_definition

logger = logging.getLogger(__name__)

RESPONSE_ITEMS = "response_items"

# Methods that can be repeated after an ambiguous failure without duplicating rows
IDEMPOTENT_METHODS = frozenset({"GET", "PATCH", "DELETE"})


class _RetryIfIdempotent(retry_base):
    """Retry only requests whose HTTP method is safe to send twice."""

    def __call__(self, retry_state: RetryCallState) -> bool:
        if len(retry_state.args) > 1:
            method = retry_state.args[1]
        else:
            method = retry_state.kwargs.get("method", "")
        return str(method).upper() in IDEMPOTENT_METHODS


# A connect timeout never reached the server, so any method may be resent.
# Read timeouts and dropped connections may follow an applied write.
_TRANSPORT_RETRY = retry_if_exception_type(requests.ConnectTimeout) | (
    retry_if_exception_type((requests.ConnectionError, requests.Timeout)) & _RetryIfIdempotent()
)


class DirectusSettings(Protocol):
    """Protocol for settings needed by the Directus client."""

    directus_base_url: str
    directus_token: str | None
    request_timeout_seconds: float


class DirectusError(Exception):
    """Raised for Directus responses that cannot be interpreted."""


def _filter(conditions: dict[str, Any]) -> str:
    return json.dumps(conditions, separators=(",", ":"))


class DirectusClient(AnswerPersistence):
    """Remote store backed by the Directus items API."""

    def __init__(self, settings: DirectusSettings, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        if settings.directus_token:
            self._session.headers.update({"Authorization": f"Bearer {settings.directus_token}"})

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=_TRANSPORT_RETRY,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        """Send one request and return the ``data`` member of the reply."""
        url = f"{self._settings.directus_base_url}{path}"
        response = self._session.request(
            method,
            url,
            params=params,
            json=payload,
            timeout=self._settings.request_timeout_seconds,
        )
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise DirectusError(f"Non-JSON reply from {method} {path}") from exc
        if not isinstance(body, dict):
            raise DirectusError(f"Unexpected reply shape from {method} {path}")
        return body.get("data")

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    # ------------------------------------------------------------------
    # Catalog loading
    # ------------------------------------------------------------------

    async def get_form_by_slug(self, slug: str) -> dict[str, Any] | None:
        """Get the published form with the given slug."""
        try:
            rows = await self._call(
                "GET",
                "/items/forms",
                params={"filter": _filter({"slug": {"_eq": slug}, "status": {"_eq": "published"}})},
            )
        except (requests.RequestException, DirectusError) as exc:
            logger.error("Error fetching form %s: %s", slug, exc)
            return None
        return rows[0] if rows else None

    async def get_form_version(self, version_id: str) -> dict[str, Any] | None:
        """Get a form version with its questions, choices and rules.

        Returns a dict with ``version``, ``questions`` (choices attached) and
        ``branching_rules``, each list sorted by ``order``.
        """
        version_filter = _filter({"form_version_id": {"_eq": version_id}})
        try:
            version, questions, rules = await asyncio.gather(
                self._call("GET", f"/items/form_versions/{version_id}"),
                self._call("GET", "/items/questions", params={"filter": version_filter, "sort": "order"}),
                self._call(
                    "GET", "/items/branching_rules", params={"filter": version_filter, "sort": "order"}
                ),
            )
            questions = list(questions or [])
            choices: list[dict[str, Any]] = []
            question_ids = [q.get("id") for q in questions]
            if question_ids:
                choices = list(
                    await self._call(
                        "GET",
                        "/items/question_choices",
                        params={"filter": _filter({"question_id": {"_in": question_ids}}), "sort": "order"},
                    )
                    or []
                )
        except (requests.RequestException, DirectusError) as exc:
            logger.error("Error fetching form version %s: %s", version_id, exc)
            return None

        for question in questions:
            question["choices"] = [c for c in choices if c.get("question_id") == question.get("id")]
        return {"version": version, "questions": questions, "branching_rules": list(rules or [])}

    async def load_form(self, slug: str) -> FormDefinition:
        """Load the active version of a published form as a FormDefinition.

        Raises:
            FormLoadError: If the form, its active version or its content is unavailable.
        """
        form = await self.get_form_by_slug(slug)
        if not form:
            raise FormLoadError(f"Form {slug!r} not found")
        version_id = form.get("active_version_id")
        if not version_id:
            raise FormLoadError(f"Form {slug!r} has no active version")
        version = await self.get_form_version(str(version_id))
        if version is None:
            raise FormLoadError(f"Form {slug!r} version {version_id} could not be loaded")

        return build_form_definition(
            {
                "id": form.get("id"),
                "slug": form.get("slug"),
                "title": form.get("title") or "",
                "description": form.get("description"),
                "exit_map": form.get("exit_map") or {},
                "version_id": version_id,
                "questions": version["questions"],
                "branching_rules": version["branching_rules"],
            }
        )

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def create_response(
        self,
        form_version_id: str,
        user_id: str,
        utm_params: dict[str, Any] | None = None,
    ) -> str | None:
        """Create a draft response session and return its id."""
        try:
            data = await self._call(
                "POST",
                "/items/responses",
                payload={
                    "form_version_id": form_version_id,
                    "user_id": user_id,
                    "status": "draft",
                    "started_at": datetime.now(timezone.utc).isoformat(),
                    "progress_pct": 0,
                    "utm_json": utm_params or {},
                    "hidden_json": {},
                },
            )
        except (requests.RequestException, DirectusError) as exc:
            logger.error("Error creating response for version %s: %s", form_version_id, exc)
            return None
        if not isinstance(data, dict) or not data.get("id"):
            logger.error("Create response for version %s returned no id", form_version_id)
            return None
        return str(data["id"])

    async def get_response_items(self, response_id: str) -> list[dict[str, Any]]:
        """Get the stored answers of a response (for resuming a session)."""
        try:
            rows = await self._call(
                "GET",
                f"/items/{RESPONSE_ITEMS}",
                params={"filter": _filter({"response_id": {"_eq": response_id}}), "limit": -1},
            )
        except (requests.RequestException, DirectusError) as exc:
            logger.error("Error fetching answers of response %s: %s", response_id, exc)
            return []
        return list(rows or [])

    async def save_answers_batch(self, response_id: str, items: list[BatchItem]) -> bool:
        """Upsert answers: patch stored items, create the missing ones."""
        if not items:
            return True
        question_ids = [item.question_id for item in items]
        try:
            existing_rows = await self._call(
                "GET",
                f"/items/{RESPONSE_ITEMS}",
                params={
                    "filter": _filter(
                        {"response_id": {"_eq": response_id}, "question_id": {"_in": question_ids}}
                    ),
                    "fields": "id,question_id",
                    "limit": -1,
                },
            )
            existing = {row["question_id"]: row["id"] for row in existing_rows or []}
            updates = [
                {"id": existing[item.question_id], "value": item.value}
                for item in items
                if item.question_id in existing
            ]
            creates = [
                {"response_id": response_id, "question_id": item.question_id, "value": item.value}
                for item in items
                if item.question_id not in existing
            ]
            if updates:
                await self._call("PATCH", f"/items/{RESPONSE_ITEMS}", payload=updates)
            if creates:
                await self._call("POST", f"/items/{RESPONSE_ITEMS}", payload=creates)
        except (requests.RequestException, DirectusError, KeyError, TypeError) as exc:
            logger.error("Error saving %d answers for response %s: %s", len(items), response_id, exc)
            return False
        logger.debug(
            "Upserted answers for response %s: %d updated, %d created",
            response_id,
            len(updates),
            len(creates),
        )
        return True

    async def save_answer(self, response_id: str, question_id: str, value: Any) -> bool:
        return await self.save_answers_batch(response_id, [BatchItem(question_id=question_id, value=value)])

    async def update_response(self, response_id: str, updates: dict[str, Any]) -> bool:
        try:
            await self._call("PATCH", f"/items/responses/{response_id}", payload=updates)
        except (requests.RequestException, DirectusError) as exc:
            logger.error("Error updating response %s: %s", response_id, exc)
            return False
        return True

    async def update_progress(self, response_id: str, progress_pct: int) -> bool:
        return await self.update_response(response_id, {"progress_pct": progress_pct})

    async def complete_response(self, response_id: str, exit_key: str | None = None) -> bool:
        logger.info("Completing response %s with exit key %s", response_id, exit_key)
        return await self.update_response(
            response_id,
            {
                "status": "completed",
                "completed_at": datetime.now(timezone.utc).isoformat(),
                "progress_pct": 100,
            },
        )
