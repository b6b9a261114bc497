from __future__ import annotations

import json
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest
import requests
from tenacity import wait_none

from formflow.answers.types import BatchItem
from formflow.clients.directus import DirectusClient
from formflow.navigation.loader import FormLoadError

BASE_URL = "http://directus.test"


@dataclass
class FakeSettings:
    directus_base_url: str = BASE_URL
    directus_token: str | None = "secret-token"
    request_timeout_seconds: float = 5.0


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, *, raw: bytes | None = None) -> None:
        self.status_code = status_code
        self._body = body
        if raw is not None:
            self.content = raw
        else:
            self.content = b"" if body is None else json.dumps(body).encode()

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return json.loads(self.content)


@dataclass
class Call:
    method: str
    path: str
    params: dict[str, Any] | None
    payload: Any


Handler = Callable[[Call], FakeResponse]


class FakeSession:
    """Stands in for requests.Session; routes each call to ``handler``."""

    def __init__(self, handler: Handler) -> None:
        self.headers: dict[str, str] = {}
        self.calls: list[Call] = []
        self._handler = handler
        self._lock = threading.Lock()

    def request(self, method: str, url: str, *, params=None, json=None, timeout=None) -> FakeResponse:  # type: ignore[no-untyped-def]
        assert url.startswith(BASE_URL)
        assert timeout == 5.0
        call = Call(method=method, path=url[len(BASE_URL):], params=params, payload=json)
        with self._lock:
            self.calls.append(call)
        return self._handler(call)


def _client(handler: Handler) -> tuple[DirectusClient, FakeSession]:
    session = FakeSession(handler)
    return DirectusClient(FakeSettings(), session=session), session  # type: ignore[arg-type]


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(DirectusClient._request.retry, "wait", wait_none())


@pytest.mark.unit
def test_client_sets_auth_and_content_type_headers():
    _, session = _client(lambda call: FakeResponse(body={"data": []}))
    assert session.headers["Authorization"] == "Bearer secret-token"
    assert session.headers["Content-Type"] == "application/json"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_save_answers_batch_patches_existing_and_creates_missing():
    def handler(call: Call) -> FakeResponse:
        if call.method == "GET":
            return FakeResponse(body={"data": [{"id": "ri-1", "question_id": "q-a"}]})
        return FakeResponse(body={"data": call.payload})

    client, session = _client(handler)
    ok = await client.save_answers_batch(
        "resp-1", [BatchItem(question_id="q-a", value="1"), BatchItem(question_id="q-b", value=["x", "y"])]
    )

    assert ok is True
    assert [c.method for c in session.calls] == ["GET", "PATCH", "POST"]
    lookup = session.calls[0]
    assert lookup.path == "/items/response_items"
    assert json.loads(lookup.params["filter"]) == {
        "response_id": {"_eq": "resp-1"},
        "question_id": {"_in": ["q-a", "q-b"]},
    }
    assert session.calls[1].payload == [{"id": "ri-1", "value": "1"}]
    assert session.calls[2].payload == [{"response_id": "resp-1", "question_id": "q-b", "value": ["x", "y"]}]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_save_answers_batch_only_creates_when_nothing_stored():
    client, session = _client(lambda call: FakeResponse(body={"data": [] if call.method == "GET" else {}}))

    assert await client.save_answer("resp-1", "q-a", "1") is True
    assert [c.method for c in session.calls] == ["GET", "POST"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_save_answers_batch_with_no_items_skips_the_network():
    client, session = _client(lambda call: FakeResponse(body={"data": []}))
    assert await client.save_answers_batch("resp-1", []) is True
    assert session.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_http_errors_fail_the_batch_without_retry():
    client, session = _client(lambda call: FakeResponse(status_code=500, body={"errors": []}))

    assert await client.save_answers_batch("resp-1", [BatchItem("q-a", "1")]) is False
    assert len(session.calls) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connection_errors_are_retried_then_reported():
    def handler(call: Call) -> FakeResponse:
        raise requests.ConnectionError("unreachable")

    client, session = _client(handler)

    assert await client.save_answers_batch("resp-1", [BatchItem("q-a", "1")]) is False
    assert len(session.calls) == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transient_connection_error_recovers():
    attempts = {"n": 0}

    def handler(call: Call) -> FakeResponse:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise requests.Timeout("slow")
        return FakeResponse(body={"data": [] if call.method == "GET" else {}})

    client, session = _client(handler)

    assert await client.save_answers_batch("resp-1", [BatchItem("q-a", "1")]) is True
    assert [c.method for c in session.calls] == ["GET", "GET", "POST"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_non_json_reply_is_treated_as_failure():
    client, _ = _client(lambda call: FakeResponse(raw=b"<html>gateway</html>"))
    assert await client.get_form_by_slug("demo") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_form_assembles_catalog():
    def handler(call: Call) -> FakeResponse:
        if call.path == "/items/forms":
            return FakeResponse(
                body={
                    "data": [
                        {
                            "id": "form-1",
                            "slug": "demo",
                            "title": "Demo",
                            "active_version_id": "v1",
                            "exit_map": {"success": "Thanks"},
                        }
                    ]
                }
            )
        if call.path == "/items/form_versions/v1":
            return FakeResponse(body={"data": {"id": "v1", "version_number": 1}})
        if call.path == "/items/questions":
            return FakeResponse(
                body={
                    "data": [
                        {"id": "q1", "uid": "color", "type": "single_choice", "label": "Color", "order": 1},
                        {"id": "q2", "uid": "score", "type": "nps", "label": "Score", "order": 2},
                    ]
                }
            )
        if call.path == "/items/branching_rules":
            return FakeResponse(
                body={
                    "data": [
                        {"id": "r1", "question_id": "q1", "operator": "eq", "value": '"red"', "exit_key": "red"}
                    ]
                }
            )
        if call.path == "/items/question_choices":
            return FakeResponse(
                body={
                    "data": [
                        {"id": "c1", "question_id": "q1", "label": "Red", "value": "red", "order": 1},
                        {"id": "c2", "question_id": "q1", "label": "Blue", "value": "blue", "order": 2},
                    ]
                }
            )
        return FakeResponse(status_code=404, body={"errors": []})

    client, session = _client(handler)
    form = await client.load_form("demo")

    assert form.id == "form-1"
    assert form.version_id == "v1"
    assert form.exit_map == {"success": "Thanks"}
    assert [q.uid for q in form.questions] == ["color", "score"]
    assert form.question_by_id("q1").choice_values() == ["red", "blue"]
    assert form.question_by_id("q2").type == "numeric_scale"
    assert form.branching_rules[0].exit_key == "red"

    forms_call = next(c for c in session.calls if c.path == "/items/forms")
    assert json.loads(forms_call.params["filter"]) == {"slug": {"_eq": "demo"}, "status": {"_eq": "published"}}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_form_unknown_slug_raises():
    client, _ = _client(lambda call: FakeResponse(body={"data": []}))
    with pytest.raises(FormLoadError):
        await client.load_form("missing")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_response_returns_new_id():
    client, session = _client(lambda call: FakeResponse(body={"data": {"id": 42}}))

    response_id = await client.create_response("v1", "user-7", {"utm_source": "mail"})

    assert response_id == "42"
    payload = session.calls[0].payload
    assert payload["status"] == "draft"
    assert payload["form_version_id"] == "v1"
    assert payload["user_id"] == "user-7"
    assert payload["utm_json"] == {"utm_source": "mail"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_response_lifecycle_updates():
    client, session = _client(lambda call: FakeResponse(status_code=204))

    assert await client.update_progress("resp-1", 40) is True
    assert await client.complete_response("resp-1", "success") is True

    assert session.calls[0].path == "/items/responses/resp-1"
    assert session.calls[0].payload == {"progress_pct": 40}
    completed = session.calls[1].payload
    assert completed["status"] == "completed"
    assert completed["progress_pct"] == 100
    assert "completed_at" in completed


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_response_items_returns_empty_list_on_error():
    client, _ = _client(lambda call: FakeResponse(status_code=403, body={"errors": []}))
    assert await client.get_response_items("resp-1") == []


class FakeItemStore:
    """In-memory response_items table that can lose the reply to an applied write."""

    def __init__(self, *, timeout_after_first_post: bool = False) -> None:
        self.rows: list[dict[str, Any]] = []
        self._timeout_after_first_post = timeout_after_first_post
        self._posts = 0

    def __call__(self, call: Call) -> FakeResponse:
        if call.method == "GET":
            return FakeResponse(body={"data": [{"id": r["id"], "question_id": r["question_id"]} for r in self.rows]})
        if call.method == "PATCH":
            for update in call.payload:
                for row in self.rows:
                    if row["id"] == update["id"]:
                        row["value"] = update["value"]
            return FakeResponse(body={"data": call.payload})
        if call.method == "POST":
            self._posts += 1
            for item in call.payload:
                self.rows.append({"id": f"ri-{len(self.rows) + 1}", **item})
            if self._timeout_after_first_post and self._posts == 1:
                raise requests.ReadTimeout("reply lost after write")
            return FakeResponse(body={"data": call.payload})
        return FakeResponse(status_code=405, body={"errors": []})

    def rows_for(self, question_id: str) -> list[dict[str, Any]]:
        return [r for r in self.rows if r["question_id"] == question_id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_is_not_resent_after_read_timeout():
    store = FakeItemStore(timeout_after_first_post=True)
    client, session = _client(store)

    ok = await client.save_answers_batch("resp-1", [BatchItem("q-a", "first")])

    assert ok is False
    assert [c.method for c in session.calls] == ["GET", "POST"]
    assert len(store.rows_for("q-a")) == 1

    # The next flush finds the row the lost reply created and patches it
    assert await client.save_answers_batch("resp-1", [BatchItem("q-a", "second")]) is True
    rows = store.rows_for("q-a")
    assert len(rows) == 1
    assert rows[0]["value"] == "second"
    assert [c.method for c in session.calls][2:] == ["GET", "PATCH"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_read_timeouts_on_idempotent_requests_are_retried():
    attempts = {"n": 0}

    def handler(call: Call) -> FakeResponse:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise requests.ReadTimeout("slow")
        return FakeResponse(status_code=204)

    client, session = _client(handler)

    assert await client.update_progress("resp-1", 50) is True
    assert [c.method for c in session.calls] == ["PATCH", "PATCH"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connect_timeouts_on_create_are_retried():
    attempts = {"n": 0}

    def handler(call: Call) -> FakeResponse:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise requests.ConnectTimeout("no route")
        return FakeResponse(body={"data": {"id": "resp-9"}})

    client, session = _client(handler)

    assert await client.create_response("v1", "user-1") == "resp-9"
    assert [c.method for c in session.calls] == ["POST", "POST"]
