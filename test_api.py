import pytest
from fastapi.testclient import TestClient

import config
import main
from auth_service import get_auth_service
from auth_service_mock import InMemoryAuthService
from conftest import FakeSandbox
from controller import SessionRegistry
from data_service import USER_PROGRESS, get_data_service


@pytest.fixture
def services(data_service):
    auth = InMemoryAuthService()
    registry = SessionRegistry(
        FakeSandbox, data_service, poll_timeout=0.05, poll_interval=0.01, debounce_seconds=5.0
    )
    main.app.dependency_overrides[get_data_service] = lambda: data_service
    main.app.dependency_overrides[get_auth_service] = lambda: auth
    main.app.dependency_overrides[main.get_registry] = lambda: registry
    yield auth, registry
    main.app.dependency_overrides.clear()


@pytest.fixture
def client(services):
    with TestClient(main.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(client):
    response = client.post("/auth/sign-up", json={
        "email": "student@example.com", "password": "secret123", "display_name": "Student"
    })
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


# --- Auth ---

def test_gated_endpoints_require_sign_in(client):
    assert client.get("/challenges").status_code == 401
    assert client.get("/challenges", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.post("/learners").status_code == 401


def test_auth_can_be_disabled(client, monkeypatch):
    monkeypatch.setattr(config, "REQUIRE_AUTH", False)
    assert client.get("/challenges").status_code == 200


def test_sign_in_session_and_sign_out(client, auth_headers):
    bad = client.post("/auth/sign-in", json={"email": "student@example.com", "password": "wrong"})
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Invalid login credentials"

    signed_in = client.post("/auth/sign-in", json={"email": "student@example.com", "password": "secret123"})
    assert signed_in.status_code == 200
    headers = {"Authorization": f"Bearer {signed_in.json()['access_token']}"}

    session = client.get("/auth/session", headers=headers)
    assert session.json()["email"] == "student@example.com"
    assert session.json()["display_name"] == "Student"
    assert client.get("/auth/session").json() is None

    assert client.post("/auth/sign-out", headers=headers).status_code == 204
    assert client.get("/challenges", headers=headers).status_code == 401


def test_duplicate_sign_up_is_rejected(client, auth_headers):
    response = client.post("/auth/sign-up", json={"email": "student@example.com", "password": "secret123"})
    assert response.status_code == 422
    assert response.json()["detail"] == "User already registered"


# --- Catalogue ---

def test_challenges_by_level_in_order(client, auth_headers):
    response = client.get("/challenges", params={"level": "beginner"}, headers=auth_headers)

    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == ["html-first-heading", "css-centered-card"]
    assert client.get("/challenges", params={"level": "expert"}, headers=auth_headers).status_code == 422


def test_unknown_challenge_is_404(client, auth_headers):
    assert client.get("/challenges/missing", headers=auth_headers).status_code == 404


def test_quiz_questions_and_grading(client, auth_headers):
    questions = client.get("/quizzes/html/questions", headers=auth_headers).json()
    assert [q["id"] for q in questions] == ["html-1", "html-2"]

    graded = client.post("/quizzes/html/grade", json={"answers": {"html-1": 2, "html-2": 0}}, headers=auth_headers)
    assert graded.status_code == 200
    assert graded.json()["score"] == 1
    assert graded.json()["percentage"] == 50
    assert graded.json()["badge"] == "Beginner"

    assert client.post("/quizzes/none/grade", json={"answers": {}}, headers=auth_headers).status_code == 404


# --- Editor ---

def open_editor(client, headers, challenge_id=None):
    learner = client.post("/learners", headers=headers).json()["session_id"]
    response = client.post(
        "/editor-sessions",
        json={"session_id": learner, "challenge_id": challenge_id},
        headers=headers,
    )
    assert response.status_code == 201
    return learner, response.json()


def test_challenge_editor_run_submit_and_progress(client, auth_headers, data_service):
    learner, editor = open_editor(client, auth_headers, "css-centered-card")
    editor_id = editor["editor_id"]
    assert editor["source"]["html"] == '<div class="card">Hello</div>'
    assert editor["state"] == "idle"

    run = client.post(f"/editor-sessions/{editor_id}/run", headers=auth_headers)
    assert run.json() == {"immediate_error_found": False, "diagnostic": None}

    preview = client.get(f"/editor-sessions/{editor_id}/preview", headers=auth_headers)
    assert preview.status_code == 200
    assert preview.headers["content-security-policy"] == "sandbox allow-scripts"
    assert '<div class="card">Hello</div>' in preview.text

    submit = client.post(f"/editor-sessions/{editor_id}/submit", headers=auth_headers).json()
    assert submit["status"] == "accepted"
    assert submit["score"] == 100
    assert submit["record"]["attempts"] == 2

    again = client.post(f"/editor-sessions/{editor_id}/submit", headers=auth_headers).json()
    assert again["status"] == "already_submitted"
    assert len(data_service.collections[USER_PROGRESS]) == 1

    completed = client.get(f"/learners/{learner}/completed", headers=auth_headers)
    assert completed.json() == ["css-centered-card"]


def test_edit_with_static_error_then_manual_run(client, auth_headers):
    _, editor = open_editor(client, auth_headers)
    editor_id = editor["editor_id"]

    edited = client.put(
        f"/editor-sessions/{editor_id}/source", json={"html": "<div><span></div>"}, headers=auth_headers
    ).json()
    assert edited["source"]["html"] == "<div><span></div>"
    assert edited["auto_run_pending"]

    run = client.post(f"/editor-sessions/{editor_id}/run", headers=auth_headers).json()
    assert run["immediate_error_found"]
    assert run["diagnostic"]["message"] == "Possible HTML tag mismatch detected"

    status = client.get(f"/editor-sessions/{editor_id}", headers=auth_headers).json()
    assert status["state"] == "blocked_by_syntax"
    assert status["counters"] == {"run_count": 1, "mistake_count": 1}
    assert client.get(f"/editor-sessions/{editor_id}/preview", headers=auth_headers).status_code == 404


def test_free_play_submit_is_rejected(client, auth_headers):
    _, editor = open_editor(client, auth_headers)
    response = client.post(f"/editor-sessions/{editor['editor_id']}/submit", headers=auth_headers)
    assert response.json()["status"] == "no_challenge"


def test_persistence_failure_is_reported(client, auth_headers, data_service):
    _, editor = open_editor(client, auth_headers, "html-first-heading")
    data_service.fail_inserts = True

    response = client.post(f"/editor-sessions/{editor['editor_id']}/submit", headers=auth_headers).json()

    assert response["status"] == "persistence_failed"
    status = client.get(f"/editor-sessions/{editor['editor_id']}", headers=auth_headers).json()
    assert not status["submitted"]


def test_load_challenge_and_resets(client, auth_headers):
    _, editor = open_editor(client, auth_headers)
    editor_id = editor["editor_id"]
    client.post(f"/editor-sessions/{editor_id}/run", headers=auth_headers)

    reset = client.post(f"/editor-sessions/{editor_id}/reset", headers=auth_headers).json()
    assert reset["counters"] == {"run_count": 0, "mistake_count": 0}

    loaded = client.post(
        f"/editor-sessions/{editor_id}/challenge", json={"challenge_id": "js-click-counter"}, headers=auth_headers
    ).json()
    assert loaded["challenge_id"] == "js-click-counter"
    assert loaded["source"]["js"] == "const button = document.getElementById('add');\n"

    client.put(f"/editor-sessions/{editor_id}/source", json={"js": "// changed"}, headers=auth_headers)
    restored = client.post(f"/editor-sessions/{editor_id}/reset-code", headers=auth_headers).json()
    assert restored["source"]["js"] == "const button = document.getElementById('add');\n"


def test_unknown_editor_session_is_404(client, auth_headers):
    assert client.get("/editor-sessions/nope", headers=auth_headers).status_code == 404
    assert client.post("/editor-sessions/nope/run", headers=auth_headers).status_code == 404
    assert client.delete("/editor-sessions/nope", headers=auth_headers).status_code == 404


def test_close_editor_session(client, auth_headers):
    _, editor = open_editor(client, auth_headers)
    editor_id = editor["editor_id"]

    assert client.delete(f"/editor-sessions/{editor_id}", headers=auth_headers).status_code == 204
    assert client.get(f"/editor-sessions/{editor_id}", headers=auth_headers).status_code == 404
