import asyncio
import platform
import sys
# --- WINDOWS FIX: Force ProactorEventLoop (CRITICAL for Playwright) ---
# Playwright launches its driver as a subprocess, which needs the Proactor loop on Windows.
if platform.system() == "Windows" and sys.version_info >= (3, 8):
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
# --- END WINDOWS FIX ---

from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import HTMLResponse

import config
from auth_service import AuthService, AuthServiceError, get_auth_service
from controller import EditorSession, SessionRegistry, new_session_id
from data_service import DataService, DataServiceError, get_data_service
from logger import playground_logger
from models import (
    AuthSession, Challenge, EditorSessionRequest, EditorSessionView, LearnerResponse,
    LoadChallengeRequest, QuizAnswers, QuizQuestion, QuizResult, RunResult, SignInRequest,
    SignUpRequest, SourceEdit, SubmitResult, UserIdentity,
)
from quiz import grade_quiz
from sandbox import BrowserHost, PlaywrightSandbox

# --- 1. Initialize FastAPI App ---
app = FastAPI(title="Web Learning Hub - Live Code Runner")

# Shared Chromium for every editor session (launched on first run)
browser_host = BrowserHost()
_registry: Optional[SessionRegistry] = None


def get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry(
            executor_factory=lambda: PlaywrightSandbox(browser_host),
            data_service=get_data_service(),
        )
    return _registry


def _log_auth_change(event: str, session: Optional[AuthSession]):
    who = session.user.email if session else "-"
    playground_logger.info(f"🔐 Auth state changed: {event} ({who})")


@app.on_event("startup")
async def startup_event():
    get_auth_service().subscribe(_log_auth_change)
    playground_logger.info(
        f"Playground API started (mock services: {config.USE_MOCK_SERVICES}, auth required: {config.REQUIRE_AUTH})"
    )


@app.on_event("shutdown")
async def shutdown_event():
    if _registry is not None:
        await _registry.close_all()
    await browser_host.close()


# --- 2. Dependencies ---

def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


async def require_user(
    authorization: Optional[str] = Header(default=None),
    auth: AuthService = Depends(get_auth_service)
) -> Optional[UserIdentity]:
    """Identity only gates access; nothing downstream is keyed by it."""
    if not config.REQUIRE_AUTH:
        return None
    token = _bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Sign in required.")
    try:
        user = await auth.get_user(token)
    except AuthServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)
    if user is None:
        raise HTTPException(status_code=401, detail="Session expired or invalid.")
    return user


async def editor_session(editor_id: str, registry: SessionRegistry = Depends(get_registry)) -> EditorSession:
    await registry.expire_idle()
    session = registry.get(editor_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown editor session: {editor_id}")
    return session


async def _load_challenge(data: DataService, challenge_id: str) -> Challenge:
    try:
        challenge = await data.fetch_challenge(challenge_id)
    except DataServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if challenge is None:
        raise HTTPException(status_code=404, detail=f"Unknown challenge: {challenge_id}")
    return challenge


# --- 3. Auth Endpoints ---

@app.post("/auth/sign-up", response_model=AuthSession)
async def sign_up(payload: SignUpRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        return await auth.sign_up(payload.email, payload.password, payload.display_name)
    except AuthServiceError as e:
        playground_logger.warning(f"Sign-up rejected for {payload.email}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)


@app.post("/auth/sign-in", response_model=AuthSession)
async def sign_in(payload: SignInRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        return await auth.sign_in(payload.email, payload.password)
    except AuthServiceError as e:
        playground_logger.warning(f"Sign-in rejected for {payload.email}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)


@app.post("/auth/sign-out", status_code=204)
async def sign_out(
    authorization: Optional[str] = Header(default=None),
    auth: AuthService = Depends(get_auth_service)
):
    token = _bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Sign in required.")
    try:
        await auth.sign_out(token)
    except AuthServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@app.get("/auth/session", response_model=Optional[UserIdentity])
async def current_session(
    authorization: Optional[str] = Header(default=None),
    auth: AuthService = Depends(get_auth_service)
):
    token = _bearer_token(authorization)
    if token is None:
        return None
    try:
        return await auth.get_user(token)
    except AuthServiceError as e:
        raise HTTPException(status_code=502, detail=e.message)


# --- 4. Catalogue & Progress Endpoints ---

@app.post("/learners", response_model=LearnerResponse, dependencies=[Depends(require_user)])
async def create_learner():
    return LearnerResponse(session_id=new_session_id())


@app.get("/challenges", response_model=List[Challenge], dependencies=[Depends(require_user)])
async def list_challenges(
    level: str = Query("beginner", pattern="^(beginner|intermediate|advanced)$"),
    data: DataService = Depends(get_data_service)
):
    try:
        return await data.fetch_challenges(level)
    except DataServiceError as e:
        playground_logger.error(f"Error loading challenges: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/challenges/{challenge_id}", response_model=Challenge, dependencies=[Depends(require_user)])
async def get_challenge(challenge_id: str, data: DataService = Depends(get_data_service)):
    return await _load_challenge(data, challenge_id)


@app.get("/learners/{session_id}/completed", response_model=List[str], dependencies=[Depends(require_user)])
async def completed_challenges(session_id: str, data: DataService = Depends(get_data_service)):
    try:
        return await data.fetch_completed_challenge_ids(session_id)
    except DataServiceError as e:
        playground_logger.error(f"Error loading completed challenges: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/quizzes/{category}/questions", response_model=List[QuizQuestion], dependencies=[Depends(require_user)])
async def quiz_questions(category: str, data: DataService = Depends(get_data_service)):
    try:
        return await data.fetch_quiz_questions(category)
    except DataServiceError as e:
        playground_logger.error(f"Error loading questions: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@app.post("/quizzes/{category}/grade", response_model=QuizResult, dependencies=[Depends(require_user)])
async def grade(category: str, payload: QuizAnswers, data: DataService = Depends(get_data_service)):
    try:
        questions = await data.fetch_quiz_questions(category)
    except DataServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    if not questions:
        raise HTTPException(status_code=404, detail=f"No questions for category: {category}")
    return grade_quiz(questions, payload.answers)


# --- 5. Editor Endpoints ---

@app.post("/editor-sessions", response_model=EditorSessionView, status_code=201, dependencies=[Depends(require_user)])
async def open_editor(
    payload: EditorSessionRequest,
    registry: SessionRegistry = Depends(get_registry),
    data: DataService = Depends(get_data_service)
):
    challenge = await _load_challenge(data, payload.challenge_id) if payload.challenge_id else None
    await registry.expire_idle()
    return registry.open(payload.session_id, challenge).snapshot()


@app.get("/editor-sessions/{editor_id}", response_model=EditorSessionView, dependencies=[Depends(require_user)])
async def editor_status(session: EditorSession = Depends(editor_session)):
    return session.snapshot()


@app.put("/editor-sessions/{editor_id}/source", response_model=EditorSessionView, dependencies=[Depends(require_user)])
async def edit_source(payload: SourceEdit, session: EditorSession = Depends(editor_session)):
    """Edits are applied at once; the automatic run follows after the quiet interval."""
    session.edit(html=payload.html, css=payload.css, js=payload.js)
    return session.snapshot()


@app.post("/editor-sessions/{editor_id}/run", response_model=RunResult, dependencies=[Depends(require_user)])
async def run_code(session: EditorSession = Depends(editor_session)):
    return await session.run()


@app.post("/editor-sessions/{editor_id}/submit", response_model=SubmitResult, dependencies=[Depends(require_user)])
async def submit_challenge(session: EditorSession = Depends(editor_session)):
    return await session.submit()


@app.post("/editor-sessions/{editor_id}/reset-code", response_model=EditorSessionView, dependencies=[Depends(require_user)])
async def reset_code(session: EditorSession = Depends(editor_session)):
    await session.reset_code()
    return session.snapshot()


@app.post("/editor-sessions/{editor_id}/reset", response_model=EditorSessionView, dependencies=[Depends(require_user)])
async def reset_session(session: EditorSession = Depends(editor_session)):
    await session.reset_session()
    return session.snapshot()


@app.post("/editor-sessions/{editor_id}/challenge", response_model=EditorSessionView, dependencies=[Depends(require_user)])
async def load_challenge(
    payload: LoadChallengeRequest,
    session: EditorSession = Depends(editor_session),
    data: DataService = Depends(get_data_service)
):
    challenge = await _load_challenge(data, payload.challenge_id)
    await session.load_challenge(challenge)
    return session.snapshot()


@app.get("/editor-sessions/{editor_id}/preview", response_class=HTMLResponse, dependencies=[Depends(require_user)])
async def preview(session: EditorSession = Depends(editor_session)):
    document = session.preview()
    if document is None:
        raise HTTPException(status_code=404, detail='Click "Run Code" to see the output')
    # Same capability scope as the runner's iframe: scripts only, opaque origin
    return HTMLResponse(document, headers={"Content-Security-Policy": "sandbox allow-scripts"})


@app.delete("/editor-sessions/{editor_id}", status_code=204, dependencies=[Depends(require_user)])
async def close_editor(editor_id: str, registry: SessionRegistry = Depends(get_registry)):
    if not await registry.close(editor_id):
        raise HTTPException(status_code=404, detail=f"Unknown editor session: {editor_id}")
