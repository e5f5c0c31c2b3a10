from enum import Enum
from pydantic import BaseModel, Field, EmailStr, ConfigDict
from typing import Optional, List, Dict, Literal

# --- Editor Source & Run Schemas ---

DEFAULT_HTML = (
    "<!DOCTYPE html>\n<html>\n<head>\n  <title>My Page</title>\n</head>\n"
    "<body>\n  <h1>Hello World!</h1>\n</body>\n</html>"
)
DEFAULT_CSS = "body {\n  font-family: Arial, sans-serif;\n  margin: 20px;\n}\n\nh1 {\n  color: #333;\n}"
DEFAULT_JS = '// Write your JavaScript here\nconsole.log("Hello from JavaScript!");'


class SourceBundle(BaseModel):
    """
    The three editable source texts of one editor session.
    Each field is edited independently; there is no cross-field invariant.
    """
    html: str = ""
    css: str = ""
    js: str = ""

    @classmethod
    def free_play(cls) -> "SourceBundle":
        return cls(html=DEFAULT_HTML, css=DEFAULT_CSS, js=DEFAULT_JS)


class Diagnostic(BaseModel):
    """Structured description of a detected problem."""
    message: str
    line: Optional[int] = None
    column: Optional[int] = None
    stack: Optional[str] = None


class RunResult(BaseModel):
    immediate_error_found: bool
    diagnostic: Optional[Diagnostic] = None


class AttemptCounters(BaseModel):
    run_count: int = Field(default=0, ge=0)
    mistake_count: int = Field(default=0, ge=0)


class RunState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    BLOCKED_BY_SYNTAX = "blocked_by_syntax"
    EXECUTING = "executing"
    AWAITING_RUNTIME_DIAGNOSTIC = "awaiting_runtime_diagnostic"
    CLEAN = "clean"
    FLAGGED = "flagged"


class RunTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    SUBMIT = "submit"


class SubmitStatus(str, Enum):
    ACCEPTED = "accepted"
    FLAGGED = "flagged"
    ALREADY_SUBMITTED = "already_submitted"
    IN_PROGRESS = "in_progress"
    NO_CHALLENGE = "no_challenge"
    PERSISTENCE_FAILED = "persistence_failed"


class SubmissionRecord(BaseModel):
    """
    One accepted submission. Never mutated after creation.
    """
    model_config = ConfigDict(frozen=True)

    session_id: str
    challenge_id: str
    html: str
    css: str
    js: str
    completed: Literal[True] = True
    score: int = Field(ge=0, le=100)
    mistakes: int = Field(ge=0)
    attempts: int = Field(ge=0)

    def to_row(self) -> dict:
        """Column layout of the `user_progress` collection."""
        return {
            "session_id": self.session_id,
            "challenge_id": self.challenge_id,
            "code_html": self.html,
            "code_css": self.css,
            "code_js": self.js,
            "completed": self.completed,
            "score": self.score,
            "mistakes": self.mistakes,
            "attempts": self.attempts,
        }


class SubmitResult(BaseModel):
    status: SubmitStatus
    score: Optional[int] = None
    diagnostic: Optional[Diagnostic] = None
    record: Optional[SubmissionRecord] = None


# --- Diagnostic Channel Wire Shape ---

class ChannelMessage(BaseModel):
    """
    Message posted from the sandboxed document to the host page.
    Anything that does not validate against this model is not an error report.
    """
    type: Literal["playground_error"]
    message: str
    stack: str = ""


# --- Data Service Collections ---

class Challenge(BaseModel):
    # Rows may carry extra columns (created_at, ...)
    model_config = ConfigDict(extra='ignore')

    id: str
    title: str
    description: str = ""
    level: Literal["beginner", "intermediate", "advanced"]
    category: Literal["html", "css", "javascript", "mixed"]
    starter_html: str = ""
    starter_css: str = ""
    starter_js: str = ""
    reference_image_url: str = ""
    order_index: int = 0

    def starter_source(self) -> SourceBundle:
        return SourceBundle(html=self.starter_html, css=self.starter_css, js=self.starter_js)


class QuizQuestion(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    category: Literal["html", "css", "mixed"]
    question: str
    options: List[str]
    correct_answer: int
    order_index: int = 0


class QuizAnswerResult(BaseModel):
    question_id: str
    selected: Optional[int] = None
    correct_answer: int
    correct: bool


class QuizResult(BaseModel):
    score: int
    total: int
    percentage: int
    badge: Literal["Pro", "Intermediate", "Beginner"]
    results: List[QuizAnswerResult]


# --- Auth Schemas ---

class UserIdentity(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None


class AuthSession(BaseModel):
    access_token: str
    user: UserIdentity


# --- API Request / Response Schemas ---

class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    display_name: str = ""


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class LearnerResponse(BaseModel):
    session_id: str


class EditorSessionRequest(BaseModel):
    """
    Opens an editor session. Without a challenge the session is free play:
    runs work, submissions are rejected.
    """
    session_id: str
    challenge_id: Optional[str] = None


class LoadChallengeRequest(BaseModel):
    challenge_id: str


class SourceEdit(BaseModel):
    html: Optional[str] = None
    css: Optional[str] = None
    js: Optional[str] = None


class QuizAnswers(BaseModel):
    # question id -> selected option index
    answers: Dict[str, int]


class Selection(BaseModel):
    start: int
    end: int


class EditorSessionView(BaseModel):
    editor_id: str
    session_id: str
    challenge_id: Optional[str] = None
    state: RunState
    source: SourceBundle
    counters: AttemptCounters
    diagnostic: Optional[Diagnostic] = None
    selection: Optional[Selection] = None
    submitted: bool
    submitting: bool
    score: Optional[int] = None
    auto_run_pending: bool
