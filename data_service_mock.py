"""
In-memory Data Service for local development and tests.
Seeded with a few challenges and quiz questions; nothing survives a restart.
"""
import copy
import uuid
from typing import Any, Dict, List, Optional

from data_service import DataService, DataServiceError, CHALLENGES, QUIZ_QUESTIONS, USER_PROGRESS
from logger import playground_logger

SEED_CHALLENGES = [
    {
        "id": "html-first-heading",
        "title": "Your First Heading",
        "description": "Add an <h1> that says 'Welcome' and a paragraph below it.",
        "level": "beginner",
        "category": "html",
        "starter_html": "<h1></h1>\n<p></p>",
        "starter_css": "",
        "starter_js": "",
        "reference_image_url": "",
        "order_index": 1,
    },
    {
        "id": "css-centered-card",
        "title": "Centered Card",
        "description": "Center the .card element and give it a soft shadow.",
        "level": "beginner",
        "category": "css",
        "starter_html": '<div class="card">Hello</div>',
        "starter_css": ".card {\n  padding: 16px;\n}",
        "starter_js": "",
        "reference_image_url": "",
        "order_index": 2,
    },
    {
        "id": "js-click-counter",
        "title": "Click Counter",
        "description": "Increase the number shown in #count every time the button is clicked.",
        "level": "intermediate",
        "category": "javascript",
        "starter_html": '<button id="add">Add</button>\n<span id="count">0</span>',
        "starter_css": "",
        "starter_js": "const button = document.getElementById('add');\n",
        "reference_image_url": "",
        "order_index": 1,
    },
    {
        "id": "mixed-todo-list",
        "title": "Todo List",
        "description": "Build a list where typed items are appended on Enter.",
        "level": "advanced",
        "category": "mixed",
        "starter_html": '<input id="item">\n<ul id="items"></ul>',
        "starter_css": "ul {\n  list-style: square;\n}",
        "starter_js": "",
        "reference_image_url": "",
        "order_index": 1,
    },
]

SEED_QUIZ_QUESTIONS = [
    {
        "id": "html-1",
        "category": "html",
        "question": "Which element holds the largest heading?",
        "options": ["<head>", "<h6>", "<h1>", "<header>"],
        "correct_answer": 2,
        "order_index": 1,
    },
    {
        "id": "html-2",
        "category": "html",
        "question": "Which element is a void element?",
        "options": ["<div>", "<br>", "<span>", "<p>"],
        "correct_answer": 1,
        "order_index": 2,
    },
    {
        "id": "css-1",
        "category": "css",
        "question": "Which property changes the text color?",
        "options": ["color", "font-color", "text-color", "background"],
        "correct_answer": 0,
        "order_index": 1,
    },
    {
        "id": "mixed-1",
        "category": "mixed",
        "question": "Where does a <style> block belong?",
        "options": ["<body> only", "<head>", "<footer>", "Inside <script>"],
        "correct_answer": 1,
        "order_index": 1,
    },
]


class InMemoryDataService(DataService):
    """
    Dictionary-backed collections with the same filter/order semantics as PostgREST
    (equality filters, ascending order). Set `fail_inserts` to simulate an outage.
    """

    def __init__(self, seed: bool = True):
        self.collections: Dict[str, List[dict]] = {
            CHALLENGES: copy.deepcopy(SEED_CHALLENGES) if seed else [],
            QUIZ_QUESTIONS: copy.deepcopy(SEED_QUIZ_QUESTIONS) if seed else [],
            USER_PROGRESS: [],
        }
        self.fail_inserts = False

    async def select(self, collection: str, filters: Optional[Dict[str, Any]] = None, order: Optional[str] = None) -> List[dict]:
        rows = [
            row for row in self.collections.get(collection, [])
            if all(row.get(column) == value for column, value in (filters or {}).items())
        ]
        if order:
            rows.sort(key=lambda row: row.get(order, 0))
        return copy.deepcopy(rows)

    async def insert(self, collection: str, rows: List[dict]) -> List[dict]:
        if self.fail_inserts:
            playground_logger.error(f"❌ Mock data service refused insert into {collection}")
            raise DataServiceError("Mock data service is unavailable")

        stored = []
        for row in rows:
            row = dict(row, id=row.get("id") or str(uuid.uuid4()))
            self.collections.setdefault(collection, []).append(row)
            stored.append(copy.deepcopy(row))
        playground_logger.info(f"Using MOCK data service: stored {len(stored)} row(s) in {collection}")
        return stored
