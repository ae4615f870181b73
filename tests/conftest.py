from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient
from passlib.hash import bcrypt

import database
import main
from schemas import Account, Course


@pytest.fixture
def db():
    client = mongomock.MongoClient(tz_aware=True)
    mock_db = client["elearning_test"]
    database.ensure_indexes(mock_db)
    return mock_db


@pytest.fixture
def client(db):
    main.app.dependency_overrides[database.get_db] = lambda: db
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


def make_account(db, username, role="student", password="secret123", _id=None):
    account = Account(
        username=username,
        email=f"{username}@example.com",
        password_hash=bcrypt.using(rounds=4).hash(password),
        role=role,
        full_name=username.title(),
    )
    data = account.model_dump(by_alias=True, exclude_none=True)
    if _id:
        data["_id"] = _id
    return database.create_document(db, "accounts", data)


def make_course(db, title="Algebra", teacher=None, start=None, end=None, _id=None):
    course = Course(
        title=title,
        description=f"{title} course",
        category="math",
        start_date=start or datetime(2020, 1, 1, tzinfo=timezone.utc),
        end_date=end or datetime(2040, 1, 1, tzinfo=timezone.utc),
        teacher_id=teacher["_id"] if teacher else None,
    )
    data = course.model_dump(by_alias=True)
    if _id:
        data["_id"] = _id
    doc = database.create_document(db, "courses", data)
    if teacher:
        db["accounts"].update_one({"_id": teacher["_id"]}, {"$addToSet": {"courses": doc["_id"]}})
    return doc


def auth(user):
    return {"Authorization": f"Bearer {main.create_token(user)}"}


@pytest.fixture
def student(db):
    return make_account(db, "stella")


@pytest.fixture
def teacher(db):
    return make_account(db, "tom", role="teacher")


@pytest.fixture
def admin(db):
    return make_account(db, "ada", role="admin")


@pytest.fixture
def course(db, teacher):
    return make_course(db, teacher=teacher)


EXAM_BODY = {
    "title": "Midterm",
    "description": "Chapters 1-4",
    "questions": [
        {"question": "1 + 1", "options": ["1", "2", "3"], "correctAnswer": 1},
        {"question": "2 * 3", "options": ["6", "5"], "correctAnswer": 0},
        {"question": "9 / 3", "options": ["2", "3", "4"], "correctAnswer": 1},
        {"question": "5 - 5", "options": ["0", "1"], "correctAnswer": 0},
    ],
    "totalScore": 100,
    "dueDate": "2039-06-01T09:00:00Z",
}
