import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Literal, Any, Dict

import jwt
from fastapi import FastAPI, Depends, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from passlib.hash import bcrypt
from pydantic import EmailStr, Field, ValidationError as SchemaError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import dashboard
import database
import enrollment
from database import as_utc, create_document, get_by_ids, get_db, get_documents, now_utc, serialize_doc
from errors import CODES_BY_STATUS, AppError, Conflict, Internal, NotFound, Unauthorized, ValidationError
from grading import UNANSWERED, ExamAttempt, NoQuestionsError, percentage
from schemas import Account, Assignment, CamelModel, Course, Exam, ExamResult, Lesson, Question, Role, Submission

logger = logging.getLogger(__name__)


def setup_logging():
    """Attach a stdout handler to the root logger once."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root_logger.addHandler(handler)
        root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


setup_logging()

app = FastAPI(title="E-Learning Portal API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Utils
# ----------------------
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
JWT_EXP_MIN = int(os.getenv("JWT_EXP_MIN", "1440"))


def error_response(status_code: int, message: str, code: Optional[str] = None) -> JSONResponse:
    if code is None:
        code = CODES_BY_STATUS.get(status_code, Internal.code if status_code >= 500 else "http_error")
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message, exc.code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return error_response(400, "Invalid request")
    first = errors[0]
    where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return error_response(400, f"{where}: {message}" if where else message)


@app.exception_handler(SchemaError)
async def schema_error_handler(request: Request, exc: SchemaError):
    first = exc.errors()[0] if exc.errors() else {}
    return error_response(400, first.get("msg", "Invalid value"))


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return error_response(Conflict.status_code, "Duplicate record", Conflict.code)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(500, "Database error")


# ----------------------
# Auth Models
# ----------------------
class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Role = "student"
    full_name: Optional[str] = None


class AccountCreate(CamelModel):
    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class AuthResponse(CamelModel):
    token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class ProfileUpdate(CamelModel):
    full_name: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)


# Teacher models
class LessonCreate(CamelModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    due_date: datetime


class AssignmentCreate(CamelModel):
    title: str = Field(..., min_length=1)
    description: str
    due_date: datetime
    file_required: bool = False
    total_score: Optional[float] = Field(None, gt=0)


class ExamCreate(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    questions: List[Question] = Field(default_factory=list)
    total_score: float = Field(..., gt=0)
    due_date: datetime


# Student models
class SubmissionCreate(CamelModel):
    file_url: Optional[str] = None
    submission_text: Optional[str] = None
    submission_type: Optional[Literal["file", "text"]] = None


class ExamSubmission(CamelModel):
    score: Optional[float] = None
    answers: Optional[List[int]] = None


# Admin models
class CourseCreate(CamelModel):
    title: str = Field(..., min_length=1)
    description: str
    category: str
    start_date: datetime
    end_date: datetime
    teacher_id: Optional[str] = None


class TeacherAssignment(CamelModel):
    teacher_id: Optional[str] = None


class ActiveUpdate(CamelModel):
    is_active: bool


# ----------------------
# Auth helpers
# ----------------------

def create_token(user: dict) -> str:
    payload = {
        "id": str(user["_id"]),
        "role": user.get("role", "student"),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=JWT_EXP_MIN),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> dict:
    """Decode a bearer token into {id, role}."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")
    if not payload.get("id") or not payload.get("role"):
        raise Unauthorized("Invalid token")
    return {"id": payload["id"], "role": payload["role"]}


def get_current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> dict:
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Invalid token")
    identity = verify_token(token.strip())
    user = db["accounts"].find_one({"_id": identity["id"]})
    if not user or user.get("role") != identity["role"]:
        raise Unauthorized("Invalid token")
    if not user.get("isActive", True):
        raise Unauthorized("Account is deactivated")
    return user


def require_role(user: dict, roles: List[str]):
    if user.get("role") not in roles:
        raise Unauthorized("Unauthorized")


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "username": user.get("username"),
        "email": user.get("email"),
        "role": user.get("role"),
        "fullName": user.get("fullName"),
    }


def create_account(db: Database, username: str, email: str, password: str, role: str, full_name: Optional[str] = None) -> dict:
    existing = db["accounts"].find_one({"$or": [{"email": email}, {"username": username}]})
    if existing:
        raise Conflict("User already exists")
    account = Account(
        username=username,
        email=email,
        password_hash=bcrypt.hash(password),
        role=role,
        full_name=full_name,
    )
    try:
        doc = create_document(db, "accounts", account.model_dump(by_alias=True, exclude_none=True))
    except DuplicateKeyError:
        raise Conflict("User already exists")
    logger.info("Registered %s account %s", role, doc["_id"])
    return doc


def get_owned_course(db: Database, course_id: str, user: dict) -> dict:
    course = db["courses"].find_one({"_id": course_id})
    if not course:
        raise NotFound("Course not found")
    if user.get("role") == "teacher" and course.get("teacherId") != user["_id"]:
        raise Unauthorized("Not your course")
    return course


def get_teacher(db: Database, teacher_id: str) -> dict:
    teacher = db["accounts"].find_one({"_id": teacher_id, "role": "teacher"})
    if not teacher:
        raise ValidationError("Invalid teacher")
    return teacher


def with_teacher(db: Database, course: dict) -> dict:
    teacher = None
    if course.get("teacherId"):
        teacher = db["accounts"].find_one({"_id": course["teacherId"]}, {"username": 1, "email": 1, "fullName": 1})
    return serialize_doc({**course, "teacher": teacher})


# ----------------------
# Startup: indexes, seed admin
# ----------------------
@app.on_event("startup")
def prepare_database():
    db = database.db
    # If DB is not configured, skip so the app can start
    if db is None:
        logger.warning("DATABASE_URL not set; running without a database")
        return
    try:
        database.ensure_indexes(db)
        admin_email = os.getenv("ADMIN_EMAIL", "admin@portal.com")
        admin_pass = os.getenv("ADMIN_PASSWORD", "admin123")
        if not db["accounts"].find_one({"email": admin_email}):
            create_account(db, "admin", admin_email, admin_pass, "admin", "Administrator")
    except (PyMongoError, AppError):
        logger.exception("Database preparation failed")


# ----------------------
# Basic routes
# ----------------------
@app.get("/")
def root():
    return {"message": "E-Learning Portal API running"}


# ----------------------
# Auth endpoints
# ----------------------
@app.post("/api/auth/register", response_model=AuthResponse)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    if payload.role == "admin":
        raise ValidationError("Cannot self-register as admin")
    user = create_account(db, payload.username, payload.email, payload.password, payload.role, payload.full_name)
    return AuthResponse(token=create_token(user), user=public_user(user))


@app.post("/api/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["accounts"].find_one({"email": payload.email})
    if not user or not bcrypt.verify(payload.password, user.get("passwordHash", "")):
        raise Unauthorized("Invalid credentials")
    if not user.get("isActive", True):
        raise Unauthorized("Account is deactivated")
    return AuthResponse(token=create_token(user), user=public_user(user))


@app.get("/api/auth/me")
def me(current=Depends(get_current_user)):
    return serialize_doc(current)


@app.patch("/api/auth/me")
def update_me(update: ProfileUpdate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    data = {}
    if update.full_name is not None:
        data["fullName"] = update.full_name
    # rehash only when the password actually changes
    if update.password is not None and not bcrypt.verify(update.password, current.get("passwordHash", "")):
        data["passwordHash"] = bcrypt.hash(update.password)
    if not data:
        return serialize_doc(current)
    data["updatedAt"] = now_utc()
    db["accounts"].update_one({"_id": current["_id"]}, {"$set": data})
    return serialize_doc(db["accounts"].find_one({"_id": current["_id"]}))


# ----------------------
# Course content (public)
# ----------------------
@app.get("/api/courses/{course_id}/lessons")
def course_lessons(course_id: str, db: Database = Depends(get_db)):
    course = db["courses"].find_one({"_id": course_id})
    if not course:
        raise NotFound("Course not found")
    lessons = get_by_ids(db, "lessons", course.get("lessons") or [])
    return {"lessons": [serialize_doc(lesson) for lesson in lessons]}


@app.get("/api/courses/{course_id}/assignments")
def course_assignments(course_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    course = db["courses"].find_one({"_id": course_id})
    if not course:
        raise NotFound("Course not found")
    assignments = get_by_ids(db, "assignments", course.get("assignments") or [])
    # students only see their own submissions
    if current["role"] == "student":
        assignments = [
            {**a, "submissions": [s for s in a.get("submissions") or [] if s.get("studentId") == current["_id"]]}
            for a in assignments
        ]
    return {"assignments": [serialize_doc(a) for a in assignments]}


# ----------------------
# Student endpoints
# ----------------------
@app.get("/api/student/available-courses")
def available_courses(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    courses = enrollment.list_available_courses(db, current["_id"])
    return {"courses": [serialize_doc(c) for c in courses]}


@app.get("/api/student/enrolled-courses")
def enrolled_courses(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    courses = enrollment.list_enrolled_courses(db, current["_id"])
    return {"courses": [serialize_doc(c) for c in courses]}


@app.post("/api/student/enroll/{course_id}")
def enroll_course(course_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    record = enrollment.enroll(db, current["_id"], course_id)
    return {"message": "Successfully enrolled in course", "enrollment": serialize_doc(record)}


@app.delete("/api/student/enroll/{course_id}")
def unenroll_course(course_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    enrollment.unenroll(db, current["_id"], course_id)
    return {"message": "Successfully unenrolled from course"}


@app.post("/api/student/enroll/{course_id}/drop")
def drop_course(course_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    record = enrollment.drop(db, current["_id"], course_id)
    return {"message": "Course dropped", "enrollment": serialize_doc(record)}


@app.post("/api/student/courses/{course_id}/lessons/{lesson_id}/complete")
def complete_lesson(course_id: str, lesson_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    record = enrollment.mark_lesson_complete(db, current["_id"], course_id, lesson_id)
    return {"message": "Lesson marked as completed", "enrollment": serialize_doc(record)}


def grade_submission(exam: dict, body: ExamSubmission) -> float:
    """Score from the submitted answers when present, otherwise the client's score."""
    questions = exam.get("questions") or []
    if not questions:
        raise NoQuestionsError()
    if body.answers is not None:
        if len(body.answers) != len(questions):
            raise ValidationError(f"Expected {len(questions)} answers, got {len(body.answers)}")
        attempt = ExamAttempt(exam).start()
        for index, option in enumerate(body.answers):
            if option != UNANSWERED:
                attempt.select_answer(index, option)
        return attempt.submit()
    if body.score is None:
        raise ValidationError("score or answers is required")
    if not 0 <= body.score <= exam["totalScore"]:
        raise ValidationError(f"score must be between 0 and {exam['totalScore']}")
    return body.score


@app.post("/api/student/exams/{exam_id}/submit")
def submit_exam(exam_id: str, body: ExamSubmission, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    exam = db["exams"].find_one({"_id": exam_id})
    if not exam:
        raise NotFound("Exam not found")
    score = grade_submission(exam, body)
    result = ExamResult(exam_id=exam_id, student_id=current["_id"], score=score, submitted_at=now_utc())
    doc = create_document(db, "examresults", result.model_dump(by_alias=True))
    logger.info("Student %s submitted exam %s with score %s", current["_id"], exam_id, score)
    return {
        "message": "Exam submitted successfully",
        "result": {**serialize_doc(doc), "percentage": percentage(score, exam["totalScore"])},
    }


@app.get("/api/student/examresults")
def my_exam_results(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    results = get_documents(db, "examresults", {"studentId": current["_id"]}, sort=[("submittedAt", -1)])
    exams = {e["_id"]: e for e in db["exams"].find({"_id": {"$in": list({r["examId"] for r in results})}})}
    out = []
    for r in results:
        exam = exams.get(r["examId"]) or {}
        out.append({
            **serialize_doc(r),
            "examTitle": exam.get("title"),
            "totalScore": exam.get("totalScore"),
            "percentage": percentage(r["score"], exam.get("totalScore") or 0),
        })
    return {"results": out}


@app.post("/api/student/assignments/{assignment_id}/submit")
def submit_assignment(assignment_id: str, body: SubmissionCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    assignment = db["assignments"].find_one({"_id": assignment_id})
    if not assignment:
        raise NotFound("Assignment not found")
    if assignment.get("fileRequired") and not body.file_url:
        raise ValidationError("This assignment requires a file")
    if not body.file_url and not body.submission_text:
        raise ValidationError("fileUrl or submissionText is required")
    submission = Submission(
        student_id=current["_id"],
        file_url=body.file_url,
        submission_text=body.submission_text,
        submission_type=body.submission_type or ("file" if body.file_url else "text"),
        submitted_at=now_utc(),
    )
    db["assignments"].update_one(
        {"_id": assignment_id},
        {"$push": {"submissions": submission.model_dump(by_alias=True)}, "$set": {"updatedAt": now_utc()}},
    )
    updated = db["assignments"].find_one({"_id": assignment_id})
    return {"message": "Assignment submitted successfully", "assignment": serialize_doc(updated)}


@app.get("/api/student/dashboard")
def student_dashboard(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["student"])
    courses = enrollment.list_enrolled_courses(db, current["_id"], statuses=("active", "completed"))
    summary = dashboard.summarize(courses)
    return {
        **summary,
        "totalCourses": db["courses"].count_documents({}),
        "nextExam": serialize_doc(summary["nextExam"]),
        "latestLesson": serialize_doc(summary["latestLesson"]),
    }


# ----------------------
# Teacher endpoints
# ----------------------
def course_content(db: Database, course: dict) -> dict:
    return {
        **serialize_doc(course),
        "lessons": [serialize_doc(x) for x in get_by_ids(db, "lessons", course.get("lessons") or [])],
        "assignments": [serialize_doc(x) for x in get_by_ids(db, "assignments", course.get("assignments") or [])],
        "exams": [serialize_doc(x) for x in get_by_ids(db, "exams", course.get("exams") or [])],
    }


@app.get("/api/teacher/courses")
def my_courses(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    q = {}
    if current["role"] == "teacher":
        q = {"teacherId": current["_id"]}
    courses = get_documents(db, "courses", q, sort=[("createdAt", -1)])
    return {"courses": [course_content(db, c) for c in courses]}


@app.get("/api/teacher/courses/{course_id}")
def my_course(course_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    course = get_owned_course(db, course_id, current)
    students = get_by_ids(db, "accounts", course.get("enrolledStudents") or [], {"username": 1, "email": 1, "fullName": 1})
    return {**course_content(db, course), "enrolledStudents": [serialize_doc(s) for s in students]}


@app.post("/api/teacher/courses/{course_id}/lessons", status_code=201)
def create_lesson(course_id: str, body: LessonCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    get_owned_course(db, course_id, current)
    lesson = Lesson(course_id=course_id, teacher_id=current["_id"], **body.model_dump())
    doc = create_document(db, "lessons", lesson.model_dump(by_alias=True))
    db["courses"].update_one({"_id": course_id}, {"$push": {"lessons": doc["_id"]}})
    return serialize_doc(doc)


@app.put("/api/teacher/courses/{course_id}/lessons/{lesson_id}")
def update_lesson(course_id: str, lesson_id: str, body: LessonCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    get_owned_course(db, course_id, current)
    res = db["lessons"].update_one(
        {"_id": lesson_id, "courseId": course_id},
        {"$set": {"title": body.title, "content": body.content, "dueDate": body.due_date, "updatedAt": now_utc()}},
    )
    if res.matched_count == 0:
        raise NotFound("Lesson not found")
    return serialize_doc(db["lessons"].find_one({"_id": lesson_id}))


@app.post("/api/teacher/courses/{course_id}/assignments", status_code=201)
def create_assignment(course_id: str, body: AssignmentCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    get_owned_course(db, course_id, current)
    assignment = Assignment(course_id=course_id, **body.model_dump())
    doc = create_document(db, "assignments", assignment.model_dump(by_alias=True))
    db["courses"].update_one({"_id": course_id}, {"$push": {"assignments": doc["_id"]}})
    return serialize_doc(doc)


@app.get("/api/teacher/courses/{course_id}/assignments/{assignment_id}/submissions")
def list_submissions(course_id: str, assignment_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    get_owned_course(db, course_id, current)
    assignment = db["assignments"].find_one({"_id": assignment_id, "courseId": course_id})
    if not assignment:
        raise NotFound("Assignment not found")
    submissions = assignment.get("submissions") or []
    students = {
        s["_id"]: s
        for s in db["accounts"].find({"_id": {"$in": list({x["studentId"] for x in submissions})}}, {"username": 1, "fullName": 1, "email": 1})
    }
    return {
        "assignment": {"id": assignment["_id"], "title": assignment.get("title")},
        "submissions": [serialize_doc({**s, "student": students.get(s["studentId"])}) for s in submissions],
    }


@app.post("/api/teacher/courses/{course_id}/exams", status_code=201)
def create_exam(course_id: str, body: ExamCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher"])
    get_owned_course(db, course_id, current)
    exam = Exam(course_id=course_id, **body.model_dump())
    doc = create_document(db, "exams", exam.model_dump(by_alias=True))
    db["courses"].update_one({"_id": course_id}, {"$push": {"exams": doc["_id"]}})
    logger.info("Exam %s created in course %s", doc["_id"], course_id)
    return {"message": "Exam created successfully", "exam": serialize_doc(doc)}


@app.put("/api/teacher/courses/{course_id}/exams/{exam_id}")
def update_exam(course_id: str, exam_id: str, body: ExamCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher"])
    get_owned_course(db, course_id, current)
    exam = Exam(course_id=course_id, **body.model_dump()).model_dump(by_alias=True)
    exam["updatedAt"] = now_utc()
    res = db["exams"].update_one({"_id": exam_id, "courseId": course_id}, {"$set": exam})
    if res.matched_count == 0:
        raise NotFound("Exam not found")
    return serialize_doc(db["exams"].find_one({"_id": exam_id}))


@app.delete("/api/teacher/courses/{course_id}/exams/{exam_id}")
def delete_exam(course_id: str, exam_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher"])
    get_owned_course(db, course_id, current)
    res = db["exams"].delete_one({"_id": exam_id, "courseId": course_id})
    if res.deleted_count == 0:
        raise NotFound("Exam not found")
    db["courses"].update_one({"_id": course_id}, {"$pull": {"exams": exam_id}})
    logger.info("Exam %s deleted from course %s", exam_id, course_id)
    return {"message": "Exam deleted successfully"}


@app.get("/api/teacher/exams/{exam_id}/results")
def exam_results(exam_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    exam = db["exams"].find_one({"_id": exam_id})
    if not exam:
        raise NotFound("Exam not found")
    get_owned_course(db, exam["courseId"], current)
    results = get_documents(db, "examresults", {"examId": exam_id}, sort=[("submittedAt", -1)])
    students = {
        s["_id"]: s
        for s in db["accounts"].find({"_id": {"$in": list({r["studentId"] for r in results})}}, {"username": 1, "fullName": 1})
    }
    return {
        "results": [
            {
                **serialize_doc(r),
                "student": serialize_doc(students.get(r["studentId"])),
                "percentage": percentage(r["score"], exam["totalScore"]),
            }
            for r in results
        ]
    }


@app.post("/api/teacher/courses/{course_id}/enrollments/{student_id}/complete")
def complete_enrollment(course_id: str, student_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    record = enrollment.complete(db, student_id, course_id, current)
    return {"message": "Enrollment completed", "enrollment": serialize_doc(record)}


# ----------------------
# Admin endpoints
# ----------------------
def reassign_teacher(db: Database, course: dict, teacher_id: Optional[str]) -> dict:
    """Point `course` at `teacher_id` (or none) keeping Teacher.courses mirrored."""
    if teacher_id:
        get_teacher(db, teacher_id)
    previous = course.get("teacherId")
    if previous and previous != teacher_id:
        db["accounts"].update_one({"_id": previous}, {"$pull": {"courses": course["_id"]}})
    if teacher_id:
        db["courses"].update_one({"_id": course["_id"]}, {"$set": {"teacherId": teacher_id, "updatedAt": now_utc()}})
        db["accounts"].update_one({"_id": teacher_id}, {"$addToSet": {"courses": course["_id"]}})
    else:
        db["courses"].update_one({"_id": course["_id"]}, {"$unset": {"teacherId": ""}, "$set": {"updatedAt": now_utc()}})
    return db["courses"].find_one({"_id": course["_id"]})


@app.get("/api/admin/courses")
def admin_courses(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    courses = get_documents(db, "courses", sort=[("createdAt", -1)])
    return {"courses": [with_teacher(db, c) for c in courses]}


@app.post("/api/admin/courses", status_code=201)
def admin_create_course(body: CourseCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    if body.teacher_id:
        get_teacher(db, body.teacher_id)
    course = Course(**body.model_dump())
    doc = create_document(db, "courses", course.model_dump(by_alias=True))
    if body.teacher_id:
        db["accounts"].update_one({"_id": body.teacher_id}, {"$addToSet": {"courses": doc["_id"]}})
    logger.info("Course %s created", doc["_id"])
    return {"message": "Course created successfully", "course": with_teacher(db, doc)}


@app.get("/api/admin/courses/{course_id}")
def admin_get_course(course_id: str, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    course = db["courses"].find_one({"_id": course_id})
    if not course:
        raise NotFound("Course not found")
    return with_teacher(db, course)


@app.put("/api/admin/courses/{course_id}")
def admin_update_course(course_id: str, body: CourseCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    course = db["courses"].find_one({"_id": course_id})
    if not course:
        raise NotFound("Course not found")
    fields = Course(**body.model_dump())
    if fields.teacher_id:
        get_teacher(db, fields.teacher_id)
    db["courses"].update_one(
        {"_id": course_id},
        {"$set": {
            "title": fields.title,
            "description": fields.description,
            "category": fields.category,
            "startDate": fields.start_date,
            "endDate": fields.end_date,
            "updatedAt": now_utc(),
        }},
    )
    # an omitted teacherId keeps the current teacher
    if "teacher_id" in body.model_fields_set:
        updated = reassign_teacher(db, course, body.teacher_id)
    else:
        updated = db["courses"].find_one({"_id": course_id})
    return {"message": "Course updated successfully", "course": with_teacher(db, updated)}


@app.patch("/api/admin/courses/{course_id}/teacher")
def admin_assign_teacher(course_id: str, body: TeacherAssignment, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    course = db["courses"].find_one({"_id": course_id})
    if not course:
        raise NotFound("Course not found")
    updated = reassign_teacher(db, course, body.teacher_id)
    return {"message": "Course updated successfully", "course": with_teacher(db, updated)}


@app.get("/api/admin/users")
def list_users(role: Optional[Role] = None, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    q = {"role": role} if role else {}
    users = get_documents(db, "accounts", q, sort=[("createdAt", -1)])
    return {"users": [serialize_doc(u) for u in users]}


@app.patch("/api/admin/users/{user_id}/active")
def set_user_active(user_id: str, body: ActiveUpdate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    user = db["accounts"].find_one({"_id": user_id})
    if not user:
        raise NotFound("User not found")
    if user.get("role") == "admin":
        raise ValidationError("Admin accounts cannot be deactivated")
    db["accounts"].update_one({"_id": user_id}, {"$set": {"isActive": body.is_active, "updatedAt": now_utc()}})
    logger.info("Account %s isActive=%s", user_id, body.is_active)
    return serialize_doc(db["accounts"].find_one({"_id": user_id}))


@app.post("/api/admin/register-teacher", status_code=201)
def register_teacher(body: AccountCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    user = create_account(db, body.username, body.email, body.password, "teacher", body.full_name)
    return {"message": "Teacher registered successfully", "user": public_user(user)}


@app.post("/api/admin/register-admin", status_code=201)
def register_admin(body: AccountCreate, current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    user = create_account(db, body.username, body.email, body.password, "admin", body.full_name)
    return {"message": "Admin registered successfully", "user": public_user(user)}


@app.get("/api/admin/dashboard")
def stats(current=Depends(get_current_user), db: Database = Depends(get_db)):
    require_role(current, ["admin"])
    now = now_utc()
    courses = get_documents(db, "courses", projection={"startDate": 1, "endDate": 1})
    return {
        "students": db["accounts"].count_documents({"role": "student"}),
        "teachers": db["accounts"].count_documents({"role": "teacher"}),
        "admins": db["accounts"].count_documents({"role": "admin"}),
        "courses": len(courses),
        "activeCourses": sum(1 for c in courses if as_utc(c["startDate"]) <= now <= as_utc(c["endDate"])),
        "activeEnrollments": db["enrollments"].count_documents({"status": "active"}),
        "exams": db["exams"].count_documents({}),
        "examResults": db["examresults"].count_documents({}),
        "assignments": db["assignments"].count_documents({}),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
