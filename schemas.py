"""
Database Schemas for the E-Learning Portal

Each Pydantic model corresponds to a MongoDB collection document (nested models are
sub-documents). Attributes are snake_case in Python and camelCase in the database and
on the wire; use `model_dump(by_alias=True)` to build a document.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["student", "teacher", "admin"]
EnrollmentStatus = Literal["active", "completed", "dropped"]
SubmissionType = Literal["file", "text"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Account(CamelModel):
    username: str = Field(..., min_length=1, description="Unique login name")
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="bcrypt hash")
    role: Role = Field("student", description="Account kind")
    full_name: Optional[str] = Field(None, description="Display name")
    is_active: bool = Field(True, description="False once deactivated")
    # student only
    enrolled_courses: Optional[List[str]] = None
    # teacher only
    courses: Optional[List[str]] = None

    @model_validator(mode="after")
    def role_lists(self):
        if self.role == "student" and self.enrolled_courses is None:
            self.enrolled_courses = []
        if self.role == "teacher" and self.courses is None:
            self.courses = []
        return self


class Course(CamelModel):
    title: str = Field(..., min_length=1)
    description: str
    category: str
    start_date: datetime
    end_date: datetime
    teacher_id: Optional[str] = Field(None, description="Owning teacher account id")
    enrolled_students: List[str] = Field(default_factory=list)
    lessons: List[str] = Field(default_factory=list)
    assignments: List[str] = Field(default_factory=list)
    quizzes: List[str] = Field(default_factory=list)
    exams: List[str] = Field(default_factory=list)

    @field_validator("start_date", "end_date")
    @classmethod
    def utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @model_validator(mode="after")
    def dates_in_order(self):
        if self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate")
        return self


class Enrollment(CamelModel):
    course_id: str
    student_id: str
    status: EnrollmentStatus = "active"
    enrollment_date: datetime
    completed_lessons: List[str] = Field(default_factory=list)


class LessonProgress(CamelModel):
    student_id: str
    completed: bool = False


class Lesson(CamelModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    course_id: str
    due_date: datetime
    teacher_id: Optional[str] = None
    student_progress: List[LessonProgress] = Field(default_factory=list)


class Submission(CamelModel):
    student_id: str
    file_url: Optional[str] = None
    submission_text: Optional[str] = None
    submission_type: SubmissionType = "text"
    submitted_at: datetime


class Assignment(CamelModel):
    title: str = Field(..., min_length=1)
    description: str
    course_id: str
    due_date: datetime
    file_required: bool = False
    total_score: Optional[float] = Field(None, gt=0)
    submissions: List[Submission] = Field(default_factory=list)


class Question(CamelModel):
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_answer: int = Field(..., ge=0, description="Index into options")

    @model_validator(mode="after")
    def answer_is_an_option(self):
        if self.correct_answer >= len(self.options):
            raise ValueError("correctAnswer must index one of the options")
        return self


class Exam(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    course_id: str
    questions: List[Question] = Field(default_factory=list)
    total_score: float = Field(..., gt=0)
    due_date: datetime


class ExamResult(CamelModel):
    exam_id: str
    student_id: str
    score: float = Field(..., ge=0, allow_inf_nan=False)
    submitted_at: datetime
