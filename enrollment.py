"""
Enrollment workflow.

The `enrollments` collection is authoritative. Course.enrolledStudents and the
student's enrolledCourses are mirrors kept in step with $addToSet/$pull, so repeating
a mirror write is harmless. A partial unique index (see database.ensure_indexes)
allows only one active enrollment per (course, student).

Writes are not wrapped in a transaction:
  * enroll writes the enrollment first, then the mirrors. A failed mirror write
    undoes what was written and raises Internal.
  * unenroll deletes the enrollment first, then pulls the mirrors. A failed mirror
    write raises Internal; calling unenroll again finishes the job.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import get_by_ids, new_id, now_utc
from errors import Conflict, Internal, NotFound, Unauthorized
from schemas import Enrollment

logger = logging.getLogger(__name__)

TEACHER_PUBLIC_FIELDS = {"username": 1, "email": 1, "fullName": 1}


def _get_course(db: Database, course_id: str) -> Dict[str, Any]:
    course = db["courses"].find_one({"_id": course_id})
    if not course:
        raise NotFound("Course not found")
    return course


def get_active_enrollment(db: Database, student_id: str, course_id: str) -> Optional[Dict[str, Any]]:
    return db["enrollments"].find_one({"courseId": course_id, "studentId": student_id, "status": "active"})


def _pull_mirrors(db: Database, student_id: str, course_id: str) -> None:
    db["courses"].update_one({"_id": course_id}, {"$pull": {"enrolledStudents": student_id}})
    db["accounts"].update_one({"_id": student_id}, {"$pull": {"enrolledCourses": course_id}})


def enroll(db: Database, student_id: str, course_id: str) -> Dict[str, Any]:
    _get_course(db, course_id)
    if get_active_enrollment(db, student_id, course_id):
        raise Conflict("Already enrolled in this course")

    doc = Enrollment(course_id=course_id, student_id=student_id, enrollment_date=now_utc()).model_dump(by_alias=True)
    doc["_id"] = new_id()
    doc["createdAt"] = doc["updatedAt"] = doc["enrollmentDate"]
    try:
        db["enrollments"].insert_one(doc)
    except DuplicateKeyError:
        # lost a race against a concurrent enroll for the same pair
        raise Conflict("Already enrolled in this course")

    try:
        db["courses"].update_one({"_id": course_id}, {"$addToSet": {"enrolledStudents": student_id}})
        db["accounts"].update_one({"_id": student_id}, {"$addToSet": {"enrolledCourses": course_id}})
    except PyMongoError:
        logger.exception("Enroll %s in %s failed after the enrollment was written; rolling back", student_id, course_id)
        try:
            db["enrollments"].delete_one({"_id": doc["_id"]})
            _pull_mirrors(db, student_id, course_id)
        except PyMongoError:
            logger.exception("Rollback of enrollment %s failed", doc["_id"])
        raise Internal("Failed to enroll in course")

    logger.info("Student %s enrolled in course %s", student_id, course_id)
    return doc


def unenroll(db: Database, student_id: str, course_id: str) -> None:
    _get_course(db, course_id)
    db["enrollments"].delete_one({"courseId": course_id, "studentId": student_id, "status": "active"})
    try:
        _pull_mirrors(db, student_id, course_id)
    except PyMongoError:
        logger.exception("Unenroll %s from %s left stale course/student lists", student_id, course_id)
        raise Internal("Failed to unenroll from course")
    logger.info("Student %s unenrolled from course %s", student_id, course_id)


def _close(db: Database, student_id: str, course_id: str, status: str) -> Dict[str, Any]:
    _get_course(db, course_id)
    updated = db["enrollments"].find_one_and_update(
        {"courseId": course_id, "studentId": student_id, "status": "active"},
        {"$set": {"status": status, "updatedAt": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFound("No active enrollment for this course")
    try:
        _pull_mirrors(db, student_id, course_id)
    except PyMongoError:
        logger.exception("Enrollment %s is %s but course/student lists are stale", updated["_id"], status)
        raise Internal(f"Failed to update enrollment to {status}")
    logger.info("Enrollment %s of student %s in course %s is now %s", updated["_id"], student_id, course_id, status)
    return updated


def drop(db: Database, student_id: str, course_id: str) -> Dict[str, Any]:
    return _close(db, student_id, course_id, "dropped")


def complete(db: Database, student_id: str, course_id: str, actor: Dict[str, Any]) -> Dict[str, Any]:
    """Mark a student's enrollment completed; only the course's teacher or an admin may."""
    course = _get_course(db, course_id)
    if actor.get("role") != "admin" and course.get("teacherId") != actor.get("_id"):
        raise Unauthorized("Not your course")
    return _close(db, student_id, course_id, "completed")


def mark_lesson_complete(db: Database, student_id: str, course_id: str, lesson_id: str) -> Dict[str, Any]:
    course = _get_course(db, course_id)
    if lesson_id not in (course.get("lessons") or []):
        raise NotFound("Lesson not found")
    enrollment = get_active_enrollment(db, student_id, course_id)
    if not enrollment:
        raise NotFound("No active enrollment for this course")

    lessons = db["lessons"]
    res = lessons.update_one(
        {"_id": lesson_id, "studentProgress.studentId": student_id},
        {"$set": {"studentProgress.$.completed": True}},
    )
    if res.matched_count == 0:
        res = lessons.update_one(
            {"_id": lesson_id},
            {"$push": {"studentProgress": {"studentId": student_id, "completed": True}}},
        )
        if res.matched_count == 0:
            raise NotFound("Lesson not found")
    return db["enrollments"].find_one_and_update(
        {"_id": enrollment["_id"]},
        {"$addToSet": {"completedLessons": lesson_id}, "$set": {"updatedAt": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )


def _own_progress(lesson: Dict[str, Any], student_id: str) -> Dict[str, Any]:
    """The lesson with `studentProgress` cut down to this student's entry."""
    progress = [p for p in lesson.get("studentProgress") or [] if p.get("studentId") == student_id]
    return {
        **lesson,
        "studentProgress": progress,
        "completed": any(p.get("completed") for p in progress),
    }


def list_enrolled_courses(
    db: Database, student_id: str, statuses: tuple = ("active",)
) -> List[Dict[str, Any]]:
    """Courses of the student's enrollments, populated with teacher, lessons and exams.

    Each course carries its `enrollment` record. Only active enrollments are
    considered unless `statuses` says otherwise.
    """
    enrollments = list(
        db["enrollments"].find({"studentId": student_id, "status": {"$in": list(statuses)}}).sort("enrollmentDate", 1)
    )
    by_course = {}
    for e in enrollments:
        by_course[e["courseId"]] = e
    courses = get_by_ids(db, "courses", list(by_course))

    result = []
    for course in courses:
        teacher = None
        if course.get("teacherId"):
            teacher = db["accounts"].find_one({"_id": course["teacherId"]}, TEACHER_PUBLIC_FIELDS)
        lessons = [
            _own_progress(lesson, student_id)
            for lesson in get_by_ids(db, "lessons", course.get("lessons") or [])
        ]
        result.append({
            **course,
            "teacher": teacher,
            "lessons": lessons,
            "exams": get_by_ids(db, "exams", course.get("exams") or []),
            "enrollment": by_course[course["_id"]],
        })
    return result


def list_available_courses(db: Database, student_id: str) -> List[Dict[str, Any]]:
    courses = list(db["courses"].find({"enrolledStudents": {"$ne": student_id}}).sort("startDate", 1))
    teacher_ids = list({c["teacherId"] for c in courses if c.get("teacherId")})
    teachers = {t["_id"]: t for t in db["accounts"].find({"_id": {"$in": teacher_ids}}, {"fullName": 1, "username": 1})}
    return [{**c, "teacher": teachers.get(c.get("teacherId"))} for c in courses]
