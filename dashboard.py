"""Student dashboard figures derived from the populated enrolled-course list."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from database import as_utc, now_utc


def _when(doc: Dict[str, Any], key: str) -> Optional[datetime]:
    value = doc.get(key)
    return as_utc(value) if isinstance(value, datetime) else None


def next_exam(courses: List[Dict[str, Any]], now: datetime) -> Optional[Dict[str, Any]]:
    upcoming = []
    for course in courses:
        for exam in course.get("exams") or []:
            due = _when(exam, "dueDate")
            if due and due > now:
                upcoming.append((due, {**exam, "courseTitle": course.get("title")}))
    if not upcoming:
        return None
    return min(upcoming, key=lambda pair: pair[0])[1]


def latest_lesson(courses: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    lessons = [
        (_when(lesson, "createdAt"), {**lesson, "courseTitle": course.get("title")})
        for course in courses
        for lesson in course.get("lessons") or []
        if _when(lesson, "createdAt")
    ]
    if not lessons:
        return None
    return max(lessons, key=lambda pair: pair[0])[1]


def summarize(courses: List[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) if now else now_utc()
    active = [c for c in courses if (c.get("enrollment") or {}).get("status", "active") == "active"]
    finished = [c for c in courses if (c.get("enrollment") or {}).get("status") == "completed"]
    upcoming = [c for c in active if (_when(c, "startDate") or now) > now]
    return {
        "enrolledCourses": len(active),
        "upcomingCourses": len(upcoming),
        "finishedCourses": len(finished),
        "nextExam": next_exam(active, now),
        "latestLesson": latest_lesson(active),
    }
