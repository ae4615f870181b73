from datetime import datetime, timedelta, timezone

import jwt

import main
from conftest import EXAM_BODY, auth, make_account, make_course


def create_exam(client, course, teacher, body=EXAM_BODY):
    resp = client.post(f"/api/teacher/courses/{course['_id']}/exams", json=body, headers=auth(teacher))
    assert resp.status_code == 201, resp.text
    return resp.json()["exam"]


def test_root_is_the_only_route_outside_api(client):
    assert client.get("/").json() == {"message": "E-Learning Portal API running"}
    resp = client.get("/test")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found", "code": "not_found"}


# ----------------------
# Auth
# ----------------------
def test_register_and_login(client, db):
    resp = client.post("/api/auth/register", json={
        "username": "newbie",
        "email": "newbie@example.com",
        "password": "secret123",
        "fullName": "New Bie",
    })
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["user"]["role"] == "student"
    assert data["token"]

    stored = db["accounts"].find_one({"username": "newbie"})
    assert stored["passwordHash"] != "secret123"
    assert stored["enrolledCourses"] == []

    resp = client.post("/api/auth/login", json={"email": "newbie@example.com", "password": "secret123"})
    assert resp.status_code == 200
    assert resp.json()["user"]["username"] == "newbie"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {resp.json()['token']}"}).json()
    assert me["username"] == "newbie"
    assert "passwordHash" not in me


def test_register_duplicate_account(client, student):
    resp = client.post("/api/auth/register", json={
        "username": "someone",
        "email": student["email"],
        "password": "secret123",
    })
    assert resp.status_code == 400
    assert resp.json() == {"error": "User already exists", "code": "conflict"}


def test_register_as_admin_is_refused(client):
    resp = client.post("/api/auth/register", json={
        "username": "sneaky",
        "email": "sneaky@example.com",
        "password": "secret123",
        "role": "admin",
    })
    assert resp.status_code == 400


def test_login_with_wrong_password(client, student):
    resp = client.post("/api/auth/login", json={"email": student["email"], "password": "wrong-pass"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid credentials"


def test_missing_and_bad_tokens(client):
    assert client.get("/api/student/enrolled-courses").json()["error"] == "Missing Authorization header"
    resp = client.get("/api/student/enrolled-courses", headers={"Authorization": "Bearer junk"})
    assert resp.status_code == 401


def test_expired_token(client, student):
    token = jwt.encode(
        {"id": student["_id"], "role": "student", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        main.SECRET_KEY,
        algorithm="HS256",
    )
    resp = client.get("/api/student/enrolled-courses", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Token expired"


def test_role_mismatch_is_unauthorized(client, teacher, course):
    resp = client.post(f"/api/student/enroll/{course['_id']}", headers=auth(teacher))
    assert resp.status_code == 401


def test_deactivated_account_is_rejected(client, db, admin, teacher):
    resp = client.patch(f"/api/admin/users/{teacher['_id']}/active", json={"isActive": False}, headers=auth(admin))
    assert resp.status_code == 200
    assert resp.json()["isActive"] is False
    assert client.get("/api/teacher/courses", headers=auth(teacher)).status_code == 401
    resp = client.post("/api/auth/login", json={"email": teacher["email"], "password": "secret123"})
    assert resp.status_code == 401


def test_update_profile_rehashes_only_on_change(client, db, student):
    before = db["accounts"].find_one({"_id": student["_id"]})["passwordHash"]
    resp = client.patch("/api/auth/me", json={"fullName": "Stella S", "password": "secret123"}, headers=auth(student))
    assert resp.json()["fullName"] == "Stella S"
    assert db["accounts"].find_one({"_id": student["_id"]})["passwordHash"] == before

    client.patch("/api/auth/me", json={"password": "another-pass"}, headers=auth(student))
    assert db["accounts"].find_one({"_id": student["_id"]})["passwordHash"] != before
    resp = client.post("/api/auth/login", json={"email": student["email"], "password": "another-pass"})
    assert resp.status_code == 200


# ----------------------
# Enrollment
# ----------------------
def test_enroll_flow(client, db, student, course):
    headers = auth(student)
    available = client.get("/api/student/available-courses", headers=headers).json()["courses"]
    assert [c["id"] for c in available] == [course["_id"]]
    assert available[0]["teacher"]["fullName"] == "Tom"

    resp = client.post(f"/api/student/enroll/{course['_id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["enrollment"]["status"] == "active"

    enrolled = client.get("/api/student/enrolled-courses", headers=headers).json()["courses"]
    assert [c["id"] for c in enrolled] == [course["_id"]]
    assert enrolled[0]["teacher"]["username"] == "tom"
    assert client.get("/api/student/available-courses", headers=headers).json()["courses"] == []

    resp = client.post(f"/api/student/enroll/{course['_id']}", headers=headers)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Already enrolled in this course", "code": "conflict"}

    resp = client.delete(f"/api/student/enroll/{course['_id']}", headers=headers)
    assert resp.status_code == 200
    assert client.get("/api/student/enrolled-courses", headers=headers).json()["courses"] == []
    assert db["courses"].find_one({"_id": course["_id"]})["enrolledStudents"] == []


def test_enroll_unknown_course(client, student):
    resp = client.post("/api/student/enroll/missing", headers=auth(student))
    assert resp.status_code == 404
    assert resp.json() == {"error": "Course not found", "code": "not_found"}


def test_drop_and_complete_endpoints(client, student, teacher, course):
    client.post(f"/api/student/enroll/{course['_id']}", headers=auth(student))
    resp = client.post(f"/api/student/enroll/{course['_id']}/drop", headers=auth(student))
    assert resp.json()["enrollment"]["status"] == "dropped"

    client.post(f"/api/student/enroll/{course['_id']}", headers=auth(student))
    resp = client.post(
        f"/api/teacher/courses/{course['_id']}/enrollments/{student['_id']}/complete", headers=auth(teacher)
    )
    assert resp.status_code == 200
    assert resp.json()["enrollment"]["status"] == "completed"

    summary = client.get("/api/student/dashboard", headers=auth(student)).json()
    assert summary["enrolledCourses"] == 0
    assert summary["finishedCourses"] == 1


def test_lesson_progress(client, student, teacher, course):
    resp = client.post(
        f"/api/teacher/courses/{course['_id']}/lessons",
        json={"title": "Intro", "content": "Welcome", "dueDate": "2039-01-01T00:00:00Z"},
        headers=auth(teacher),
    )
    assert resp.status_code == 201
    lesson = resp.json()

    client.post(f"/api/student/enroll/{course['_id']}", headers=auth(student))
    resp = client.post(f"/api/student/courses/{course['_id']}/lessons/{lesson['id']}/complete", headers=auth(student))
    assert resp.json()["enrollment"]["completedLessons"] == [lesson["id"]]

    enrolled = client.get("/api/student/enrolled-courses", headers=auth(student)).json()["courses"]
    assert enrolled[0]["lessons"][0]["completed"] is True

    lessons = client.get(f"/api/courses/{course['_id']}/lessons").json()["lessons"]
    assert [x["title"] for x in lessons] == ["Intro"]


# ----------------------
# Exams
# ----------------------
def test_exam_create_submit_and_results(client, db, student, teacher, course):
    exam = create_exam(client, course, teacher)
    assert db["courses"].find_one({"_id": course["_id"]})["exams"] == [exam["id"]]

    resp = client.post(f"/api/student/exams/{exam['id']}/submit", json={"answers": [1, 0, 0, 1]}, headers=auth(student))
    assert resp.status_code == 200, resp.text
    result = resp.json()["result"]
    assert result["score"] == 50
    assert result["percentage"] == 50
    stored = db["examresults"].find_one({"_id": result["id"]})
    assert "answers" not in stored

    resp = client.post(f"/api/student/exams/{exam['id']}/submit", json={"score": 75}, headers=auth(student))
    assert resp.json()["result"]["score"] == 75

    mine = client.get("/api/student/examresults", headers=auth(student)).json()["results"]
    assert sorted(r["percentage"] for r in mine) == [50, 75]

    results = client.get(f"/api/teacher/exams/{exam['id']}/results", headers=auth(teacher)).json()["results"]
    assert len(results) == 2
    assert {r["student"]["username"] for r in results} == {"stella"}


def test_exam_submit_rejects_unanswered(client, db, student, teacher, course):
    exam = create_exam(client, course, teacher)
    resp = client.post(f"/api/student/exams/{exam['id']}/submit", json={"answers": [1, -1, 0, 1]}, headers=auth(student))
    assert resp.status_code == 400
    assert "unanswered: 2" in resp.json()["error"]
    assert db["examresults"].count_documents({}) == 0


def test_exam_submit_validation(client, student, teacher, course):
    exam = create_exam(client, course, teacher)
    url = f"/api/student/exams/{exam['id']}/submit"
    assert client.post(url, json={}, headers=auth(student)).status_code == 400
    assert client.post(url, json={"score": "lots"}, headers=auth(student)).status_code == 400
    assert client.post(url, json={"score": 101}, headers=auth(student)).status_code == 400
    assert client.post(url, json={"answers": [0, 1]}, headers=auth(student)).status_code == 400
    assert client.post("/api/student/exams/missing/submit", json={"score": 1}, headers=auth(student)).status_code == 404


def test_exam_without_questions_cannot_be_taken(client, student, teacher, course):
    exam = create_exam(client, course, teacher, body={**EXAM_BODY, "questions": []})
    resp = client.post(f"/api/student/exams/{exam['id']}/submit", json={"answers": []}, headers=auth(student))
    assert resp.status_code == 400
    assert resp.json()["error"] == "This exam has no questions"


def test_exam_update_and_delete(client, db, teacher, course):
    exam = create_exam(client, course, teacher)
    url = f"/api/teacher/courses/{course['_id']}/exams/{exam['id']}"

    resp = client.put(url, json={**EXAM_BODY, "title": "Final", "totalScore": 40}, headers=auth(teacher))
    assert resp.json()["title"] == "Final"
    assert resp.json()["totalScore"] == 40

    assert client.delete(url, headers=auth(teacher)).status_code == 200
    assert db["exams"].count_documents({}) == 0
    assert db["courses"].find_one({"_id": course["_id"]})["exams"] == []
    assert client.delete(url, headers=auth(teacher)).status_code == 404


def test_exam_question_must_point_at_an_option(client, teacher, course):
    bad = {**EXAM_BODY, "questions": [{"question": "?", "options": ["a", "b"], "correctAnswer": 5}]}
    resp = client.post(f"/api/teacher/courses/{course['_id']}/exams", json=bad, headers=auth(teacher))
    assert resp.status_code == 400


def test_teacher_cannot_touch_other_courses(client, db, course):
    other = make_account(db, "otto", role="teacher")
    resp = client.post(f"/api/teacher/courses/{course['_id']}/exams", json=EXAM_BODY, headers=auth(other))
    assert resp.status_code == 401
    assert resp.json()["error"] == "Not your course"


# ----------------------
# Assignments
# ----------------------
def test_assignment_submissions(client, student, teacher, course):
    resp = client.post(
        f"/api/teacher/courses/{course['_id']}/assignments",
        json={"title": "Essay", "description": "500 words", "dueDate": "2039-02-01T00:00:00Z"},
        headers=auth(teacher),
    )
    assignment = resp.json()
    url = f"/api/student/assignments/{assignment['id']}/submit"

    assert client.post(url, json={}, headers=auth(student)).status_code == 400
    client.post(url, json={"submissionText": "draft"}, headers=auth(student))
    resp = client.post(url, json={"fileUrl": "https://files.example.com/essay.pdf"}, headers=auth(student))
    submissions = resp.json()["assignment"]["submissions"]
    assert [s["submissionType"] for s in submissions] == ["text", "file"]

    listed = client.get(
        f"/api/teacher/courses/{course['_id']}/assignments/{assignment['id']}/submissions", headers=auth(teacher)
    ).json()
    assert len(listed["submissions"]) == 2
    assert listed["submissions"][0]["student"]["username"] == "stella"


def test_course_assignments_listing(client, db, student, teacher, course):
    resp = client.post(
        f"/api/teacher/courses/{course['_id']}/assignments",
        json={"title": "Essay", "description": "500 words", "dueDate": "2039-02-01T00:00:00Z", "fileRequired": True},
        headers=auth(teacher),
    )
    assignment = resp.json()
    other = make_account(db, "sid")
    client.post(
        f"/api/student/assignments/{assignment['id']}/submit",
        json={"fileUrl": "https://files.example.com/sid.pdf"},
        headers=auth(other),
    )
    client.post(f"/api/student/enroll/{course['_id']}", headers=auth(student))

    url = f"/api/courses/{course['_id']}/assignments"
    assert client.get(url).status_code == 401

    [listed] = client.get(url, headers=auth(student)).json()["assignments"]
    assert listed["title"] == "Essay"
    assert listed["description"] == "500 words"
    assert listed["dueDate"].startswith("2039-02-01")
    assert listed["fileRequired"] is True
    assert listed["submissions"] == []

    [listed] = client.get(url, headers=auth(teacher)).json()["assignments"]
    assert len(listed["submissions"]) == 1

    assert client.get("/api/courses/missing/assignments", headers=auth(student)).status_code == 404


def test_teacher_course_detail(client, db, student, teacher, course):
    client.post(
        f"/api/teacher/courses/{course['_id']}/lessons",
        json={"title": "Intro", "content": "Welcome", "dueDate": "2039-01-01T00:00:00Z"},
        headers=auth(teacher),
    )
    client.post(f"/api/student/enroll/{course['_id']}", headers=auth(student))

    resp = client.get(f"/api/teacher/courses/{course['_id']}", headers=auth(teacher))
    assert resp.status_code == 200
    detail = resp.json()
    assert detail["title"] == course["title"]
    assert [x["title"] for x in detail["lessons"]] == ["Intro"]
    assert [s["username"] for s in detail["enrolledStudents"]] == ["stella"]
    assert "passwordHash" not in detail["enrolledStudents"][0]

    stranger = make_account(db, "tara", role="teacher")
    resp = client.get(f"/api/teacher/courses/{course['_id']}", headers=auth(stranger))
    assert resp.status_code == 401
    assert client.get(f"/api/teacher/courses/{course['_id']}", headers=auth(student)).status_code == 401


# ----------------------
# Admin
# ----------------------
def test_admin_course_crud_mirrors_teacher(client, db, admin, teacher):
    body = {
        "title": "Physics",
        "description": "Mechanics",
        "category": "science",
        "startDate": "2030-01-01T00:00:00Z",
        "endDate": "2030-06-01T00:00:00Z",
        "teacherId": teacher["_id"],
    }
    resp = client.post("/api/admin/courses", json=body, headers=auth(admin))
    assert resp.status_code == 201
    course = resp.json()["course"]
    assert course["teacher"]["username"] == "tom"
    assert course["id"] in db["accounts"].find_one({"_id": teacher["_id"]})["courses"]

    other = make_account(db, "tina", role="teacher")
    resp = client.put(f"/api/admin/courses/{course['id']}", json={**body, "teacherId": other["_id"]}, headers=auth(admin))
    assert resp.json()["course"]["teacherId"] == other["_id"]
    assert course["id"] not in db["accounts"].find_one({"_id": teacher["_id"]})["courses"]
    assert course["id"] in db["accounts"].find_one({"_id": other["_id"]})["courses"]

    resp = client.patch(f"/api/admin/courses/{course['id']}/teacher", json={"teacherId": None}, headers=auth(admin))
    assert "teacherId" not in resp.json()["course"]
    assert db["accounts"].find_one({"_id": other["_id"]})["courses"] == []


def test_admin_update_without_teacher_keeps_teacher(client, db, admin, teacher, course):
    body = {
        "title": "Algebra II",
        "description": "Harder",
        "category": "math",
        "startDate": "2020-01-01T00:00:00Z",
        "endDate": "2040-01-01T00:00:00Z",
    }
    resp = client.put(f"/api/admin/courses/{course['_id']}", json=body, headers=auth(admin))
    assert resp.status_code == 200
    updated = resp.json()["course"]
    assert updated["title"] == "Algebra II"
    assert updated["teacherId"] == teacher["_id"]
    assert updated["teacher"]["username"] == "tom"
    assert db["accounts"].find_one({"_id": teacher["_id"]})["courses"] == [course["_id"]]

    resp = client.put(f"/api/admin/courses/{course['_id']}", json={**body, "teacherId": None}, headers=auth(admin))
    assert "teacherId" not in resp.json()["course"]
    assert db["accounts"].find_one({"_id": teacher["_id"]})["courses"] == []


def test_admin_course_validation(client, admin, student):
    body = {
        "title": "Backwards",
        "description": "x",
        "category": "y",
        "startDate": "2030-06-01T00:00:00Z",
        "endDate": "2030-01-01T00:00:00Z",
    }
    assert client.post("/api/admin/courses", json=body, headers=auth(admin)).status_code == 400
    body = {**body, "endDate": "2031-01-01T00:00:00Z", "teacherId": student["_id"]}
    resp = client.post("/api/admin/courses", json=body, headers=auth(admin))
    assert resp.json()["error"] == "Invalid teacher"


def test_admin_registers_staff_and_lists_users(client, admin):
    resp = client.post(
        "/api/admin/register-teacher",
        json={"username": "prof", "email": "prof@example.com", "password": "secret123"},
        headers=auth(admin),
    )
    assert resp.status_code == 201
    assert resp.json()["user"]["role"] == "teacher"

    users = client.get("/api/admin/users?role=teacher", headers=auth(admin)).json()["users"]
    assert [u["username"] for u in users] == ["prof"]
    assert all("passwordHash" not in u for u in users)

    resp = client.patch(f"/api/admin/users/{admin['_id']}/active", json={"isActive": False}, headers=auth(admin))
    assert resp.status_code == 400


def test_admin_dashboard(client, db, admin, student, course):
    client.post(f"/api/student/enroll/{course['_id']}", headers=auth(student))
    data = client.get("/api/admin/dashboard", headers=auth(admin)).json()
    assert data["students"] == 1
    assert data["courses"] == 1
    assert data["activeCourses"] == 1
    assert data["activeEnrollments"] == 1


def test_admin_routes_require_admin(client, student):
    resp = client.get("/api/admin/courses", headers=auth(student))
    assert resp.status_code == 401


def test_student_dashboard(client, db, student, teacher):
    future = make_course(db, title="Later", teacher=teacher, start=datetime(2038, 1, 1, tzinfo=timezone.utc))
    client.post(f"/api/student/enroll/{future['_id']}", headers=auth(student))
    create_exam(client, future, teacher, body={**EXAM_BODY, "title": "Far", "dueDate": "2039-12-01T00:00:00Z"})
    create_exam(client, future, teacher, body={**EXAM_BODY, "title": "Near", "dueDate": "2038-06-01T00:00:00Z"})

    data = client.get("/api/student/dashboard", headers=auth(student)).json()
    assert data["enrolledCourses"] == 1
    assert data["upcomingCourses"] == 1
    assert data["nextExam"]["title"] == "Near"
    assert data["latestLesson"] is None
    assert data["totalCourses"] == 1
