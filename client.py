"""
Python client for the portal API.

A PortalSession carries its own bearer token; nothing about the signed-in user is kept
in module state. Pass an existing httpx.Client (for example FastAPI's TestClient) or
let the session open one against `base_url`.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from errors import CODES_BY_STATUS, ERRORS_BY_CODE, Internal, Unauthorized
from grading import ExamAttempt

logger = logging.getLogger(__name__)


class PortalSession:
    def __init__(self, base_url: str = "http://localhost:8000", http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout)
        self.token: Optional[str] = None
        self.user: Optional[Dict[str, Any]] = None

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def headers(self) -> Dict[str, str]:
        if not self.token:
            raise Unauthorized("Not signed in")
        return {"Authorization": f"Bearer {self.token}"}

    def _raise_for_error(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        message = body.get("error") or response.text or response.reason_phrase
        error_cls = ERRORS_BY_CODE.get(body.get("code"))
        if error_cls is None:
            error_cls = ERRORS_BY_CODE.get(CODES_BY_STATUS.get(response.status_code), Internal)
        logger.debug("API error %s: %s", response.status_code, message)
        raise error_cls(message)

    def _request(self, method: str, path: str, auth: bool = True, **kwargs) -> Any:
        if auth:
            kwargs["headers"] = {**kwargs.get("headers", {}), **self.headers}
        response = self.http.request(method, path, **kwargs)
        self._raise_for_error(response)
        return response.json()

    # auth
    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/api/auth/login", auth=False, json={"email": email, "password": password})
        self.token = data["token"]
        self.user = data["user"]
        return self.user

    def register(self, username: str, email: str, password: str, role: str = "student", full_name: Optional[str] = None) -> Dict[str, Any]:
        body = {"username": username, "email": email, "password": password, "role": role}
        if full_name:
            body["fullName"] = full_name
        data = self._request("POST", "/api/auth/register", auth=False, json=body)
        self.token = data["token"]
        self.user = data["user"]
        return self.user

    def logout(self):
        self.token = None
        self.user = None

    # enrollment
    def enrolled_courses(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/student/enrolled-courses")["courses"]

    def available_courses(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/student/available-courses")["courses"]

    def enroll(self, course_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/student/enroll/{course_id}")["enrollment"]

    def unenroll(self, course_id: str) -> None:
        self._request("DELETE", f"/api/student/enroll/{course_id}")

    def course_assignments(self, course_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/api/courses/{course_id}/assignments")["assignments"]

    # exams
    def submit_exam_score(self, exam_id: str, score: float) -> Dict[str, Any]:
        return self._request("POST", f"/api/student/exams/{exam_id}/submit", json={"score": score})["result"]

    def exam_results(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/student/examresults")["results"]

    def start_exam(self, exam: Dict[str, Any]) -> ExamAttempt:
        """Start an attempt that posts its final score to the server on submit."""
        exam_id = exam.get("id") or exam.get("_id")
        attempt = ExamAttempt(exam, on_submit=lambda score: self.submit_exam_score(exam_id, score))
        return attempt.start()
