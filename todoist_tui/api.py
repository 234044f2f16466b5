"""Thin REST client for the Todoist v1 API."""
from __future__ import annotations

import datetime as dt
import logging
import time
from typing import Callable, Dict, List, Optional

import requests

from .models import Comment, Label, Project, Section, Task

logger = logging.getLogger('todoist_tui')

BASE_URL = "https://api.todoist.com/api/v1"
DEFAULT_TIMEOUT = 30
RETRY_STATUSES = (429, 502, 503, 504)
COMPLETED_PAGE_SIZE = 200


class APIError(Exception):
    def __init__(self, status_code: int, message: str, body: str = ""):
        super().__init__(f"API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


def _session(token: str) -> requests.Session:
    s = requests.Session()
    s.headers["Authorization"] = f"Bearer {token}"
    s.headers["Content-Type"] = "application/json"
    return s


def _parse_retry_after_seconds(resp: Optional[requests.Response]) -> Optional[int]:
    if resp is None or resp.headers is None:
        return None
    ra = resp.headers.get('Retry-After')
    if not ra:
        return None
    try:
        return max(0, int(float(ra)))
    except ValueError:
        return None


def _utc_stamp(moment: dt.datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _error_from_response(resp: requests.Response) -> APIError:
    body = resp.text or ""
    message = body.strip() or resp.reason or "request failed"
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = str(payload.get('error') or payload.get('message') or message)
    return APIError(resp.status_code, message, body)


class TodoistClient:
    """Blocking client; every call runs on a worker thread, never on the UI loop."""

    def __init__(
        self,
        token: str,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_total_wait: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_total_wait = max_total_wait
        self._sleep = sleep
        self.session = _session(token)

    # -----------------------------
    # Transport
    # -----------------------------
    def _request(self, method: str, path: str, params: Optional[dict] = None, body: Optional[dict] = None):
        url = f"{self.base_url}{path}"
        backoff = 1.0
        total_wait = 0.0
        while True:
            try:
                resp = self.session.request(method, url, params=params, json=body, timeout=self.timeout)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError):
                if total_wait + backoff > self.max_total_wait:
                    logger.exception("%s %s failed", method, path)
                    raise
                logger.warning("%s %s: transport error, retrying in %.0fs", method, path, backoff)
                self._sleep(backoff)
                total_wait += backoff
                backoff = min(30.0, backoff * 2)
                continue
            if resp.status_code in RETRY_STATUSES:
                wait_s = _parse_retry_after_seconds(resp)
                if wait_s is None:
                    wait_s = backoff
                    backoff = min(30.0, backoff * 2)
                if total_wait + wait_s <= self.max_total_wait:
                    logger.info("%s %s: HTTP %s, waiting %ss", method, path, resp.status_code, wait_s)
                    self._sleep(wait_s)
                    total_wait += wait_s
                    continue
            if resp.status_code >= 400:
                err = _error_from_response(resp)
                logger.error("%s %s -> %s", method, path, err)
                raise err
            if resp.status_code == 204 or not resp.content:
                return None
            return resp.json()

    def _get_paginated(self, path: str, params: Optional[dict] = None, key: str = 'results') -> List[dict]:
        params = dict(params or {})
        out: List[dict] = []
        while True:
            payload = self._request("GET", path, params=params)
            if isinstance(payload, list):
                out.extend(payload)
                return out
            payload = payload or {}
            out.extend(payload.get(key) or [])
            cursor = payload.get('next_cursor')
            if not cursor:
                return out
            params['cursor'] = cursor

    # -----------------------------
    # Tasks
    # -----------------------------
    def get_tasks(
        self,
        project_id: Optional[str] = None,
        section_id: Optional[str] = None,
        label: Optional[str] = None,
        ids: Optional[List[str]] = None,
    ) -> List[Task]:
        params: Dict[str, str] = {}
        if project_id:
            params['project_id'] = project_id
        if section_id:
            params['section_id'] = section_id
        if label:
            params['label'] = label
        if ids:
            params['ids'] = ",".join(ids)
        return [Task.from_api(r) for r in self._get_paginated("/tasks", params)]

    def get_tasks_by_filter(self, query: str) -> List[Task]:
        return [Task.from_api(r) for r in self._get_paginated("/tasks/filter", {'query': query})]

    def get_task(self, task_id: str) -> Task:
        return Task.from_api(self._request("GET", f"/tasks/{task_id}"))

    def create_task(self, content: str, **fields) -> Task:
        body = {'content': content}
        body.update({k: v for k, v in fields.items() if v not in (None, "", [])})
        return Task.from_api(self._request("POST", "/tasks", body=body))

    def update_task(self, task_id: str, **fields) -> Task:
        return Task.from_api(self._request("POST", f"/tasks/{task_id}", body=fields))

    def close_task(self, task_id: str) -> None:
        self._request("POST", f"/tasks/{task_id}/close")

    def reopen_task(self, task_id: str) -> None:
        self._request("POST", f"/tasks/{task_id}/reopen")

    def get_completed_tasks(self, since: dt.datetime, until: dt.datetime) -> List[Task]:
        """Items completed in ``[since, until]``; naive datetimes are taken as local time."""
        params = {
            'since': _utc_stamp(since),
            'until': _utc_stamp(until),
            'limit': COMPLETED_PAGE_SIZE,
        }
        rows = self._get_paginated("/tasks/completed/by_completion_date", params, key='items')
        return [Task.from_api(r) for r in rows]

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", f"/tasks/{task_id}")

    def move_task(
        self,
        task_id: str,
        project_id: Optional[str] = None,
        section_id: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> None:
        body = {k: v for k, v in (('project_id', project_id), ('section_id', section_id), ('parent_id', parent_id)) if v}
        self._request("POST", f"/tasks/{task_id}/move", body=body)

    def quick_add(self, text: str) -> Task:
        return Task.from_api(self._request("POST", "/tasks/quick", body={'text': text}))

    # -----------------------------
    # Projects
    # -----------------------------
    def get_projects(self) -> List[Project]:
        return [Project.from_api(r) for r in self._get_paginated("/projects")]

    def create_project(self, name: str) -> Project:
        return Project.from_api(self._request("POST", "/projects", body={'name': name}))

    def update_project(self, project_id: str, **fields) -> Project:
        return Project.from_api(self._request("POST", f"/projects/{project_id}", body=fields))

    def delete_project(self, project_id: str) -> None:
        self._request("DELETE", f"/projects/{project_id}")

    # -----------------------------
    # Sections
    # -----------------------------
    def get_sections(self, project_id: Optional[str] = None) -> List[Section]:
        params = {'project_id': project_id} if project_id else None
        return [Section.from_api(r) for r in self._get_paginated("/sections", params)]

    def create_section(self, name: str, project_id: str) -> Section:
        return Section.from_api(self._request("POST", "/sections", body={'name': name, 'project_id': project_id}))

    def update_section(self, section_id: str, **fields) -> Section:
        return Section.from_api(self._request("POST", f"/sections/{section_id}", body=fields))

    def delete_section(self, section_id: str) -> None:
        self._request("DELETE", f"/sections/{section_id}")

    # -----------------------------
    # Labels
    # -----------------------------
    def get_labels(self) -> List[Label]:
        return [Label.from_api(r) for r in self._get_paginated("/labels")]

    def create_label(self, name: str) -> Label:
        return Label.from_api(self._request("POST", "/labels", body={'name': name}))

    def update_label(self, label_id: str, **fields) -> Label:
        return Label.from_api(self._request("POST", f"/labels/{label_id}", body=fields))

    def delete_label(self, label_id: str) -> None:
        self._request("DELETE", f"/labels/{label_id}")

    # -----------------------------
    # Comments
    # -----------------------------
    def get_comments(self, task_id: str) -> List[Comment]:
        return [Comment.from_api(r) for r in self._get_paginated("/comments", {'task_id': task_id})]

    def create_comment(self, task_id: str, content: str) -> Comment:
        return Comment.from_api(self._request("POST", "/comments", body={'task_id': task_id, 'content': content}))

    def update_comment(self, comment_id: str, content: str) -> Comment:
        return Comment.from_api(self._request("POST", f"/comments/{comment_id}", body={'content': content}))

    def delete_comment(self, comment_id: str) -> None:
        self._request("DELETE", f"/comments/{comment_id}")
