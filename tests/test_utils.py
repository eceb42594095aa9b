"""
Shared test utilities for PaiaClient tests.

FakePaiaServer answers PAIA requests from canned responses through an
httpx.MockTransport and records every request it sees.
"""

import json
from collections import defaultdict, deque

import httpx

BASE_URL = "https://paia.example.org/DE-1/"
PATRON_ID = "P123"


class FakePaiaServer:
    """
    Canned PAIA server.

    Responses are queued per (method, path); the last queued response of a
    route is repeated once the queue is down to it. auth/login and core/{patron}
    answer with a valid login and patron by default.

    Usage:
        server = FakePaiaServer()
        server.add("GET", "core/P123/items", {"doc": [...]})
        client = PaiaClient(BASE_URL, transport=server.transport)
    """

    def __init__(self, patron_id=PATRON_ID, expires_in=3600):
        self.patron_id = patron_id
        self.expires_in = expires_in
        self.requests = []
        self.login_count = 0
        self._routes = defaultdict(deque)
        self.add("GET", f"core/{patron_id}", {
            "name": "Doe, Jane",
            "email": "jane@example.org",
            "status": 0,
            "expires": "2099-12-31",
            "type": ["http://example.org/usertype/student"],
        })

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)

    def add(self, method, path, json_data=None, status_code=200, content=None):
        self._routes[(method, path)].append((json_data, status_code, content))

    def add_login(self, json_data=None, status_code=200):
        self.add("POST", "auth/login", json_data, status_code)

    def add_transport_error(self, method, path, error=httpx.ConnectError):
        self._routes[(method, path)].append((error, None, None))

    def login_response(self):
        return {
            "access_token": f"token-{self.login_count}",
            "token_type": "Bearer",
            "patron": self.patron_id,
            "scope": "read_patron read_fees read_items write_items change_password",
            "expires_in": self.expires_in,
        }

    def requests_to(self, method, path):
        return [r for r in self.requests if r.method == method and self.path_of(r) == path]

    @staticmethod
    def path_of(request):
        return request.url.path[len(httpx.URL(BASE_URL).path):]

    @staticmethod
    def body_of(request):
        return json.loads(request.content)

    def handler(self, request):
        self.requests.append(request)
        key = (request.method, self.path_of(request))
        if key == ("POST", "auth/login"):
            self.login_count += 1

        queue = self._routes.get(key)
        if not queue:
            if key == ("POST", "auth/login"):
                return httpx.Response(200, json=self.login_response())
            return httpx.Response(404, json={
                "error": "not_found", "code": 404, "error_description": "Not found"
            })

        json_data, status_code, content = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(json_data, type) and issubclass(json_data, Exception):
            raise json_data("simulated failure", request=request)
        if content is not None:
            return httpx.Response(status_code, content=content)
        return httpx.Response(status_code, json=json_data)
