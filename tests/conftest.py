import base64
import copy
import itertools
from collections import defaultdict

import pytest

from app import create_app
from common.config import Config
from inbox.gmail_client import GMAIL_API, TOKEN_URL
from payment.midtrans_client import SANDBOX_SNAP_URL
from services import build_services

UNIQUE_KEYS = {
    "mailbox_credentials": "user_id",
    "transactions": "reference",
    "pending_payments": "order_id",
    "subscriptions": "user_id",
    "plans": "slug",
}


class FakeAPIError(Exception):
    """Stands in for postgrest's APIError"""


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self._order = None
        self._limit = None

    def select(self, *columns, count=None):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def upsert(self, rows, on_conflict=""):
        self.op = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        return self

    def update(self, changes):
        self.op = "update"
        self.payload = changes
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self):
        self.db.calls.append((self.table, self.op, copy.deepcopy(self.payload)))
        for table, op, predicate, exc in self.db.failures:
            if table == self.table and op == self.op and (predicate is None or predicate(self.payload)):
                raise exc

        handler = getattr(self, f"_{self.op}")
        return FakeResponse(copy.deepcopy(handler()))

    def _matching(self):
        return [row for row in self.db.tables[self.table] if all(f(row) for f in self.filters)]

    def _select(self):
        rows = self._matching()
        if self._order:
            column, desc = self._order
            rows = sorted(rows, key=lambda row: (row.get(column) is None, row.get(column)), reverse=desc)
        if self._limit is not None:
            rows = rows[:self._limit]
        return rows

    def _insert(self):
        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        key = UNIQUE_KEYS.get(self.table)
        existing = {row.get(key) for row in self.db.tables[self.table]} if key else set()
        for row in rows:
            if key and row.get(key) in existing:
                raise FakeAPIError(f"duplicate key value violates unique constraint on {key}")
        return [self.db.add(self.table, row) for row in rows]

    def _upsert(self):
        rows = self.payload if isinstance(self.payload, list) else [self.payload]
        key = self.on_conflict or UNIQUE_KEYS.get(self.table)
        keys = [row.get(key) for row in rows]
        if len(keys) != len(set(keys)):
            raise FakeAPIError("ON CONFLICT DO UPDATE command cannot affect row a second time")

        written = []
        for row in rows:
            current = next((r for r in self.db.tables[self.table] if r.get(key) == row.get(key)), None)
            if current is None:
                written.append(self.db.add(self.table, row))
            else:
                current.update(copy.deepcopy(row))
                written.append(current)
        return written

    def _update(self):
        rows = self._matching()
        for row in rows:
            row.update(copy.deepcopy(self.payload))
        return rows


class FakeSupabase:
    """In-memory stand-in for the supabase query-builder surface the service uses"""

    def __init__(self):
        self.tables = defaultdict(list)
        self.calls = []
        self.failures = []
        self._ids = itertools.count(1)

    def table(self, name):
        return FakeQuery(self, name)

    def add(self, table, row):
        stored = copy.deepcopy(row)
        stored.setdefault("id", next(self._ids))
        self.tables[table].append(stored)
        return stored

    def fail(self, table, op, predicate=None, exc=None):
        self.failures.append((table, op, predicate, exc or FakeAPIError(f"{table} {op} failed")))

    def rows(self, table):
        return copy.deepcopy(self.tables[table])

    def ops(self, table, op):
        return [payload for t, o, payload in self.calls if t == table and o == op]


class FakeHTTPResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """
    Routes (method, url) to canned responses

    A route value may be a FakeHTTPResponse, an exception instance to
    raise, or a callable taking the request kwargs.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def route(self, method, url, response):
        self.routes[(method, url)] = response

    def _dispatch(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        handler = self.routes.get((method, url))
        if handler is None:
            return FakeHTTPResponse(404, {"error": "not found"})
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(kwargs)
        return handler

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, kwargs)

    def requests_to(self, method, url):
        return [kwargs for m, u, kwargs in self.calls if m == method and u == url]


def encode_body(text):
    # Gmail omits base64 padding
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(
    message_id,
    body,
    subject="Transaction alert",
    sender="BCA <alerts@bca.co.id>",
    internal_date="1760000000000",
    mime_type="text/plain",
    multipart=False,
):
    headers = [
        {"name": "Subject", "value": subject},
        {"name": "From", "value": sender},
    ]
    if multipart:
        payload = {
            "mimeType": "multipart/alternative",
            "headers": headers,
            "parts": [
                {"mimeType": "text/plain", "body": {"data": encode_body(body)}},
                {"mimeType": "text/html", "body": {"data": encode_body(f"<p>{body}</p>")}},
            ],
        }
    else:
        payload = {
            "mimeType": mime_type,
            "headers": headers,
            "body": {"data": encode_body(body)},
        }

    message = {"id": message_id, "threadId": f"t-{message_id}", "payload": payload}
    if internal_date is not None:
        message["internalDate"] = internal_date
    return message


class GmailStub:
    """Wires a FakeSession with token, listing and message endpoints"""

    def __init__(self, session):
        self.session = session
        self.messages = {}
        self.session.route("POST", TOKEN_URL, FakeHTTPResponse(200, {"access_token": "access-1"}))
        self.session.route("GET", f"{GMAIL_API}/profile", FakeHTTPResponse(200, {"emailAddress": "me@gmail.com"}))
        self.session.route("GET", f"{GMAIL_API}/messages", self._list)

    def add(self, message):
        self.messages[message["id"]] = message
        self.session.route(
            "GET", f"{GMAIL_API}/messages/{message['id']}", FakeHTTPResponse(200, message)
        )

    def _list(self, kwargs):
        refs = [{"id": mid, "threadId": f"t-{mid}"} for mid in self.messages]
        max_results = kwargs["params"]["maxResults"]
        return FakeHTTPResponse(200, {"messages": refs[:max_results]})


@pytest.fixture()
def config():
    return Config(
        supabase_url="https://project.supabase.co",
        supabase_key="service-key",
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_redirect_uri="https://app.test/api/auth/google/callback",
        midtrans_server_key="server-key",
        app_base_url="https://app.test",
        cron_api_key="cron-secret",
    )


@pytest.fixture()
def db():
    return FakeSupabase()


@pytest.fixture()
def http():
    return FakeSession()


@pytest.fixture()
def gmail(http):
    return GmailStub(http)


@pytest.fixture()
def snap(http):
    http.route("POST", SANDBOX_SNAP_URL, FakeHTTPResponse(201, {
        "token": "snap-token",
        "redirect_url": "https://app.sandbox.midtrans.com/snap/v4/redirection/snap-token",
    }))
    return http


@pytest.fixture()
def services(config, db, http):
    return build_services(config, supabase=db, session=http)


@pytest.fixture()
def app(services):
    app = create_app(services=services)
    app.config.update(TESTING=True)
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def connected_user(db):
    return db.add("mailbox_credentials", {
        "user_id": "user-1",
        "mailbox_address": "me@gmail.com",
        "refresh_token": "refresh-secret",
        "active": True,
    })


@pytest.fixture()
def plan(db):
    return db.add("plans", {"id": "plan-uuid-pro", "slug": "pro", "name": "Pro", "price": 49000})

