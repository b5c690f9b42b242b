import json
from pathlib import Path

import httpx
import pytest

from app.modulekit.modules.ai_assist.backups import BackupStore, RedisBackupStore, backup_store_from_config
from app.modulekit.modules.ai_assist.client import AIServiceError, AnthropicClient, Completion
from app.modulekit.modules.ai_assist.paths import validate_file_path
from app.modulekit.modules.ai_assist.service import extract_json_object

BROKEN = "export default function broken( {\n"
FIXED = "export default function fixed() {}\n"


@pytest.fixture()
def project_root(app):
    root = Path(app.config["AI_ASSIST_ROOT"])
    (root / "app").mkdir(parents=True)
    (root / "app" / "broken.js").write_text(BROKEN, encoding="utf-8")
    return root


@pytest.fixture()
def fake_ai(app, monkeypatch):
    app.config["ANTHROPIC_API_KEY"] = "sk-test"
    prompts = []
    reply = {
        "analysis": "Missing closing parenthesis",
        "rootCause": "Syntax error",
        "suggestedFix": FIXED,
        "explanation": "Closed the parameter list",
        "confidence": "high",
    }

    def create_message(self, prompt, *, max_tokens=8000):
        prompts.append(prompt)
        return Completion(text="Here you go:\n" + json.dumps(reply), input_tokens=120, output_tokens=40)

    monkeypatch.setattr(AnthropicClient, "create_message", create_message)
    return prompts


def test_validate_file_path(tmp_path):
    ok = validate_file_path("app/routes/menu.js", tmp_path)
    assert ok.valid
    assert ok.relative == "app/routes/menu.js"
    assert validate_file_path(str(tmp_path / "backend" / "server.js"), tmp_path).relative == "backend/server.js"

    cases = {
        "": "filePath is required",
        "app/../../etc/passwd.js": "Path traversal not allowed",
        "/etc/hosts.js": "Path must be within the project directory",
        "docs/readme.js": "File must be in allowed directories",
        "app/run.sh": "File extension not allowed",
        "app/.env.js": "Cannot modify sensitive files",
        "backend/apiKeys.json": "Cannot modify sensitive files",
    }
    for path, error in cases.items():
        check = validate_file_path(path, tmp_path)
        assert not check.valid, path
        assert check.error.startswith(error), path


def test_extract_json_object():
    assert extract_json_object('prefix {"a": 1} suffix') == {"a": 1}
    assert extract_json_object('{broken {"b": [1, 2]}') == {"b": [1, 2]}
    assert extract_json_object("no json here") is None


def test_backup_store_evicts_oldest():
    store = BackupStore(max_entries=2)
    first = store.add("app/a.js", "1")
    store.add("app/b.js", "2")
    third = store.add("app/c.js", "3")
    assert len(store) == 2
    assert store.get(first.id) is None
    assert store.list()[-1] == third
    assert third.summary()["contentLength"] == 1


def test_client_parses_messages_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "content": [{"type": "text", "text": "{\"ok\": "}, {"type": "text", "text": "true}"}],
                "usage": {"input_tokens": 11, "output_tokens": 7},
            },
        )

    client = AnthropicClient("sk-test", "test-model", transport=httpx.MockTransport(handler))
    completion = client.create_message("fix it", max_tokens=100)
    assert completion == Completion(text='{"ok": true}', input_tokens=11, output_tokens=7)
    assert seen["headers"]["x-api-key"] == "sk-test"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["max_tokens"] == 100


def test_client_wraps_http_errors():
    client = AnthropicClient("sk-test", "m", transport=httpx.MockTransport(lambda r: httpx.Response(529)))
    with pytest.raises(AIServiceError, match="529"):
        client.create_message("x")


def test_routes_require_permission(client, staff_headers):
    r = client.post("/api/ai-assist/analyze", json={"filePath": "app/broken.js"}, headers=staff_headers)
    assert r.status_code == 403
    assert r.json["missingPermission"] == "ai_assist.use"


def test_analyze_without_api_key(client, admin_headers, project_root):
    r = client.post("/api/ai-assist/analyze", json={"filePath": "app/broken.js"}, headers=admin_headers)
    assert r.status_code == 500
    assert r.json["error"] == "AI service not configured (missing API key)"


def test_analyze_rejects_bad_paths(client, admin_headers, project_root):
    r = client.post("/api/ai-assist/analyze", json={"filePath": "../outside.js"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["error"] == "Path traversal not allowed"

    r = client.post("/api/ai-assist/analyze", json={"filePath": "app/missing.js"}, headers=admin_headers)
    assert r.status_code == 404


def test_analyze_apply_rollback(client, admin_headers, project_root, fake_ai):
    target = project_root / "app" / "broken.js"

    r = client.post(
        "/api/ai-assist/analyze",
        json={"filePath": "app/broken.js", "errorMessage": "Unexpected token", "exports": ["default"]},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.json
    assert r.json["suggestedFix"] == FIXED
    assert r.json["originalContent"] == BROKEN
    assert r.json["usage"]["inputTokens"] == 120
    backup_id = r.json["backupId"]
    assert "Unexpected token" in fake_ai[0]
    assert BROKEN in fake_ai[0]

    r = client.post(
        "/api/ai-assist/apply",
        json={"filePath": "app/broken.js", "suggestedFix": r.json["suggestedFix"], "backupId": backup_id},
        headers=admin_headers,
    )
    assert r.json["backupId"] == backup_id
    assert target.read_text(encoding="utf-8") == FIXED

    r = client.get("/api/ai-assist/backups", headers=admin_headers)
    assert [b["filePath"] for b in r.json["backups"]] == ["app/broken.js"]

    r = client.post("/api/ai-assist/rollback", json={"backupId": backup_id, "filePath": "app/other.js"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["error"] == "File path does not match backup"

    r = client.post("/api/ai-assist/rollback", json={"backupId": backup_id}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["filePath"] == "app/broken.js"
    assert target.read_text(encoding="utf-8") == BROKEN

    # Backups are single use.
    r = client.post("/api/ai-assist/rollback", json={"backupId": backup_id}, headers=admin_headers)
    assert r.status_code == 404


def test_apply_without_backup_creates_one(client, admin_headers, project_root):
    r = client.post("/api/ai-assist/apply", json={"filePath": "app/new.js", "suggestedFix": FIXED}, headers=admin_headers)
    assert r.status_code == 200
    assert (project_root / "app" / "new.js").read_text(encoding="utf-8") == FIXED

    r = client.post("/api/ai-assist/rollback", json={"backupId": r.json["backupId"]}, headers=admin_headers)
    assert r.status_code == 200
    assert (project_root / "app" / "new.js").read_text(encoding="utf-8") == ""


def test_unparseable_ai_response(app, client, admin_headers, project_root, monkeypatch):
    app.config["ANTHROPIC_API_KEY"] = "sk-test"
    monkeypatch.setattr(AnthropicClient, "create_message", lambda self, prompt, **kw: Completion(text="Sorry, no idea."))
    r = client.post("/api/ai-assist/analyze", json={"filePath": "app/broken.js"}, headers=admin_headers)
    assert r.status_code == 500
    assert r.json["rawResponse"] == "Sorry, no idea."


def test_non_string_path_and_backup_id(client, admin_headers, project_root):
    r = client.post("/api/ai-assist/apply", json={"filePath": 12, "suggestedFix": FIXED}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["error"] == "filePath must be a string"

    r = client.post("/api/ai-assist/rollback", json={"backupId": [1]}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["error"] == "backupId must be a string"


class _FakeRedis:
    """Just the commands RedisBackupStore issues."""

    def __init__(self):
        self.values = {}
        self.zsets = {}

    def pipeline(self):
        return _FakePipeline(self)

    def set(self, key, value):
        self.values[key] = value.encode()

    def get(self, key):
        return self.values.get(key)

    def delete(self, key):
        self.values.pop(key, None)

    def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)

    def zrem(self, key, member):
        self.zsets.get(key, {}).pop(member, None)

    def zcard(self, key):
        return len(self.zsets.get(key, {}))

    def zrange(self, key, start, end):
        members = [m.encode() for m, _ in sorted(self.zsets.get(key, {}).items(), key=lambda kv: (kv[1], kv[0]))]
        return members[start:] if end == -1 else members[start:end + 1]


class _FakePipeline:
    def __init__(self, client):
        self._client = client
        self._calls = []

    def __getattr__(self, name):
        return lambda *args: self._calls.append((name, args))

    def execute(self):
        return [getattr(self._client, name)(*args) for name, args in self._calls]


def test_redis_backup_store_evicts_oldest_and_pops(monkeypatch):
    clock = iter(range(1000, 2000))
    monkeypatch.setattr("app.modulekit.modules.ai_assist.backups.time.time", lambda: next(clock))
    store = RedisBackupStore(_FakeRedis(), max_entries=2)

    first = store.add("a.js", "A")
    second = store.add("b.js", "B")
    third = store.add("c.js", "C")
    assert len(store) == 2
    assert store.get(first.id) is None
    assert [b.file_path for b in store.list()] == ["b.js", "c.js"]

    assert store.pop(second.id) == second
    assert store.pop(second.id) is None
    assert [b.id for b in store.list()] == [third.id]


def test_backup_store_from_config_respects_backend():
    store = backup_store_from_config({"REDIS_URL": "redis://127.0.0.1:6379/0", "AI_ASSIST_BACKUP_BACKEND": "memory"})
    assert type(store) is BackupStore
    # Unreachable redis falls back to the in-process store.
    assert type(backup_store_from_config({"REDIS_URL": "redis://127.0.0.1:1/0"})) is BackupStore
