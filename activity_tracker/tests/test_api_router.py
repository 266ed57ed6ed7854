import json
import tempfile
import types
import unittest
from pathlib import Path

from fastapi import HTTPException

from activity_tracker.engine import TrackerEngine
from activity_tracker.models import ActivityEvent
from activity_tracker.routers import api as api_router
from activity_tracker.routers.live import LiveHub


def _request(engine):
    return types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace(engine=engine)))


class ApiRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        root = Path(tmpdir.name)
        projects_dir = root / "projects"
        session_dir = projects_dir / "-home-u-demo"
        session_dir.mkdir(parents=True)
        events = [
            {
                "type": "user",
                "timestamp": "2026-02-16T10:00:00.000Z",
                "cwd": "/home/u/demo",
                "message": {"role": "user", "content": "Add logging"},
            },
            {
                "type": "assistant",
                "timestamp": "2026-02-16T10:00:02.000Z",
                "message": {
                    "id": "m1",
                    "role": "assistant",
                    "model": "claude-sonnet-4-5",
                    "content": [
                        {
                            "type": "tool_use",
                            "name": "Write",
                            "input": {"file_path": "/home/u/demo/log.py", "content": "a\nb"},
                        }
                    ],
                    "usage": {"input_tokens": 7, "output_tokens": 9},
                },
            },
        ]
        (session_dir / "s1.jsonl").write_text("\n".join(json.dumps(e) for e in events), encoding="utf-8")

        self.engine = TrackerEngine(
            claude_projects_dir=projects_dir,
            cursor_storage_dir=root / "workspaceStorage",
            cursor_global_db_path=root / "globalStorage" / "state.vscdb",
        )
        self.request = _request(self.engine)

    async def test_list_projects(self) -> None:
        projects = await api_router.list_projects(self.request)
        self.assertEqual(len(projects), 1)
        self.assertEqual(projects[0].id, "-home-u-demo")
        self.assertEqual(projects[0].name, "demo")
        self.assertEqual(projects[0].path, "/home/u/demo")
        self.assertEqual(projects[0].sessionCount, 1)
        self.assertTrue(projects[0].lastActive.endswith("Z"))

    async def test_project_sessions_and_metrics(self) -> None:
        sessions = await api_router.list_project_sessions("-home-u-demo", self.request)
        self.assertEqual([s.sessionId for s in sessions], ["s1"])

        metrics = await api_router.get_project_metrics("-home-u-demo", self.request)
        self.assertEqual(metrics.totalSessions, 1)
        self.assertEqual(metrics.totalLinesAdded, 2)
        self.assertEqual(metrics.toolUsage, {"Write": 1})

    async def test_session_routes(self) -> None:
        session = await api_router.get_session("s1", self.request)
        self.assertEqual(session.firstPrompt, "Add logging")
        metrics = await api_router.get_session_metrics("s1", self.request)
        self.assertEqual((metrics.userMessages, metrics.assistantMessages), (1, 1))

    async def test_global_metrics(self) -> None:
        metrics = await api_router.get_global_metrics(self.request)
        self.assertEqual(metrics.totalProjects, 1)
        self.assertEqual(metrics.totalSessions, 1)
        self.assertEqual(metrics.totalTokens.output, 9)

    async def test_unknown_ids_are_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.get_project("nope", self.request)
        self.assertEqual(ctx.exception.status_code, 404)
        with self.assertRaises(HTTPException) as ctx:
            await api_router.get_session_metrics("nope", self.request)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_invalidate_cache(self) -> None:
        await api_router.get_session("s1", self.request)
        self.assertEqual(len(self.engine.cache), 1)
        result = await api_router.invalidate_cache(self.request)
        self.assertEqual(result, {"status": "ok", "cleared": 1})
        self.assertEqual(len(self.engine.cache), 0)

    async def test_missing_engine_is_503(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.list_projects(_request(None))
        self.assertEqual(ctx.exception.status_code, 503)


class _FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []

    async def send_json(self, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("closed")
        self.sent.append(payload)


class LiveHubTests(unittest.IsolatedAsyncioTestCase):
    async def test_broadcast_drops_failed_clients(self) -> None:
        hub = LiveHub()
        healthy, broken = _FakeSocket(), _FakeSocket(fail=True)
        hub.clients.update({healthy, broken})

        event = ActivityEvent(projectId="p", sessionId="s1", timestamp="2026-02-16T10:00:00.000Z")
        await hub.broadcast(event)

        self.assertEqual(healthy.sent[0]["sessionId"], "s1")
        self.assertEqual(healthy.sent[0]["type"], "session:updated")
        self.assertEqual(hub.clients, {healthy})


if __name__ == "__main__":
    unittest.main()
