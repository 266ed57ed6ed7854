import os
import tempfile
import unittest
from pathlib import Path

from activity_tracker.cache import SessionCache, file_fingerprint
from activity_tracker.models import ParsedSession


class _CountingParser:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self, file_path, session_id: str, project_id: str) -> ParsedSession:
        self.calls += 1
        return ParsedSession(sessionId=session_id, projectId=project_id, firstPrompt=f"parse {self.calls}")


class SessionCacheTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.path = Path(tmpdir.name) / "s1.jsonl"
        self.path.write_text("{}", encoding="utf-8")
        self.cache = SessionCache()
        self.parser = _CountingParser()

    def _touch(self, mtime_ns: int) -> None:
        os.utime(self.path, ns=(mtime_ns, mtime_ns))

    async def test_unchanged_file_returns_identical_object(self) -> None:
        first = await self.cache.get("s1", self.path, self.parser, "p1")
        second = await self.cache.get("s1", self.path, self.parser, "p1")
        self.assertIs(first, second)
        self.assertEqual(self.parser.calls, 1)

    async def test_changed_mtime_triggers_reparse(self) -> None:
        self._touch(1_000_000_000_000_000_000)
        first = await self.cache.get("s1", self.path, self.parser, "p1")
        self._touch(1_000_000_005_000_000_000)
        second = await self.cache.get("s1", self.path, self.parser, "p1")
        self.assertIsNot(first, second)
        self.assertEqual(second.firstPrompt, "parse 2")

    async def test_invalidate_forces_reparse(self) -> None:
        await self.cache.get("s1", self.path, self.parser, "p1")
        self.cache.invalidate("s1")
        self.assertNotIn("s1", self.cache)
        await self.cache.get("s1", self.path, self.parser, "p1")
        self.assertEqual(self.parser.calls, 2)

    async def test_invalidate_all_clears_entries(self) -> None:
        await self.cache.get("s1", self.path, self.parser, "p1")
        await self.cache.get("s2", self.path, self.parser, "p1")
        self.assertEqual(len(self.cache), 2)
        self.cache.invalidate_all()
        self.assertEqual(len(self.cache), 0)

    async def test_unreadable_path_is_never_served_from_cache(self) -> None:
        missing = self.path.parent / "missing.jsonl"
        self.assertIsNone(file_fingerprint(missing))
        await self.cache.get("gone", missing, self.parser, "p1")
        await self.cache.get("gone", missing, self.parser, "p1")
        self.assertEqual(self.parser.calls, 2)


if __name__ == "__main__":
    unittest.main()
