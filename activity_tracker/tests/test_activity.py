import json
import tempfile
import unittest
from pathlib import Path

from activity_tracker.activity import (
    DEFAULT_ACTION,
    SMALL_FILE_BYTES,
    composer_latest_action,
    extract_latest_action,
    short_path,
    summarize_composer,
    summarize_tool_input,
)
from activity_tracker.parsers.composer import Bubble, build_parsed_session, sort_bubbles


def _user(text, ts: str = "2026-02-16T10:00:00.000Z") -> dict:
    return {"type": "user", "timestamp": ts, "cwd": "/home/u/p", "message": {"role": "user", "content": text}}


def _assistant(content, msg_id: str = "m1", output_tokens: int = 0) -> dict:
    return {
        "type": "assistant",
        "timestamp": "2026-02-16T10:00:01.000Z",
        "message": {
            "id": msg_id,
            "role": "assistant",
            "model": "claude-opus-4-6",
            "content": content,
            "usage": {"input_tokens": 0, "output_tokens": output_tokens},
        },
    }


class ExtractLatestActionTests(unittest.TestCase):
    def _write(self, events: list[dict]) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "s1.jsonl"
        path.write_text("\n".join(json.dumps(e) for e in events) + "\n", encoding="utf-8")
        return path

    def test_tool_use_with_summarized_input(self) -> None:
        bash = {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "pytest -q"}}
        path = self._write(
            [
                _user("Run   the tests"),
                _assistant([{"type": "text", "text": "Running"}], output_tokens=1_000_000),
                _assistant([{"type": "text", "text": "Running"}, bash], output_tokens=1_000_000),
                {"type": "progress", "data": {}},
            ]
        )
        result = extract_latest_action(path)

        self.assertEqual(result.action, "Using Bash")
        self.assertEqual(result.detail, "pytest -q")
        self.assertEqual(result.cwd, "/home/u/p")
        self.assertEqual(result.model, "claude-opus-4-6")
        self.assertEqual(result.firstPrompt, "Run the tests")
        self.assertEqual(result.messageCount, 2)
        self.assertEqual(result.toolUseCount, 1)
        self.assertAlmostEqual(result.costUsd, 75.0)

    def test_turn_duration_completes_turn(self) -> None:
        path = self._write(
            [_user("hi"), {"type": "system", "subtype": "turn_duration", "durationMs": 2600}]
        )
        result = extract_latest_action(path)
        self.assertEqual((result.action, result.detail), ("Turn completed", "3s"))

    def test_tool_result_and_user_text(self) -> None:
        result = extract_latest_action(
            self._write([_user([{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}])])
        )
        self.assertEqual(result.action, "Tool result received")

        result = extract_latest_action(self._write([_user("y" * 200)]))
        self.assertEqual(result.action, "User message")
        self.assertEqual(result.detail, "y" * 120)

    def test_assistant_text_is_responding(self) -> None:
        result = extract_latest_action(self._write([_assistant("  All done  ")]))
        self.assertEqual((result.action, result.detail), ("Responding", "All done"))

    def test_large_file_reads_head_and_tail(self) -> None:
        filler = [
            _assistant([{"type": "text", "text": "x" * 500}], msg_id=f"m{i}") for i in range(120)
        ]
        path = self._write([_user("Start here"), *filler, _user("Latest question")])
        self.assertGreater(path.stat().st_size, SMALL_FILE_BYTES)

        result = extract_latest_action(path)
        self.assertEqual(result.firstPrompt, "Start here")
        self.assertEqual((result.action, result.detail), ("User message", "Latest question"))

    def test_unreadable_file_yields_default(self) -> None:
        result = extract_latest_action("/nonexistent/s1.jsonl")
        self.assertEqual(result.action, DEFAULT_ACTION)
        self.assertEqual(result.detail, "")

    def test_noise_only_file_keeps_default_action(self) -> None:
        result = extract_latest_action(self._write([{"type": "file-history-snapshot"}]))
        self.assertEqual(result.action, DEFAULT_ACTION)


class ToolSummaryTests(unittest.TestCase):
    def test_short_path(self) -> None:
        self.assertEqual(short_path("/a/b"), "/a/b")
        self.assertEqual(short_path("/home/u/p/src/app.py"), ".../src/app.py")

    def test_summaries_per_tool(self) -> None:
        self.assertEqual(summarize_tool_input("Read", {"file_path": "/home/u/p/x.py"}), ".../p/x.py")
        self.assertEqual(summarize_tool_input("Grep", {"pattern": "TODO", "path": "/home/u/p/src"}), "/TODO/ in .../p/src")
        self.assertEqual(summarize_tool_input("Glob", {"pattern": "**/*.py"}), "**/*.py")
        self.assertEqual(summarize_tool_input("Bash", {"command": "z" * 150}), "z" * 100)
        self.assertEqual(summarize_tool_input("Unknown", {"a": 1}), "")
        self.assertEqual(summarize_tool_input("Read", None), "")


class ComposerSummaryTests(unittest.TestCase):
    def test_latest_bubble_wins(self) -> None:
        bubbles = [
            Bubble.model_validate({"type": 1, "text": "Refactor", "timingInfo": {"clientStartTime": 1_000}}),
            Bubble.model_validate(
                {
                    "type": 2,
                    "text": "",
                    "timingInfo": {"clientStartTime": 2_000},
                    "codeBlocks": [{"content": "a", "uri": {"_fsPath": "/home/u/p/src/app.py"}}],
                }
            ),
        ]
        created = 1_700_000_000_000
        session = build_parsed_session(bubbles, "c1", "cursor-ws", created)
        summary = summarize_composer(session, sort_bubbles(bubbles, created))

        self.assertEqual((summary.action, summary.detail), ("Using Edit", ".../src/app.py"))
        self.assertEqual(summary.firstPrompt, "Refactor")
        self.assertEqual(summary.messageCount, 2)
        self.assertEqual(summary.toolUseCount, 1)

    def test_tool_former_name_is_normalized(self) -> None:
        bubble = Bubble.model_validate({"type": 2, "toolFormerData": {"name": "run_terminal_command"}})
        self.assertEqual(composer_latest_action(bubble), ("Using Bash", ""))
        self.assertIsNone(composer_latest_action(Bubble.model_validate({"type": 1, "text": "  "})))


if __name__ == "__main__":
    unittest.main()
