import json
import tempfile
import unittest
from pathlib import Path

from capture_isolation.isolation.types import ViolationType
from capture_isolation.kernel.audit import JsonlAuditLog
from capture_isolation.kernel.logging import JsonlLogger, JsonlLoggerConfig


class JsonlAuditLogTests(unittest.TestCase):
    def test_append_only_entries(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log = JsonlAuditLog(Path(tmp) / "audit" / "isolation.jsonl")
            log.record("ISOLATION", "ACTIVATION_START", "corr-1", {"correlationId": "corr-1"})
            log.record("ISOLATION", "EXTENSION_DISABLE_FAILED", "corr-1", {"extensionId": "x"}, level="error")
            log.record("ISOLATION", "ACTIVATION_START", "corr-2", {})
            lines = log.path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 3)
            first = json.loads(lines[0])
            self.assertEqual(first["process"], "ISOLATION")
            self.assertEqual(first["action"], "ACTIVATION_START")
            self.assertEqual(first["schema_version"], 1)
            self.assertTrue(first["ts_utc"].endswith("Z"))
            entries = log.read_entries(correlation_id="corr-1")
            self.assertEqual([e["action"] for e in entries], ["ACTIVATION_START", "EXTENSION_DISABLE_FAILED"])
            self.assertEqual(entries[1]["level"], "error")

    def test_unknown_level_falls_back_to_info(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log = JsonlAuditLog(Path(tmp) / "a.jsonl")
            log.record("ISOLATION", "X", "c", {}, level="loud")
            self.assertEqual(log.read_entries()[0]["level"], "info")

    def test_data_is_normalized(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log = JsonlAuditLog(Path(tmp) / "a.jsonl")
            log.record("ISOLATION", "X", "c", {"type": ViolationType.EXTENSION_REACTIVATED, "ids": {"b", "a"}, "p": Path("x")})
            data = log.read_entries()[0]["data"]
            self.assertEqual(data, {"ids": ["a", "b"], "p": "x", "type": "extension_reactivated"})


class JsonlLoggerTests(unittest.TestCase):
    def test_event_and_archive_rotation(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "logs" / "ops.jsonl"
            logger = JsonlLogger(JsonlLoggerConfig(path=path, rotate_max_bytes=1024))
            logger.event(event="cli.command.start", command="status", padding="x" * 1100)
            logger.event(event="cli.command.finish", correlation_id="c1", exit_code=0)
            archived = list((path.parent / "archive").iterdir())
            self.assertEqual(len(archived), 1)
            entry = json.loads(path.read_text(encoding="utf-8").splitlines()[0])
            self.assertEqual(entry["event"], "cli.command.finish")
            self.assertEqual(entry["correlation_id"], "c1")
            self.assertEqual(entry["exit_code"], 0)


if __name__ == "__main__":
    unittest.main()
