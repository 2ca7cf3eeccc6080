import unittest

from capture_isolation.isolation.snapshot import build_snapshot
from capture_isolation.isolation.types import ExtensionInfo, ViolationType
from capture_isolation.isolation.violations import ViolationDetector
from capture_isolation.kernel.errors import DirectoryEnumerationError

from tests._isolation_support import HOST_ID, FakeDirectory, RecordingAuditLog, ext, make_manager


class ViolationDetectorTests(unittest.TestCase):
    def test_reactivated_extension_detected(self) -> None:
        items = [ext(HOST_ID), ext("ext_1")]
        snapshot = build_snapshot([ExtensionInfo.from_mapping(item) for item in items], HOST_ID, "corr-1")
        directory = FakeDirectory(items)
        audit = RecordingAuditLog()
        detector = ViolationDetector(directory, audit)
        found = detector.check(snapshot, ["ext_1"])
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].type, ViolationType.EXTENSION_REACTIVATED)
        self.assertEqual(found[0].extension_id, "ext_1")
        self.assertEqual(audit.find("VIOLATION_EXTENSION_REACTIVATED")[0]["level"], "critical")

    def test_findings_accumulate_until_cleared(self) -> None:
        items = [ext(HOST_ID), ext("ext_1")]
        snapshot = build_snapshot([ExtensionInfo.from_mapping(item) for item in items], HOST_ID, "corr-1")
        detector = ViolationDetector(FakeDirectory(items), RecordingAuditLog())
        detector.check(snapshot, ["ext_1"])
        detector.check(snapshot, ["ext_1"])
        self.assertEqual(len(detector.violations), 2)
        detector.clear()
        self.assertEqual(detector.violations, [])


class ManagerViolationTests(unittest.TestCase):
    def test_inactive_returns_empty(self) -> None:
        manager, directory, _store, audit = make_manager()
        self.assertEqual(manager.check_for_violations(), [])
        self.assertEqual(manager.get_violations(), [])

    def test_clean_session_has_no_violations(self) -> None:
        manager, _directory, _store, _audit = make_manager()
        manager.activate_isolation("corr-1")
        self.assertEqual(manager.check_for_violations(), [])

    def test_reactivation_detected(self) -> None:
        manager, directory, _store, _audit = make_manager()
        manager.activate_isolation("corr-1")
        directory.extensions["ext-a"]["enabled"] = True
        violations = manager.check_for_violations()
        self.assertEqual([(v.type, v.extension_id) for v in violations], [(ViolationType.EXTENSION_REACTIVATED, "ext-a")])

    def test_non_disableable_extension_is_not_a_reactivation(self) -> None:
        manager, _directory, _store, _audit = make_manager()
        manager.activate_isolation("corr-1")
        ids = [v.extension_id for v in manager.check_for_violations()]
        self.assertNotIn("ext-managed", ids)

    def test_new_extension_detected(self) -> None:
        manager, directory, _store, audit = make_manager()
        manager.activate_isolation("corr-1")
        directory.install(ext("ext-new", install_type="development"))
        violations = manager.check_for_violations()
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0].type, ViolationType.NEW_EXTENSION_INSTALLED)
        self.assertEqual(violations[0].details["installType"], "development")
        entry = audit.find("VIOLATION_NEW_EXTENSION")[0]
        self.assertEqual(entry["level"], "warn")
        self.assertEqual(entry["correlation_id"], "corr-1")

    def test_new_disabled_extension_or_theme_ignored(self) -> None:
        manager, directory, _store, _audit = make_manager()
        manager.activate_isolation("corr-1")
        directory.install(ext("ext-off", enabled=False))
        directory.install(ext("theme-new", type="theme"))
        self.assertEqual(manager.check_for_violations(), [])

    def test_disabled_host_detected(self) -> None:
        manager, directory, _store, _audit = make_manager()
        manager.activate_isolation("corr-1")
        directory.extensions[HOST_ID]["enabled"] = False
        violations = manager.check_for_violations()
        self.assertEqual([v.type for v in violations], [ViolationType.HOST_EXTENSION_DISABLED])

    def test_violations_cleared_on_deactivation(self) -> None:
        # Violations belong to one session and are dropped once it ends.
        manager, directory, _store, _audit = make_manager()
        manager.activate_isolation("corr-1")
        directory.install(ext("ext-new"))
        manager.check_for_violations()
        manager.check_for_violations()
        self.assertEqual(len(manager.get_violations()), 2)
        self.assertTrue(manager.deactivate_isolation().success)
        self.assertEqual(manager.get_violations(), [])

    def test_failed_disable_is_not_a_reactivation(self) -> None:
        manager, directory, _store, audit = make_manager([ext(HOST_ID), ext("ext-1"), ext("ext-2")])
        directory.fail_ids.add("ext-1")
        self.assertEqual(manager.activate_isolation("corr-1").disabled_extensions, ["ext-2"])
        self.assertEqual(manager.check_for_violations(), [])
        self.assertEqual(manager.check_for_violations(), [])
        self.assertEqual(manager.get_violations(), [])
        self.assertEqual(audit.find("VIOLATION_EXTENSION_REACTIVATED"), [])

    def test_ids_restored_by_partial_restore_are_not_reactivations(self) -> None:
        manager, directory, _store, _audit = make_manager([ext(HOST_ID), ext("ext-1"), ext("ext-2")])
        manager.activate_isolation("corr-1")
        directory.fail_ids.add("ext-2")
        self.assertFalse(manager.deactivate_isolation().success)
        self.assertTrue(manager.is_active)
        self.assertEqual(manager.get_isolation_status().disabled_extension_ids, ["ext-2"])
        self.assertEqual(manager.check_for_violations(), [])

    def test_enumeration_failure_is_logged(self) -> None:
        manager, directory, _store, audit = make_manager()
        manager.activate_isolation("corr-1")
        directory.list_error = RuntimeError("management API unavailable")
        with self.assertRaises(DirectoryEnumerationError):
            manager.check_for_violations()
        failed = audit.find("LIST_EXTENSIONS_FAILED")
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0]["correlation_id"], "corr-1")
        self.assertEqual(failed[0]["level"], "error")

    def test_violation_to_dict(self) -> None:
        manager, directory, _store, _audit = make_manager()
        manager.activate_isolation("corr-1")
        directory.extensions["ext-b"]["enabled"] = True
        payload = manager.check_for_violations()[0].to_dict()
        self.assertEqual(payload["type"], "extension_reactivated")
        self.assertEqual(payload["extensionId"], "ext-b")
        self.assertIsInstance(payload["timestamp"], int)


if __name__ == "__main__":
    unittest.main()
