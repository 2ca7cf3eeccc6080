import unittest

from capture_isolation.config import IsolationConfig
from capture_isolation.kernel.errors import IsolationErrorCode
from capture_isolation.kernel.hashing import is_sha256_hex

from tests._isolation_support import HOST_ID, MemoryStore, ext, make_manager


STORE_KEY = "lexato_isolation_snapshot"


class PreviewIsolationTests(unittest.TestCase):
    def test_preview_partitions_without_side_effects(self) -> None:
        manager, directory, store, audit = make_manager()
        preview = manager.preview_isolation()
        self.assertEqual([entry.id for entry in preview.extensions_to_disable], ["ext-a", "ext-b"])
        self.assertEqual([entry.id for entry in preview.non_disableable_extensions], ["ext-managed"])
        self.assertEqual(preview.total_extensions, 6)
        self.assertEqual(preview.to_disable_count, 2)
        self.assertEqual(directory.calls, [])
        self.assertEqual(store.data, {})
        self.assertFalse(manager.is_active)

    def test_preview_to_dict_is_camel_case(self) -> None:
        manager, _directory, _store, _audit = make_manager()
        payload = manager.preview_isolation().to_dict()
        self.assertEqual(payload["toDisableCount"], 2)
        self.assertEqual(payload["nonDisableableCount"], 1)
        self.assertEqual(payload["extensionsToDisable"][0]["wasEnabled"], True)


class ActivateIsolationTests(unittest.TestCase):
    def test_activation_disables_only_eligible(self) -> None:
        manager, directory, store, audit = make_manager()
        result = manager.activate_isolation("corr-1")
        self.assertTrue(result.success)
        self.assertEqual(result.disabled_extensions, ["ext-a", "ext-b"])
        self.assertEqual(directory.calls, [("ext-a", False), ("ext-b", False)])
        self.assertTrue(directory.enabled(HOST_ID))
        self.assertTrue(directory.enabled("theme-dark"))
        self.assertTrue(directory.enabled("ext-managed"))
        self.assertTrue(manager.is_active)

    def test_snapshot_hash_and_persisted_record(self) -> None:
        manager, _directory, store, _audit = make_manager()
        result = manager.activate_isolation("corr-1")
        self.assertTrue(is_sha256_hex(result.snapshot.hash))
        record = store.data[STORE_KEY]
        self.assertEqual(record["snapshot"]["hash"], result.snapshot.hash)
        self.assertEqual(record["snapshot"]["correlationId"], "corr-1")
        self.assertEqual(record["snapshot"]["lexatoExtensionId"], HOST_ID)
        self.assertIsInstance(record["persistedAt"], int)
        self.assertEqual(record["version"], "0.1.0")
        members = [item["id"] for item in record["snapshot"]["extensions"]]
        self.assertEqual(members, ["ext-a", "ext-b", "ext-c", "ext-managed"])

    def test_one_disable_failure_does_not_abort_batch(self) -> None:
        manager, directory, store, audit = make_manager([ext(HOST_ID), ext("ext-1"), ext("ext-2")])
        directory.fail_ids.add("ext-1")
        result = manager.activate_isolation("corr-2")
        self.assertTrue(result.success)
        self.assertEqual(len(result.disabled_extensions), 1)
        self.assertEqual(result.disabled_extensions, ["ext-2"])
        self.assertIn(STORE_KEY, store.data)
        failed = audit.find("EXTENSION_DISABLE_FAILED")
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0]["data"]["extensionId"], "ext-1")
        self.assertEqual(failed[0]["level"], "error")

    def test_already_active_has_no_side_effects(self) -> None:
        manager, directory, store, _audit = make_manager()
        first = manager.activate_isolation("corr-1")
        calls_before = list(directory.calls)
        second = manager.activate_isolation("corr-2")
        self.assertFalse(second.success)
        self.assertEqual(second.error_code, IsolationErrorCode.ALREADY_ACTIVE)
        self.assertEqual(directory.calls, calls_before)
        self.assertEqual(store.data[STORE_KEY]["snapshot"]["id"], first.snapshot.id)

    def test_pending_record_blocks_activation(self) -> None:
        store = MemoryStore()
        manager, directory, _store, _audit = make_manager(store=store)
        manager.activate_isolation("corr-1")
        # A fresh process does not know about the earlier session.
        fresh, fresh_directory, _store, audit = make_manager(store=store)
        result = fresh.activate_isolation("corr-2")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, IsolationErrorCode.ALREADY_ACTIVE)
        self.assertEqual(fresh_directory.calls, [])
        self.assertIn("ACTIVATION_FAILED", audit.actions())

    def test_enumeration_failure_reports_list_failed(self) -> None:
        manager, directory, store, audit = make_manager()
        directory.list_error = RuntimeError("management API unavailable")
        result = manager.activate_isolation("corr-3")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, IsolationErrorCode.LIST_FAILED)
        self.assertEqual(store.data, {})
        self.assertFalse(manager.is_active)
        self.assertIn("LIST_EXTENSIONS_FAILED", audit.actions())
        self.assertIn("ACTIVATION_FAILED", audit.actions())

    def test_persist_failure_rolls_back_disables(self) -> None:
        manager, directory, store, audit = make_manager()
        store.fail_set = True
        result = manager.activate_isolation("corr-4")
        self.assertFalse(result.success)
        self.assertEqual(result.error_code, IsolationErrorCode.STORE_FAILED)
        self.assertFalse(manager.is_active)
        self.assertTrue(directory.enabled("ext-a"))
        self.assertTrue(directory.enabled("ext-b"))
        self.assertEqual([entry["data"]["extensionId"] for entry in audit.find("EXTENSION_RESTORED_BY_ID")], ["ext-a", "ext-b"])

    def test_audit_trail_carries_correlation_id(self) -> None:
        manager, _directory, _store, audit = make_manager()
        manager.activate_isolation("corr-5")
        actions = audit.actions()
        self.assertEqual(actions[0], "ACTIVATION_START")
        self.assertEqual(actions[-1], "ACTIVATION_COMPLETE")
        self.assertIn("NON_DISABLEABLE_EXTENSIONS", actions)
        self.assertIn("SNAPSHOT_PERSISTED", actions)
        for entry in audit.entries:
            self.assertEqual(entry["process"], "ISOLATION")
            self.assertEqual(entry["correlation_id"], "corr-5")
        complete = audit.find("ACTIVATION_COMPLETE")[0]
        self.assertIn("elapsedMs", complete["data"])

    def test_excluded_type_from_config_is_left_alone(self) -> None:
        config = IsolationConfig(raw={"isolation": {"excluded_types": ["login_screen_extension"]}})
        extensions = [ext(HOST_ID), ext("kiosk", type="login_screen_extension"), ext("ext-a")]
        manager, directory, _store, _audit = make_manager(extensions, config=config)
        result = manager.activate_isolation("corr-6")
        self.assertEqual(result.disabled_extensions, ["ext-a"])
        self.assertNotIn("kiosk", result.snapshot.member_ids)

    def test_status_reflects_active_session(self) -> None:
        manager, _directory, _store, _audit = make_manager()
        self.assertFalse(manager.get_isolation_status().is_active)
        manager.activate_isolation("corr-7")
        status = manager.get_isolation_status()
        self.assertTrue(status.is_active)
        self.assertEqual(status.disabled_count, 2)
        self.assertEqual(status.non_disableable_count, 1)
        self.assertEqual(status.to_dict()["disabledExtensionIds"], ["ext-a", "ext-b"])


if __name__ == "__main__":
    unittest.main()
