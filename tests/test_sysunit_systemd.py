from subprocess import CalledProcessError, CompletedProcess
import threading
import unittest
from unittest.mock import patch

from sysunit.context import Context
from sysunit.errors import ActionFailed, Cancelled, ConnectionFailed, ManagerError, QueryFailed
from sysunit.plumbing import states, systemd
from sysunit.plumbing.common import State

from .utils import FakeManager


SHOW = b"""Id=nginx.service
Description=A high performance web server
LoadState=loaded
ActiveState=active
SubState=running
Following=
Job=

Id=missing.service
Description=missing.service
LoadState=not-found
ActiveState=inactive
SubState=dead
Following=
Job=42 start
"""


def proc(stdout: bytes = b"", stderr: bytes = b"") -> CompletedProcess:
    return CompletedProcess([], 0, stdout, stderr)


def failed(stderr: bytes, code: int = 1) -> CalledProcessError:
    return CalledProcessError(code, [], b"", stderr)


@patch("sysunit.plumbing.systemd.command")
class TestConnection(unittest.TestCase):

    def setUp(self):
        self.conn = systemd.Connection(systemd.USER, "/usr/bin/systemctl")

    def tearDown(self):
        self.conn.close()

    def test_args(self, command):
        command.return_value = proc()
        self.conn.reload()
        command.assert_called_once_with(["/usr/bin/systemctl", "--user", "daemon-reload"],
                                        output=True)

    def test_bad_scope(self, command):
        with self.assertRaises(ValueError):
            systemd.Connection("global")

    def test_list_by_names(self, command):
        command.return_value = proc(SHOW)
        found, missing = self.conn.list_by_names(["nginx.service", "missing.service"])
        self.assertEqual(found, systemd.UnitStatus("nginx.service", "A high performance web server",
                                                   "loaded", "active", "running", "", 0, ""))
        self.assertEqual(missing.load_state, states.NOT_FOUND)
        self.assertEqual((missing.job_id, missing.job_type), (42, "start"))

    def test_list_empty(self, command):
        self.assertEqual(self.conn.list_by_names([]), [])
        command.assert_not_called()

    def test_unit_file_state(self, command):
        command.return_value = proc(b"enabled\n")
        self.assertEqual(self.conn.get_unit_file_state("nginx.service"), "enabled")
        self.assertIn("--value", command.call_args[0][0])

    def test_enable(self, command):
        command.return_value = proc(stderr=b"Created symlink /etc/systemd/system/multi-user.target"
                                           b".wants/nginx.service \xe2\x86\x92 /lib/systemd/system"
                                           b"/nginx.service.\n")
        has_install, changes = self.conn.enable("nginx.service")
        self.assertTrue(has_install)
        self.assertEqual(len(changes), 1)
        self.assertTrue(changes[0].startswith("Created symlink"))
        self.assertEqual(command.call_args[0][0][-3:], ["enable", "--force", "nginx.service"])

    def test_enable_no_install(self, command):
        command.return_value = proc(stderr=b"The unit files have no installation config "
                                           b"(WantedBy=, RequiredBy=, Also=,\nAlias= settings "
                                           b"in the [Install] section...\n")
        has_install, changes = self.conn.enable("oneshot.service")
        self.assertFalse(has_install)
        self.assertEqual(changes, [])

    def test_mask_runtime(self, command):
        command.return_value = proc()
        self.conn.mask("nginx.service", runtime=True)
        self.assertEqual(command.call_args[0][0][-4:],
                         ["mask", "--runtime", "--force", "nginx.service"])

    def test_manager_error(self, command):
        command.side_effect = failed(b"Failed to enable unit: Access denied\n", 4)
        with self.assertRaises(ManagerError) as cm:
            self.conn.disable("nginx.service")
        self.assertEqual(cm.exception.code, 4)
        self.assertEqual(cm.exception.message, "Failed to enable unit: Access denied")

    def test_bus_error(self, command):
        command.side_effect = failed(b"Failed to connect to bus: No such file or directory\n")
        with self.assertRaises(ConnectionFailed):
            self.conn.ping()

    def test_missing_binary(self, command):
        command.side_effect = FileNotFoundError(2, "No such file or directory")
        with self.assertRaises(ConnectionFailed):
            self.conn.reload()

    def test_closed(self, command):
        self.conn.close()
        with self.assertRaises(ConnectionFailed):
            self.conn.reload()
        command.assert_not_called()

    def test_job_done(self, command):
        command.return_value = proc()
        job = self.conn.start("nginx.service", "fail")
        self.assertEqual(job.result(5), systemd.JobResult(systemd.JOB_DONE))
        self.assertEqual(command.call_args[0][0][-3:], ["--job-mode=fail", "start",
                                                         "nginx.service"])

    def test_job_failed(self, command):
        command.side_effect = failed(b"Job for nginx.service failed because the control process "
                                     b"exited with error code.\n")
        result = self.conn.restart("nginx.service").result(5)
        self.assertEqual(result.status, "failed")
        self.assertIn("control process exited with error code", result.message)

    def test_job_dependency(self, command):
        command.side_effect = failed(b"A dependency job for nginx.service failed. See "
                                     b"'journalctl -xe' for details.\n")
        self.assertEqual(self.conn.start("nginx.service").result(5).status, "dependency")

    def test_job_canceled(self, command):
        command.side_effect = failed(b"Job for nginx.service canceled.\n")
        self.assertEqual(self.conn.stop("nginx.service").result(5).status, "canceled")

    def test_job_refused_reason(self, command):
        command.side_effect = failed(b"Failed to start nginx.service: Access denied\n", 4)
        with patch.object(self.conn, "list_by_names", return_value=[
                systemd.UnitStatus("nginx.service", "", "loaded", "inactive", "dead", "", 0, "")]):
            with self.assertRaises(ActionFailed) as cm:
                systemd.ensure_active(Context(), self.conn, "nginx.service", True)
        self.assertEqual(cm.exception.verb, "start")
        self.assertIn("Failed to start nginx.service: Access denied", cm.exception.reason)
        self.assertIn("Access denied", str(cm.exception))


class TestConnect(unittest.TestCase):

    @patch("sysunit.plumbing.systemd.command")
    def test_rejected(self, command):
        command.side_effect = failed(b"Access denied\n")
        with self.assertRaises(ConnectionFailed):
            systemd.connect(systemd.SYSTEM)

    def test_context_closes(self):
        manager = FakeManager()
        with systemd.context(systemd.SYSTEM, manager) as conn:
            self.assertIs(conn, manager)
        self.assertEqual(manager.closed, 1)


class TestQueries(unittest.TestCase):

    def setUp(self):
        self.manager = FakeManager()
        self.manager.add("a.service", states.ENABLED, active=True)

    def test_status(self):
        status = systemd.get_status(self.manager, "a.service")
        self.assertEqual(status.active_state, states.ACTIVE)

    def test_status_not_found(self):
        status = systemd.get_status(self.manager, "b.service")
        self.assertEqual(status.load_state, states.NOT_FOUND)

    def test_status_error(self):
        self.manager.refuse.add(("list", "a.service"))
        with self.assertRaises(QueryFailed):
            systemd.get_status(self.manager, "a.service")

    def test_unit_file_state_error(self):
        self.manager.refuse.add(("file-state", "a.service"))
        with self.assertRaises(QueryFailed):
            systemd.get_unit_file_state(self.manager, "a.service")


class TestEnsureEnabled(unittest.TestCase):

    def setUp(self):
        self.manager = FakeManager()

    def test_enable(self):
        self.manager.add("a.service", states.DISABLED)
        self.assertEqual(systemd.ensure_enabled(self.manager, "a.service", True).state,
                         State.success)
        self.assertEqual(self.manager.units["a.service"].unit_file_state, states.ENABLED)

    def test_already_enabled(self):
        self.manager.add("a.service", states.ENABLED)
        self.assertEqual(systemd.ensure_enabled(self.manager, "a.service", True).state,
                         State.unchanged)
        self.assertEqual(self.manager.actions(), [])

    def test_disable(self):
        self.manager.add("a.service", states.ENABLED)
        self.assertTrue(systemd.ensure_enabled(self.manager, "a.service", False))
        self.assertEqual(self.manager.actions(), [("disable", "a.service")])

    def test_static_untouched(self):
        self.manager.add("a.service", states.STATIC)
        for enable in (True, False):
            with self.subTest(enable=enable):
                self.assertFalse(systemd.ensure_enabled(self.manager, "a.service", enable))
        self.assertEqual(self.manager.actions(), [])

    def test_masked_untouched(self):
        self.manager.add("a.service", states.MASKED)
        self.assertFalse(systemd.ensure_enabled(self.manager, "a.service", True))
        self.assertEqual(self.manager.actions(), [])

    def test_refused(self):
        self.manager.add("a.service", states.DISABLED)
        self.manager.refuse.add(("enable", "a.service"))
        with self.assertRaises(ActionFailed) as cm:
            systemd.ensure_enabled(self.manager, "a.service", True)
        self.assertEqual(cm.exception.verb, "enable")
        self.assertEqual(str(cm.exception), "cannot enable unit a.service: Access denied")


class TestEnsureMasked(unittest.TestCase):

    def setUp(self):
        self.manager = FakeManager()

    def test_mask(self):
        self.manager.add("a.service", states.ENABLED)
        self.assertTrue(systemd.ensure_masked(self.manager, "a.service", states.MASKED))
        self.assertEqual(self.manager.units["a.service"].unit_file_state, states.MASKED)

    def test_mask_runtime(self):
        self.manager.add("a.service", states.MASKED)
        self.assertTrue(systemd.ensure_masked(self.manager, "a.service", states.MASKED_RUNTIME))
        self.assertEqual(self.manager.units["a.service"].unit_file_state, states.MASKED_RUNTIME)

    def test_already_masked(self):
        self.manager.add("a.service", states.MASKED)
        self.assertFalse(systemd.ensure_masked(self.manager, "a.service", states.MASKED))

    def test_unmask(self):
        self.manager.add("a.service", states.MASKED)
        self.assertTrue(systemd.ensure_masked(self.manager, "a.service", states.ENABLED))
        self.assertEqual(self.manager.actions(), [("unmask", "a.service")])

    def test_not_masked(self):
        self.manager.add("a.service", states.DISABLED)
        self.assertFalse(systemd.ensure_masked(self.manager, "a.service", ""))
        self.assertEqual(self.manager.actions(), [])


class TestEnsureActive(unittest.TestCase):

    def setUp(self):
        self.manager = FakeManager()

    def test_start(self):
        self.manager.add("a.service")
        result = systemd.ensure_active(Context(), self.manager, "a.service", True)
        self.assertEqual((result.state, result.value), (State.success, systemd.JOB_DONE))
        self.assertTrue(self.manager.units["a.service"].active)

    def test_already_active(self):
        self.manager.add("a.service", active=True)
        self.assertFalse(systemd.ensure_active(Context(), self.manager, "a.service", True))
        self.assertEqual(self.manager.actions(), [])

    def test_stop(self):
        self.manager.add("a.service", active=True)
        self.assertTrue(systemd.ensure_active(Context(), self.manager, "a.service", False))
        self.assertEqual(self.manager.actions(), [("stop", "a.service")])

    def test_restart(self):
        self.manager.add("a.service", active=True)
        self.assertTrue(systemd.ensure_active(Context(), self.manager, "a.service", True, True))
        self.assertEqual(self.manager.actions(), [("restart", "a.service")])

    def test_restart_ignored_when_stopping(self):
        self.manager.add("a.service", active=True)
        systemd.ensure_active(Context(), self.manager, "a.service", False, True)
        self.assertEqual(self.manager.actions(), [("stop", "a.service")])

    def test_job_failed(self):
        self.manager.add("a.service")
        self.manager.job_results["a.service"] = "failed"
        with self.assertRaises(ActionFailed) as cm:
            systemd.ensure_active(Context(), self.manager, "a.service", True)
        self.assertEqual(cm.exception.reason, "job finished with result 'failed'")

    def test_masked(self):
        self.manager.add("a.service", states.MASKED)
        with self.assertRaises(ActionFailed) as cm:
            systemd.ensure_active(Context(), self.manager, "a.service", True)
        self.assertEqual(cm.exception.verb, "start")

    def test_cancelled(self):
        self.manager.add("a.service")
        self.manager.hung.add("a.service")
        ctx = Context()
        timer = threading.Timer(0.05, ctx.cancel)
        timer.start()
        with self.assertRaises(Cancelled):
            systemd.ensure_active(ctx, self.manager, "a.service", True)
        timer.join()


if __name__ == "__main__":
    unittest.main()
