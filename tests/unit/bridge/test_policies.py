"""Policy installer: validation, staging cleanup and atomic publish."""

import base64
import json
import threading

import pytest
import torch

from ioncircuit.bridge.policies import PolicyInstaller, PolicyInstallError
from ioncircuit.rl.model import PolicyNet, save_policy_bytes
from ioncircuit.rl.policy import MANIFEST_FILE, POLICY_FILE, PolicyRunner


@pytest.fixture
def installer(tmp_path):
    return PolicyInstaller(tmp_path / "Policies", keep_versions=2)


def _leftovers(root):
    return [p.name for p in root.iterdir() if p.name.startswith((".staging-", ".link-"))]


class TestInstall:
    def test_publishes_bundle(self, installer, policy_bytes):
        installed = installer.install(policy_bytes, "t1")
        assert installed.path == installer.root / "t1.policy"
        assert installed.path.is_symlink()
        assert (installed.path / POLICY_FILE).is_file()
        manifest = json.loads((installed.path / MANIFEST_FILE).read_text())
        assert manifest["name"] == "t1"
        assert manifest["obs_dim"] == 16
        assert manifest["sha256"] == installed.sha256
        assert installed.size_bytes == len(policy_bytes)
        assert _leftovers(installer.root) == []

    def test_default_name(self, installer, policy_bytes):
        installed = installer.install(policy_bytes)
        assert installed.name == "IonCircuitPolicy"
        assert installer.resolve("IonCircuitPolicy") == installed.path

    def test_resolve_unknown_name(self, installer):
        assert installer.resolve("nothing") is None

    def test_b64_install(self, installer, policy_bytes):
        installed = installer.install_b64(base64.b64encode(policy_bytes).decode("ascii"), "t1")
        assert installed.path.exists()

    def test_published_bundle_loads_in_runner(self, installer, policy_bytes):
        installed = installer.install(policy_bytes, "t1")
        runner = PolicyRunner.load(installed.path)
        assert runner.obs_dim == 16
        assert runner.manifest["name"] == "t1"

    def test_reinstall_swaps_version_and_prunes(self, installer, policy_bytes):
        first = installer.install(policy_bytes, "t1")
        torch.manual_seed(1)
        other = save_policy_bytes(PolicyNet())
        second = installer.install(other, "t1")
        third = installer.install(policy_bytes, "t1")

        assert third.path.resolve() == third.version_path.resolve()
        assert not first.version_path.exists()
        assert second.version_path.exists()
        assert len([p for p in installer.versions_root.iterdir() if p.name.startswith("t1-")]) == 2

    def test_prune_leaves_other_names_alone(self, installer, policy_bytes):
        installer.install(policy_bytes, "t1-extra")
        for _ in range(3):
            installer.install(policy_bytes, "t1")
        assert installer.resolve("t1-extra") is not None
        assert (installer.resolve("t1-extra") / POLICY_FILE).is_file()


class TestFailures:
    @pytest.mark.parametrize("payload", [None, "not-base64!!", "QQ="])
    def test_bad_b64(self, installer, payload):
        with pytest.raises(PolicyInstallError):
            installer.install_b64(payload, "t1")

    def test_invalid_artifact_publishes_nothing(self, installer):
        with pytest.raises(PolicyInstallError, match="invalid policy artifact"):
            installer.install(b"\x00" * 64, "t1")
        assert installer.resolve("t1") is None
        assert _leftovers(installer.root) == []
        assert list(installer.versions_root.iterdir()) == []

    def test_failed_install_keeps_previous_version(self, installer, policy_bytes):
        good = installer.install(policy_bytes, "t1")
        before = (good.path / POLICY_FILE).read_bytes()
        with pytest.raises(PolicyInstallError):
            installer.install(b"garbage", "t1")
        assert (good.path / POLICY_FILE).read_bytes() == before
        assert good.path.resolve() == good.version_path.resolve()
        assert _leftovers(installer.root) == []

    @pytest.mark.parametrize("name", ["", "../escape", ".hidden", "a/b", "x" * 129, "sp ace"])
    def test_bad_names(self, installer, policy_bytes, name):
        with pytest.raises(PolicyInstallError, match="invalid policy name"):
            installer.install(policy_bytes, name)

    def test_unexpected_load_error_becomes_install_error(self, installer, policy_bytes, monkeypatch):
        def explode(data, **kwargs):
            raise RuntimeError("CUDA out of memory")

        monkeypatch.setattr("ioncircuit.bridge.policies.load_policy_checkpoint", explode)
        with pytest.raises(PolicyInstallError, match="RuntimeError: CUDA out of memory"):
            installer.install(policy_bytes, "t1")
        assert installer.resolve("t1") is None
        assert _leftovers(installer.root) == []

    def test_refuses_to_replace_unmanaged_path(self, installer, policy_bytes):
        installer.root.mkdir(parents=True)
        (installer.root / "t1.policy").mkdir()
        with pytest.raises(PolicyInstallError, match="not a managed policy slot"):
            installer.install(policy_bytes, "t1")
        assert _leftovers(installer.root) == []


def test_readers_never_see_partial_bundle(tmp_path, policy_bytes):
    """A reader that pins the slot once always finds a complete manifest + policy pair."""
    # Enough retained versions that nothing a reader resolved is pruned under it.
    installer = PolicyInstaller(tmp_path / "Policies", keep_versions=16)
    installer.install(policy_bytes, "t1")
    slot = installer.published_path("t1")
    stop = threading.Event()
    errors: list[BaseException] = []

    def reader():
        while not stop.is_set():
            try:
                version_dir = slot.resolve(strict=True)
                manifest = json.loads((version_dir / MANIFEST_FILE).read_text())
                assert manifest["name"] == "t1"
                assert (version_dir / POLICY_FILE).stat().st_size > 0
            except BaseException as e:
                errors.append(e)
                return

    threads = [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    try:
        for _ in range(10):
            installer.install(policy_bytes, "t1")
    finally:
        stop.set()
        for t in threads:
            t.join(timeout=10)
    assert errors == []


def test_runner_loads_while_slot_is_republished(tmp_path, policy_bytes):
    installer = PolicyInstaller(tmp_path / "Policies", keep_versions=16)
    installed = installer.install(policy_bytes, "t1")
    stop = threading.Event()
    errors: list[BaseException] = []

    def loader():
        while not stop.is_set():
            try:
                assert PolicyRunner.load(installed.path).manifest["name"] == "t1"
            except BaseException as e:
                errors.append(e)
                return

    t = threading.Thread(target=loader)
    t.start()
    try:
        for _ in range(8):
            installer.install(policy_bytes, "t1")
    finally:
        stop.set()
        t.join(timeout=10)
    assert errors == []


def test_concurrent_installs_to_one_name(installer, policy_bytes):
    """Racing installs of the same name all finish and leave one loadable slot."""
    barrier = threading.Barrier(6)
    results: list[object] = []
    errors: list[BaseException] = []

    def install():
        barrier.wait()
        try:
            results.append(installer.install(policy_bytes, "t1"))
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=install) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert len(results) == 6
    assert _leftovers(installer.root) == []
    assert _leftovers(installer.versions_root) == []
    assert len([p for p in installer.versions_root.iterdir() if p.name.startswith("t1-")]) <= installer.keep_versions
    runner = PolicyRunner.load(installer.published_path("t1"))
    assert runner.obs_dim == 16
