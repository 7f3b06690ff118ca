import io
import os
import time
from unittest.mock import patch

import pytest
from rich.console import Console

from rancher_probes.tests.test_utils import make_namespace_cache
from rancher_probes.vai_watch import WatchState, check_pods, parse_args, prune_snapshots, watch


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200, highlight=False)


def _copy_caches(namespaces_by_pod):
    def fake_copy(pod, namespace, remote_path, local_path):
        if pod not in namespaces_by_pod:
            raise RuntimeError(f"kubectl command failed: cp {pod}")
        make_namespace_cache(local_path, namespaces_by_pod[pod])

    return fake_copy


def test_prune_snapshots_keeps_newest(tmp_path):
    now = time.time()
    for age, name in enumerate(["e", "d", "c", "b", "a"]):
        snapshot_dir = tmp_path / name
        snapshot_dir.mkdir()
        os.utime(snapshot_dir, (now - age * 60, now - age * 60))

    removed = prune_snapshots(tmp_path, keep=3)

    assert sorted(path.name for path in removed) == ["a", "b"]
    assert sorted(path.name for path in tmp_path.iterdir()) == ["c", "d", "e"]


def test_prune_snapshots_missing_root(tmp_path):
    assert prune_snapshots(tmp_path / "missing", keep=3) == []


def test_check_pods_all_found(tmp_path, console):
    state = WatchState("myspace", time.time(), time.time() + 180)
    caches = {"rancher-a": ["myspace"], "rancher-b": ["cattle-system", "myspace"]}

    with patch("rancher_probes.vai_watch.k8s_utils") as mock_k8s:
        mock_k8s.list_pod_names.return_value = ["rancher-a", "rancher-b"]
        mock_k8s.copy_from_pod.side_effect = _copy_caches(caches)
        assert check_pods(1, state, tmp_path, 3, console)

    assert set(state.first_found) == {"rancher-a", "rancher-b"}
    assert "First appearance in rancher-a" in console.file.getvalue()


def test_check_pods_partial(tmp_path, console):
    state = WatchState("myspace", time.time(), time.time() + 180)
    caches = {"rancher-a": ["myspace"], "rancher-b": ["cattle-system"]}

    with patch("rancher_probes.vai_watch.k8s_utils") as mock_k8s:
        mock_k8s.list_pod_names.return_value = ["rancher-a", "rancher-b", "rancher-c"]
        mock_k8s.copy_from_pod.side_effect = _copy_caches(caches)
        assert not check_pods(1, state, tmp_path, 3, console)

    output = console.file.getvalue()
    assert "No match in pod: rancher-b" in output
    assert "Failed to copy cache from rancher-c" in output
    assert list(state.first_found) == ["rancher-a"]


def test_check_pods_first_found_is_kept(tmp_path, console):
    state = WatchState("myspace", time.time(), time.time() + 180, {"rancher-a": 1.0})

    with patch("rancher_probes.vai_watch.k8s_utils") as mock_k8s:
        mock_k8s.list_pod_names.return_value = ["rancher-a"]
        mock_k8s.copy_from_pod.side_effect = _copy_caches({"rancher-a": ["myspace"]})
        assert check_pods(2, state, tmp_path, 3, console)

    assert state.first_found["rancher-a"] == 1.0


def test_check_pods_without_pods_is_not_success(tmp_path, console):
    state = WatchState("myspace", time.time(), time.time() + 180)

    with patch("rancher_probes.vai_watch.k8s_utils") as mock_k8s:
        mock_k8s.list_pod_names.return_value = []
        assert not check_pods(1, state, tmp_path, 3, console)


def test_propagation_seconds():
    state = WatchState("myspace", 100.0, 280.0, {"rancher-a": 110.0, "rancher-b": 152.5})
    assert state.propagation_seconds() == 42
    assert WatchState("myspace", 0.0, 1.0).propagation_seconds() == 0


def test_watch_stops_when_found(tmp_path, console):
    with patch("rancher_probes.vai_watch.check_pods", side_effect=[False, True]) as mock_check:
        with patch("rancher_probes.vai_watch.time.sleep") as mock_sleep:
            assert watch("myspace", 3, 15, tmp_path, 3, console)

    assert mock_check.call_count == 2
    assert mock_check.call_args_list[1].args[0] == 2
    mock_sleep.assert_called_once()
    assert "Successfully found in all pods!" in console.file.getvalue()


def test_watch_zero_duration_reports_timeout(tmp_path, console):
    with patch("rancher_probes.vai_watch.check_pods") as mock_check:
        assert not watch("myspace", 0, 15, tmp_path, 3, console)

    mock_check.assert_not_called()
    assert "Did not find namespace in all pods within time limit" in console.file.getvalue()


def test_parse_args_defaults():
    args = parse_args(["myspace"])

    assert args.duration_minutes == 3
    assert args.interval == 15
    assert args.keep == 3


def test_parse_args_rejects_negative_duration():
    with pytest.raises(SystemExit):
        parse_args(["myspace", "-1"])
