import yaml

from rancher_probes import manifests


def test_synthetic_pod():
    pod = manifests.synthetic_pod("test-pod-1-abc", "synthetic-test-x")

    assert pod["metadata"]["labels"] == {"test": "synthetic-test"}
    assert pod["spec"]["containers"][0]["image"] == "nginx:latest"


def test_failing_job_never_retries():
    job = manifests.failing_job("qa-failing-job-abc", "job-state-test-abc")

    assert job["spec"]["backoffLimit"] == 0
    pod_spec = job["spec"]["template"]["spec"]
    assert pod_spec["restartPolicy"] == "Never"
    assert pod_spec["containers"][0]["command"] == ["sh", "-c", "sleep 60; exit 1"]


def test_backups_carry_own_id():
    items = manifests.backups("backup-test-abc", count=3)

    assert [item["metadata"]["name"] for item in items] == ["backup-1", "backup-2", "backup-3"]
    assert [item["id"] for item in items] == ["test1", "test2", "test3"]
    assert items[0]["apiVersion"] == "stable.example.com/v1"


def test_backup_crd_names():
    crd = manifests.backup_crd()

    assert crd["metadata"]["name"] == "backups.stable.example.com"
    assert crd["spec"]["scope"] == "Namespaced"
    schema = crd["spec"]["versions"][0]["schema"]["openAPIV3Schema"]
    assert schema["required"] == ["id"]


def test_to_yaml_keeps_key_order():
    text = manifests.to_yaml(manifests.synthetic_pod("p", "ns"))

    assert text.startswith("apiVersion: v1\nkind: Pod\n")
    assert yaml.safe_load(text)["metadata"]["name"] == "p"


def test_to_yaml_list_is_multi_document():
    text = manifests.to_yaml(manifests.backups("ns", count=2))

    assert [doc["id"] for doc in yaml.safe_load_all(text)] == ["test1", "test2"]
