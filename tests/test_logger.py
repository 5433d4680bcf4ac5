import os
from types import SimpleNamespace

from cloud_burster.utils.logger import enrich_record


def _record(path, **extra):
    return {"file": SimpleNamespace(path=path), "extra": dict(extra)}


def test_enrich_record_prefixes_bound_fields():
    record = _record(os.path.join(os.getcwd(), "cloud_burster", "cli.py"), hostname="cn1", cloud="openstack")

    assert enrich_record(record) is True
    assert record["extra"]["rel_path"] == os.path.join("cloud_burster", "cli.py")
    assert record["extra"]["formatted_prefix"] == "[cn1] [openstack] "


def test_enrich_record_without_extra_fields():
    record = _record("/somewhere/else.py")

    enrich_record(record)
    assert record["extra"]["rel_path"] == "/somewhere/else.py"
    assert record["extra"]["formatted_prefix"] == ""
