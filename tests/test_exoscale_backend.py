import base64
import hashlib
import hmac

import pytest
import requests

from cloud_burster.cloud.exoscale_backend import ExoscaleBackend, ExoscaleV2Auth, split_instance_type
from cloud_burster.configs import Config
from cloud_burster.errors import BackendOperationError
from cloud_burster.inventory.resolver import InventoryResolver
from cloud_burster.utils.context import RunContext
from cloud_burster.utils.retry import RetryPolicy

from fakes import FakeResponse, FakeSession

FAST = RetryPolicy(tries=3, delay=0)


def _templates(call):
    if call["params"]["visibility"] == "private":
        return FakeResponse(200, {"templates": [{"id": "tpl-own", "name": "Custom"}]})
    return FakeResponse(200, {"templates": [{"id": "tpl-1", "name": "Rocky Linux 9"}]})


def _session() -> FakeSession:
    session = FakeSession()
    session.on("GET", "zone", FakeResponse(200, {"zones": [{"name": "de-fra-1"}, {"name": "ch-gva-2"}]}))
    session.on("GET", "template", _templates)
    session.on(
        "GET",
        "instance-type",
        FakeResponse(
            200,
            {
                "instance-types": [
                    {"id": "it-0", "family": "standard", "size": "small"},
                    {"id": "it-1", "family": "gpu2", "size": "small"},
                ]
            },
        ),
    )
    session.on("GET", "private-network", FakeResponse(200, {"private-networks": [{"id": "pn-1", "name": "burst-net"}]}))
    return session


def _backend(config, session) -> ExoscaleBackend:
    backend = ExoscaleBackend(
        config.clouds[1],
        session=session,
        find_server_policy=FAST,
        stable_policy=FAST,
        operation_policy=FAST,
    )
    backend.initialize_client()
    return backend


def test_split_instance_type():
    assert split_instance_type("gpu2.small") == {"family": "gpu2", "size": "small"}
    assert split_instance_type("Medium") == {"family": "standard", "size": "medium"}


def test_signature_header():
    auth = ExoscaleV2Auth("EXOkey", "exosecret")
    header = auth.signature_header(
        "GET", "https://api-ch-gva-2.exoscale.com/v2/template?visibility=private", None, 1700000000
    )

    message = b"GET /v2/template\n\nprivate\n\n1700000000"
    digest = hmac.new(b"exosecret", msg=message, digestmod=hashlib.sha256).digest()
    expected = base64.standard_b64encode(digest).decode()
    assert header == (
        "EXO2-HMAC-SHA256 credential=EXOkey,signed-query-args=visibility,"
        f"expires=1700000000,signature={expected}"
    )


def test_signature_covers_the_body():
    auth = ExoscaleV2Auth("EXOkey", "exosecret")
    url = "https://api-ch-gva-2.exoscale.com/v2/instance"
    first = auth.signature_header("POST", url, '{"name": "a"}', 1700000000)
    second = auth.signature_header("POST", url, '{"name": "b"}', 1700000000)
    assert "signed-query-args" not in first
    assert first != second


def test_auth_signs_prepared_requests():
    prepared = requests.Request(
        "GET", "https://api-ch-gva-2.exoscale.com/v2/zone"
    ).prepare()
    ExoscaleV2Auth("EXOkey", "exosecret")(prepared)
    assert prepared.headers["Authorization"].startswith("EXO2-HMAC-SHA256 credential=EXOkey,expires=")


def test_initialize_client_checks_the_zone(config):
    session = _session()
    backend = _backend(config, session)
    assert isinstance(session.auth, ExoscaleV2Auth)
    assert session.called("GET", "zone")[0]["url"] == "https://api-ch-gva-2.exoscale.com/v2/zone"
    assert backend.endpoint == "https://api-ch-gva-2.exoscale.com/v2"


def test_initialize_client_unknown_zone(config):
    session = _session()
    session.on("GET", "zone", FakeResponse(200, {"zones": [{"name": "de-fra-1"}]}))
    with pytest.raises(BackendOperationError, match="ch-gva-2"):
        _backend(config, session)


def test_create_spawns_and_attaches(config):
    session = _session()
    session.on("POST", "instance", FakeResponse(200, {"id": "op-1", "state": "pending"}))
    session.on(
        "GET",
        "operation/op-1",
        FakeResponse(200, {"id": "op-1", "state": "pending"}),
        FakeResponse(200, {"id": "op-1", "state": "success", "reference": {"id": "i-1"}}),
    )
    session.on("PUT", "private-network/pn-1:attach", FakeResponse(200, {"id": "op-2", "state": "pending"}))
    session.on("GET", "operation/op-2", FakeResponse(200, {"id": "op-2", "state": "success", "reference": {"id": "pn-1"}}))
    backend = _backend(config, session)
    host, cloud = InventoryResolver(config).resolve("gpu1.example.com")

    backend.create(RunContext.background(), host, cloud)

    body = session.called("POST", "instance")[0]["json"]
    assert body["name"] == "gpu1.example.com"
    assert body["template"] == {"id": "tpl-1"}
    assert body["instance-type"] == {"id": "it-1"}
    assert body["disk-size"] == 100
    user_data = base64.b64decode(body["user-data"]).decode()
    assert '"172.20.2.11/20"' in user_data
    assert '"172.20.0.1"' in user_data

    attach = session.called("PUT", "private-network/pn-1:attach")[0]
    assert attach["json"] == {"instance": {"id": "i-1"}}
    assert len(session.called("GET", "operation/op-1")) == 2


def test_create_failed_operation(config):
    session = _session()
    session.on("POST", "instance", FakeResponse(200, {"id": "op-1", "state": "pending"}))
    session.on("GET", "operation/op-1", FakeResponse(200, {"id": "op-1", "state": "failure", "reason": "quota"}))
    backend = _backend(config, session)
    host, cloud = InventoryResolver(config).resolve("gpu1.example.com")

    with pytest.raises(BackendOperationError, match="quota"):
        backend.create(RunContext.background(), host, cloud)
    assert not session.called("PUT", "private-network/pn-1:attach")


def test_create_unknown_instance_type(config_data):
    config_data["clouds"][1]["groupsHost"][0]["template"]["flavorName"] = "gpu9.huge"
    config = Config.model_validate(config_data)
    session = _session()
    backend = _backend(config, session)
    host, cloud = InventoryResolver(config).resolve("gpu1.example.com")

    with pytest.raises(BackendOperationError, match="gpu9.huge"):
        backend.create(RunContext.background(), host, cloud)
    assert not session.called("POST", "instance")


def test_delete_running_instance(config):
    session = _session()
    session.on("GET", "instance", FakeResponse(200, {"instances": [{"id": "i-1", "name": "gpu1.example.com"}]}))
    session.on("GET", "instance/i-1", FakeResponse(200, {"id": "i-1", "state": "starting"}), FakeResponse(200, {"id": "i-1", "state": "running"}))
    session.on("DELETE", "instance/i-1", FakeResponse(200, {"id": "op-3", "state": "pending"}))
    session.on("GET", "operation/op-3", FakeResponse(200, {"id": "op-3", "state": "success"}))
    backend = _backend(config, session)

    backend.delete(RunContext.background(), "gpu1.example.com")

    assert len(session.called("GET", "instance/i-1")) == 2
    assert len(session.called("DELETE", "instance/i-1")) == 1
    assert len(session.called("GET", "operation/op-3")) == 1


def test_delete_instance_already_destroying(config):
    session = _session()
    session.on("GET", "instance", FakeResponse(200, {"instances": [{"id": "i-1", "name": "gpu1.example.com"}]}))
    session.on("GET", "instance/i-1", FakeResponse(200, {"id": "i-1", "state": "destroying"}))
    backend = _backend(config, session)

    backend.delete(RunContext.background(), "gpu1.example.com")
    assert not session.called("DELETE", "instance/i-1")


def test_delete_absent_instance_succeeds(config):
    session = _session()
    session.on("GET", "instance", FakeResponse(200, {"instances": []}))
    backend = _backend(config, session)

    backend.delete(RunContext.background(), "gpu1.example.com")
    backend.delete(RunContext.background(), "gpu1.example.com")
    assert len(session.called("GET", "instance")) == 2 * FAST.tries
