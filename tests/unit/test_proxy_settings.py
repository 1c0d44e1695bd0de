import json

import pytest

from inbound_guard.exceptions import SettingsParseError
from inbound_guard.proxy.core_config import get_access_log_path, load_proxy_core_config
from inbound_guard.proxy.service import ProxyService
from inbound_guard.proxy.settings import parse_inbound_settings
from tests.utils.factories import client, clients_settings


def test_parse_settings_reads_clients_and_limits():
    raw = clients_settings(client("a@x", 2), client("b@x"), client("c@x", 0))
    settings = parse_inbound_settings(raw, inbound_id=1)

    assert settings.emails() == ["a@x", "b@x", "c@x"]
    assert [c.limit_ip for c in settings.clients] == [2, 0, 0]


def test_unmodeled_fields_are_kept_as_extras():
    raw = clients_settings(client("a@x", 1, totalGB=0, expiryTime=0))
    settings = parse_inbound_settings(raw)

    assert settings.clients[0].model_extra["totalGB"] == 0
    assert settings.model_extra["decryption"] == "none"


def test_malformed_client_is_dropped_others_survive():
    raw = json.dumps(
        {"clients": [{"email": "bad", "limitIp": "lots"}, {"email": "neg", "limitIp": -1}, {"email": "ok", "limitIp": 3}]}
    )
    settings = parse_inbound_settings(raw, inbound_id=7)
    assert settings.emails() == ["ok"]


@pytest.mark.parametrize(
    "raw",
    ["{not json", "[]", '"text"', json.dumps({"clients": {"email": "a"}})],
)
def test_unparseable_documents_raise(raw):
    with pytest.raises(SettingsParseError) as excinfo:
        parse_inbound_settings(raw, inbound_id=3)
    assert excinfo.value.inbound_id == 3


def test_missing_clients_means_no_identities():
    assert parse_inbound_settings('{"decryption": "none"}').emails() == []
    assert parse_inbound_settings(None).emails() == []


def test_access_log_path_from_core_config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"log": {"access": "/var/log/xray/access.log"}, "routing": {}}))
    assert get_access_log_path(path) == "/var/log/xray/access.log"
    assert load_proxy_core_config(path).model_extra["routing"] == {}


@pytest.mark.parametrize(
    "doc",
    [{}, {"log": None}, {"log": {"loglevel": "warning"}}, {"log": {"access": "none"}}, {"log": {"access": ""}}],
)
def test_access_log_disabled_or_absent(tmp_path, doc):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(doc))
    assert get_access_log_path(path) == ""


def test_access_log_path_unreadable_or_invalid(tmp_path):
    assert get_access_log_path(tmp_path / "absent.json") == ""
    broken = tmp_path / "broken.json"
    broken.write_text("{")
    assert get_access_log_path(broken) == ""


def test_proxy_service_restart_flag_is_consumed_once():
    service = ProxyService()
    assert service.is_need_restart() is False
    service.set_to_need_restart()
    service.set_to_need_restart()
    assert service.is_need_restart() is True
    assert service.restart_requests == 2
    assert service.consume_need_restart() is True
    assert service.consume_need_restart() is False
