import copy

import pytest

from cloud_burster.configs import API_VERSION, Config


def _network():
    return {
        "name": "burst-net",
        "subnetCIDR": "172.20.0.0/20",
        "dns": "172.20.0.254",
        "gateway": "172.20.0.1",
        "search": "example.com",
    }


def _template():
    return {"diskSize": 50, "flavorName": "d2-2", "imageName": "Rocky Linux 9"}


BASE_CONFIG = {
    "apiVersion": API_VERSION,
    "suffixSearch": [".example.com"],
    "clouds": [
        {
            "type": "openstack",
            "network": _network(),
            "authorizedKeys": ["ssh-ed25519 AAAA user@example.com"],
            "postScripts": {"git": {"key": "a2V5", "url": "git@example.com:org/post.git", "ref": "main"}},
            "customConfig": {"bootcmd": ["echo hello"]},
            "openstack": {
                "identityEndpoint": "https://keystone.example.com:5000",
                "user": "burst",
                "password": "secret",
                "tenantID": "tenant-1",
                "region": "GRA",
            },
            "hosts": [
                {
                    "name": "login1.example.com",
                    "ip": "172.20.0.10",
                    "diskSize": 20,
                    "flavorName": "d2-4",
                    "imageName": "Rocky Linux 9",
                }
            ],
            "groupsHost": [
                {
                    "namePattern": "cn[1-5].example.com",
                    "ipCIDR": "172.20.1.0/24",
                    "template": _template(),
                }
            ],
        },
        {
            "type": "exoscale",
            "network": _network(),
            "exoscale": {"apiKey": "EXOkey", "apiSecret": "exosecret", "zone": "ch-gva-2"},
            "groupsHost": [
                {
                    "namePattern": "gpu[1-3].example.com",
                    "ipCIDR": "172.20.2.0/24",
                    "ipOffset": 10,
                    "template": {"diskSize": 100, "flavorName": "gpu2.small", "imageName": "Rocky Linux 9"},
                }
            ],
        },
    ],
}


@pytest.fixture
def config_data():
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def config(config_data):
    return Config.model_validate(config_data)
