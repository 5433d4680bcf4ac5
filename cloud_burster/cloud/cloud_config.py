"""
Bootstrap Templating

Renders the cloud-init user-data of the OpenStack and Exoscale machines and
the bash bootstrap script run on Shadow machines.
"""

import base64
from typing import Any, Dict, Optional

import yaml
from jinja2 import Environment, StrictUndefined
from loguru import logger

from ..configs import Cloud, Host
from ..errors import BackendOperationError

SHADOW_HOST_MARKER = "# cloud-burster-host:"


def b64dec(value: str) -> str:
    return base64.b64decode(value).decode()


_env = Environment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)
_env.filters["b64dec"] = b64dec


_COMMON_HEADER = """#cloud-config
disable_root: false

ssh_authorized_keys:
{%- for key in authorized_keys %}
  - {{ key }}
{%- endfor %}

write_files:
  - path: /etc/systemd/resolved.conf
    content: |
      [Resolve]
      DNS={{ dns }}
      DNSStubListener=no

  - path: /etc/NetworkManager/NetworkManager.conf
    content: |
      [main]
      plugins = ifcfg-rh
      dns = none

      [logging]

  - path: /etc/resolv.conf
    content: |
      nameserver {{ dns }}
{%- if search %}
      search {{ search }}
{%- endif %}
{%- if git.key %}

  - path: /key
    content: {{ git.key }}
    encoding: b64
    permissions: '0600'
{%- endif %}
"""

_POST_SCRIPT_AND_FOOTER = """
{%- if git.url and git.ref %}

  - mkdir -p /configs && GIT_SSH_COMMAND='ssh -i /key -o UserKnownHostsFile=/dev/null -o StrictHostKeyChecking=no -o IdentitiesOnly=yes' git clone -b {{ git.ref }} {{ git.url }} /configs
  - if [ -f /configs/post.sh ] && [ -x /configs/post.sh ]; then cd /configs && ./post.sh compute; fi
  - [ rm, -f, /key ]
  - [ chmod, -R, "g-rwx,o-rwx", /configs ]
{%- endif %}

  - [ touch, /etc/cloud/cloud-init.disabled ]

{{ custom_config }}"""

OPENSTACK_TEMPLATE = _COMMON_HEADER + """
runcmd:
  - [ systemctl, restart, NetworkManager ]
  - [ systemctl, stop, firewalld ]
  - [ systemctl, disable, firewalld ]
  - [ sed, "-i", "-e", 's/SELINUX=enforcing/SELINUX=disabled/g', /etc/selinux/config ]
  - [ setenforce, "0" ]

  - [ mkfs.xfs, "/dev/sdb" ]
  - [ mkdir, -p, "/mnt/storage" ]
  - [ mount, "/dev/sdb", "/mnt/storage" ]""" + _POST_SCRIPT_AND_FOOTER

EXOSCALE_TEMPLATE = _COMMON_HEADER + """
runcmd:
  - [ systemctl, restart, NetworkManager ]
  - [ systemctl, stop, firewalld ]
  - [ systemctl, disable, firewalld ]
  - [ growpart, "/dev/vda", "2" ]
  - [ xfs_growfs, "/" ]
  - [ resize2fs, "/dev/vda2" ]
  - [ nmcli, connection, modify, "Wired connection 1", connection.autoconnect, "yes" ]
  - [ nmcli, connection, modify, "Wired connection 1", ipv4.addresses, "{{ address_cidr }}" ]
  - [ nmcli, connection, modify, "Wired connection 1", ipv4.gateway, "{{ gateway }}" ]
  - [ nmcli, connection, modify, "Wired connection 1", ipv4.route-metric, "1" ]
  - [ nmcli, connection, modify, "Wired connection 1", ipv4.never-default, "no" ]
  - [ nmcli, connection, modify, "Wired connection 1", ipv4.method, manual ]
  - [ nmcli, connection, up, "Wired connection 1" ]
  - [ nmcli, connection, down, "System ens3" ]
  - [ nmcli, connection, modify, "System ens3", connection.autoconnect, "no" ]
  - [ sed, "-i", "-e", 's/SELINUX=enforcing/SELINUX=disabled/g', /etc/selinux/config ]
  - [ setenforce, "0" ]""" + _POST_SCRIPT_AND_FOOTER

SHADOW_BOOTSTRAP_TEMPLATE = """#!/bin/bash
set -ex
""" + SHADOW_HOST_MARKER + """ {{ hostname }}

# Inject hostname
hostnamectl set-hostname {{ hostname }}
{%- if git.key and git.url and git.ref %}

cat << 'EOF' > /key
{{ git.key | b64dec }}
EOF
chmod 600 /key

# Cloning git repo containing postscripts.
mkdir -p /configs
GIT_SSH_COMMAND='ssh -i /key -o IdentitiesOnly=yes -o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null' git clone -b {{ git.ref }} {{ git.url }} /configs
if [ -f /configs/post.sh ] && [ -x /configs/post.sh ]; then
	cd /configs || exit 1
	./post.sh "$1"
fi
rm -f /key

# Security
chmod -R g-rwx,o-rwx /configs
{%- endif %}
"""

SHADOW_LAUNCH_TEMPLATE = """#!/bin/bash
""" + SHADOW_HOST_MARKER + """ {{ hostname }}
hostnamectl set-hostname {{ hostname }}
"""


def dump_custom_config(custom_config: Dict[str, Any]) -> str:
    """customConfig as top-level YAML keys, empty string when there is none"""
    if not custom_config:
        return ""
    return yaml.safe_dump(custom_config, default_flow_style=False, sort_keys=False)


def validate_cloud_config(rendered: str) -> None:
    """
    Raises:
        BackendOperationError: the rendered document is not a YAML mapping
    """
    try:
        document = yaml.safe_load(rendered)
    except yaml.YAMLError as e:
        logger.error(f"cloud config validation failed: {e}\n{rendered}")
        raise BackendOperationError(f"cloud config validation failed: {e}") from e
    if not isinstance(document, dict):
        raise BackendOperationError("cloud config validation failed: not a mapping")


def _common_options(cloud: Cloud) -> Dict[str, Any]:
    return {
        "authorized_keys": cloud.authorized_keys,
        "dns": cloud.network.dns,
        "search": cloud.network.search,
        "git": cloud.post_scripts.git,
        "custom_config": dump_custom_config(cloud.custom_config),
    }


def render_openstack_cloud_config(cloud: Cloud) -> str:
    rendered = _env.from_string(OPENSTACK_TEMPLATE).render(**_common_options(cloud))
    validate_cloud_config(rendered)
    return rendered


def render_exoscale_cloud_config(host: Host, cloud: Cloud) -> str:
    """
    Cloud-config of an Exoscale machine, the static address is configured
    through NetworkManager as `<ip>/<prefix length>`.
    """
    if not host.ip:
        raise BackendOperationError(f"host {host.name} has no IP address", provider="exoscale")
    rendered = _env.from_string(EXOSCALE_TEMPLATE).render(
        address_cidr=f"{host.ip}/{cloud.network.prefix_length}",
        gateway=cloud.network.gateway,
        **_common_options(cloud),
    )
    validate_cloud_config(rendered)
    return rendered


def render_shadow_bootstrap(host: Host, cloud: Cloud) -> str:
    return _env.from_string(SHADOW_BOOTSTRAP_TEMPLATE).render(
        hostname=host.name,
        git=cloud.post_scripts.git,
    )


def render_shadow_launch_script(hostname: str) -> str:
    return _env.from_string(SHADOW_LAUNCH_TEMPLATE).render(hostname=hostname)


def hostname_from_script(script: Optional[str]) -> Optional[str]:
    """Hostname carried by a Shadow launch script, None when untagged"""
    for line in (script or "").splitlines():
        if line.startswith(SHADOW_HOST_MARKER):
            return line[len(SHADOW_HOST_MARKER):].strip() or None
    return None
