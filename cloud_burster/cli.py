"""
Command Line Interface for cloud-burster

Provides commands for:
- create: Create the machines of a hostname pattern
- delete: Delete the machines of a hostname pattern
- search: Resolve a hostname pattern against the configuration
- validate: Load and validate the configuration
- generate hosts: Print a hosts file for a DNS server
- generate hostnames: Print the expansion of a hostname pattern
"""

import argparse
import os
import sys
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, TypeVar

from dotenv import load_dotenv
from loguru import logger

from .configs import Config, ConfigLoader, DEFAULT_CONFIG_PATH
from .errors import CloudBursterError
from .inventory import expand_hostnames
from .inventory.resolver import InventoryResolver
from .orchestrator import OrchestrationResult, ProvisioningOrchestrator
from .utils.context import RunContext
from .utils.logger import configure_logger

T = TypeVar("T")


def load_config(args) -> Config:
    return ConfigLoader.load(args.config_path)


def hostnames_from_pattern(pattern: str) -> List[str]:
    """Expand a pattern, a malformed one only yields fewer (or no) hostnames"""
    hostnames = expand_hostnames(pattern)
    if not hostnames:
        logger.warning(f"hostname pattern {pattern!r} expands to no hostnames, nothing to do")
    return hostnames


def run_cancellable(fn: Callable[[], T], ctx: RunContext) -> T:
    """Run `fn` in a worker thread, Ctrl-C cancels the context instead of killing the process"""
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="command") as runner:
        future = runner.submit(fn)
        while not future.done():
            try:
                wait([future], timeout=0.5)
            except KeyboardInterrupt:
                logger.warning("interrupted, cancelling in-flight operations...")
                ctx.cancel()
        return future.result()


def _report(result: OrchestrationResult) -> int:
    for outcome in result.failures:
        logger.error(f"{outcome.hostname}: {outcome.error}")
    result.raise_for_failures()
    return 0


# === Provisioning Commands ===

def _provision_command(args, operation: str) -> int:
    hostnames = hostnames_from_pattern(args.hostnames)
    if not hostnames:
        return 0
    config = load_config(args)
    orchestrator = ProvisioningOrchestrator(config)
    ctx = RunContext.with_timeout(args.timeout)

    logger.info(f"{operation} {', '.join(hostnames)}")
    result = run_cancellable(lambda: getattr(orchestrator, operation)(hostnames, ctx), ctx)

    if operation == "search":
        for outcome in result.succeeded:
            print(f"{outcome.host.name} {outcome.host.ip or '-'} {outcome.cloud.type}")
    return _report(result)


def create_command(args) -> int:
    """Create command handler"""
    return _provision_command(args, "create")


def delete_command(args) -> int:
    """Delete command handler"""
    return _provision_command(args, "delete")


def search_command(args) -> int:
    """Search command handler"""
    return _provision_command(args, "search")


# === Config Commands ===

def validate_command(args) -> int:
    """Validate command handler"""
    config = load_config(args)
    hosts = sum(1 for _ in InventoryResolver(config).iter_hosts())
    logger.info(f"{args.config_path} is valid: {len(config.clouds)} clouds, {hosts} hosts")
    return 0


def generate_hosts_command(args) -> int:
    """Print a hosts file of every configured host"""
    config = load_config(args)
    sys.stdout.write(InventoryResolver(config).render_hosts_file())
    return 0


def generate_hostnames_command(args) -> int:
    """Print the expansion of a pattern, one hostname per line"""
    for hostname in expand_hostnames(args.pattern):
        print(hostname)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloud-burster",
        description="Burst into the cloud.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create cn1 to cn10 and cn20
  cloud-burster create "cn[1-10,20]"

  # Delete them again, giving up after ten minutes
  cloud-burster --timeout 600 delete "cn[1-10,20]"

  # Print the hosts file for the DNS server
  cloud-burster -c ./config.yaml generate hosts
        """,
    )

    # Global arguments
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument(
        "-c",
        "--config-path",
        default=os.environ.get("CONFIG_PATH", DEFAULT_CONFIG_PATH),
        help="Configuration file path (env: CONFIG_PATH)",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Deadline for the whole command (seconds)")

    # Subcommands
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Create machines")
    create_parser.add_argument("hostnames", help='Hostname pattern, e.g. "cn[1-5],login1"')
    create_parser.set_defaults(func=create_command)

    delete_parser = subparsers.add_parser("delete", help="Delete machines")
    delete_parser.add_argument("hostnames", help='Hostname pattern, e.g. "cn[1-5],login1"')
    delete_parser.set_defaults(func=delete_command)

    search_parser = subparsers.add_parser("search", help="Search machines in the configuration")
    search_parser.add_argument("hostnames", help='Hostname pattern, e.g. "cn[1-5],login1"')
    search_parser.set_defaults(func=search_command)

    validate_parser = subparsers.add_parser("validate", help="Validate the configuration")
    validate_parser.set_defaults(func=validate_command)

    generate_parser = subparsers.add_parser("generate", help="Generate files from the configuration")
    generate_subparsers = generate_parser.add_subparsers(dest="generate_command", required=True)

    hosts_parser = generate_subparsers.add_parser("hosts", help="Generate a hosts file for a DNS server")
    hosts_parser.set_defaults(func=generate_hosts_command)

    hostnames_parser = generate_subparsers.add_parser("hostnames", help="Generate hostnames from a pattern")
    hostnames_parser.add_argument("pattern", help='Hostname pattern, e.g. "cn[1-5],login1"')
    hostnames_parser.set_defaults(func=generate_hostnames_command)

    return parser


def run(argv: Optional[List[str]] = None) -> int:
    """Parse `argv` and run the selected command, returning the exit code"""
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logger(args.verbose)

    try:
        return args.func(args)
    except (CloudBursterError, FileNotFoundError, PermissionError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


def main():
    """Main CLI entry point"""
    sys.exit(run())


if __name__ == "__main__":
    main()
