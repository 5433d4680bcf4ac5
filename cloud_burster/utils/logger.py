from loguru import logger
import sys
from pathlib import Path

INTERNAL_KEYS = {"rel_path", "formatted_prefix"}


def enrich_record(record):
    # Source file path relative to the working directory
    file_path = Path(record["file"].path)
    try:
        relative_path = file_path.relative_to(Path.cwd())
    except ValueError:
        relative_path = file_path
    record["extra"]["rel_path"] = str(relative_path)

    # Every other extra field (hostname, cloud...) becomes a prefix
    prefix_keys = [k for k in record["extra"].keys() if k not in INTERNAL_KEYS]
    if prefix_keys:
        prefix_parts = [f"[{record['extra'][k]}]" for k in prefix_keys]
        record["extra"]["formatted_prefix"] = " ".join(prefix_parts) + " "
    else:
        record["extra"]["formatted_prefix"] = ""

    return True


def configure_logger(verbose: bool = False):
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSSSSS}</green> | <level>{level: <8}</level> | <cyan>{extra[rel_path]}</cyan>:<cyan>{line}</cyan> - <level>{extra[formatted_prefix]}{message}</level>",
        level="DEBUG" if verbose else "INFO",
        colorize=True,
        filter=enrich_record
    )
