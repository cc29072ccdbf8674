"""Destination folder and file name policy."""

import hashlib
import json
import logging
import random
import re
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from jxlbatch.config.models import DEFAULT_EXTENSION, normalize_extension

RANDOM_TOKEN_LENGTH = 8
MAX_RANDOM_ATTEMPTS = 10
HASH_LENGTH = 8
RANDOM_PLACEHOLDER = "%rnd%"
HASH_PLACEHOLDER = "%hash%"
HASHED_OPTION_KEYS = ("customFlags", "outFormat")

_TOKEN_ALPHABET = string.ascii_letters + string.digits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NamingResult:
    path: Path
    exists: bool
    attempts: int = 1


def destination_dir(input_path: Path, base_path: Path, output_root: Path, use_file_list: bool = False) -> Path:
    """Mirrors the input's folder below ``base_path`` into ``output_root``.

    Explicit file lists, and inputs outside ``base_path``, land flat in the
    output root.
    """
    if use_file_list:
        return output_root
    try:
        relative = input_path.parent.relative_to(base_path)
    except ValueError:
        return output_root
    return output_root / relative


def ensure_directory(path: Path) -> bool:
    if path.is_dir():
        return True
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Cannot create output folder {path}: {e}")
        return False
    return path.is_dir()


def options_hash(options: Dict[str, str]) -> str:
    """Short digest of the options that change the encoded bytes; key order does not matter."""
    relevant = {
        key: value for key, value in options.items()
        if key.startswith("-") or key in HASHED_OPTION_KEYS
    }
    payload = json.dumps(relevant, sort_keys=True, ensure_ascii=True)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def random_token(length: int = RANDOM_TOKEN_LENGTH, rng: Optional[random.Random] = None) -> str:
    chooser = rng or random
    return "".join(chooser.choice(_TOKEN_ALPHABET) for _ in range(length))


def render_suffix(template: str, options: Dict[str, str], rng: Optional[random.Random] = None) -> str:
    if not template:
        return ""
    suffix = template
    if HASH_PLACEHOLDER in suffix:
        suffix = suffix.replace(HASH_PLACEHOLDER, options_hash(options))
    if RANDOM_PLACEHOLDER in suffix:
        suffix = re.sub(re.escape(RANDOM_PLACEHOLDER), lambda _m: random_token(rng=rng), suffix)
    return suffix


def resolve_destination(
    input_path: Path,
    out_dir: Path,
    extension: str = DEFAULT_EXTENSION,
    suffix_template: str = "",
    options: Optional[Dict[str, str]] = None,
    rng: Optional[random.Random] = None,
) -> NamingResult:
    """Builds ``<stem><suffix><extension>`` inside ``out_dir``.

    A random suffix is re-rolled at most MAX_RANDOM_ATTEMPTS times while the
    candidate exists; the last candidate is returned with ``exists=True``
    when every roll collided.
    """
    extension = normalize_extension(extension)
    options = options or {}
    max_attempts = MAX_RANDOM_ATTEMPTS if RANDOM_PLACEHOLDER in suffix_template else 1

    candidate = out_dir / f"{input_path.stem}{extension}"
    for attempt in range(1, max_attempts + 1):
        suffix = render_suffix(suffix_template, options, rng)
        candidate = out_dir / f"{input_path.stem}{suffix}{extension}"
        if not candidate.exists():
            return NamingResult(path=candidate, exists=False, attempts=attempt)

    if max_attempts > 1:
        logger.warning(f"No free random name for {input_path.name} after {max_attempts} attempts")
    return NamingResult(path=candidate, exists=True, attempts=max_attempts)
