# provisioning_engine/steps/env_file.py
"""Line-level .env patching: comments, blank lines and unknown keys stay put."""

import re
from typing import Dict, List

from provisioning_engine.core.errors import ProvisioningValidationError

NEEDS_QUOTES = re.compile(r"[\s#\"'$`\\]")


def format_value(value: str) -> str:
    if "\n" in value or "\r" in value:
        raise ProvisioningValidationError("Environment values must be single-line")
    if not NEEDS_QUOTES.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$").replace("`", "\\`")
    return f'"{escaped}"'


def line_key(line: str) -> str:
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return ""
    key = stripped.split("=", 1)[0].strip()
    if key.startswith("export "):
        key = key[len("export "):].strip()
    return key


def patch_env(content: str, updates: Dict[str, str]) -> str:
    """
    Rewrite `KEY=...` lines whose key is in `updates`, append the rest.

    Matching is by key, never by position, so patching twice gives the
    same file as patching once.
    """
    lines: List[str] = content.rstrip("\n").split("\n") if content.strip() else []
    seen = set()
    patched: List[str] = []
    for line in lines:
        key = line_key(line)
        if key in updates:
            patched.append(f"{key}={format_value(updates[key])}")
            seen.add(key)
        else:
            patched.append(line)

    for key, value in updates.items():
        if key not in seen:
            patched.append(f"{key}={format_value(value)}")

    return "\n".join(patched) + "\n"
