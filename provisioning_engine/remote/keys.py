"""Key-pair helpers run over an open RemoteSession. Paths are relative to the login home."""

import logging

logger = logging.getLogger(__name__)

SSH_DIR = ".ssh"


def key_material(line: str) -> str:
    """`ssh-ed25519 AAAA... comment` -> `ssh-ed25519 AAAA...`"""
    return " ".join(line.strip().split()[:2])


def ensure_ssh_dir(remote) -> None:
    remote.run(["mkdir", "-p", SSH_DIR], label="mkdir ~/.ssh", timeout=10)
    remote.run(["chmod", "700", SSH_DIR], label="chmod ~/.ssh", timeout=10)


def ensure_keypair(remote, key_name: str, comment: str) -> bool:
    """
    Generate an ED25519 key pair under ~/.ssh unless it already exists.

    Returns True when a new key was generated.
    """
    key_path = f"{SSH_DIR}/{key_name}"
    if remote.file_exists(key_path):
        logger.info(f"[keys] {key_name} already exists, reusing")
        return False
    remote.run(
        ["ssh-keygen", "-t", "ed25519", "-f", key_path, "-N", "", "-C", comment],
        label=f"ssh-keygen {key_name}",
        timeout=30,
    )
    logger.info(f"[keys] generated {key_name}")
    return True


def read_public_key(remote, key_name: str) -> str:
    return remote.read_file(f"{SSH_DIR}/{key_name}.pub", label=f"read {key_name}.pub").strip()


def authorize_key(remote, public_key: str) -> bool:
    """Append a public key to ~/.ssh/authorized_keys if it is not there yet."""
    path = f"{SSH_DIR}/authorized_keys"
    remote.run(["touch", path], label="touch authorized_keys", timeout=10)
    remote.run(["chmod", "600", path], label="chmod authorized_keys", timeout=10)
    current = remote.read_file(path, label="read authorized_keys")

    wanted = key_material(public_key)
    if any(key_material(line) == wanted for line in current.splitlines() if line.strip()):
        return False

    prefix = "\n" if current and not current.endswith("\n") else ""
    remote.run(
        f"cat >> {path}",
        label="append authorized_keys",
        timeout=10,
        stdin=prefix + public_key.strip() + "\n",
    )
    return True
