# provisioning_engine/integrations/github.py
"""GitHub REST client used by the provisioning steps."""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import requests
from nacl import encoding, public

from provisioning_engine.core.errors import ExternalAPIError
from provisioning_engine.remote.keys import key_material

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"

ENV_EXAMPLE_BRANCHES = ("main", "master")
ENV_EXAMPLE_PATHS = (".env.example", "env.example", "example.env", "config/.env.example")


def seal_secret(public_key_b64: str, value: str) -> str:
    """Encrypt a value for the GitHub Actions secrets API (libsodium sealed box)."""
    key = public.PublicKey(public_key_b64.encode("utf-8"), encoding.Base64Encoder())
    sealed = public.SealedBox(key).encrypt(value.encode("utf-8"))
    return base64.b64encode(sealed).decode("utf-8")


@dataclass
class RepoFile:
    path: str
    content: str
    sha: str


class GitHubClient:
    """Thin wrapper around the endpoints the steps need."""

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        api_url: str = "https://api.github.com",
        raw_url: str = "https://raw.githubusercontent.com",
        timeout: float = 15.0,
        raw_timeout: float = 12.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize client.

        Args:
            token: personal access token (sent as a Bearer token); None for
                anonymous access to public repositories
            api_url: REST API base URL
            raw_url: raw content host, used as fallback for file fetches
            timeout: request timeout in seconds
        """
        self.api_url = api_url.rstrip("/")
        self.raw_url = raw_url.rstrip("/")
        self.timeout = timeout
        self.raw_timeout = raw_timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "provisioning-engine",
        })
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    # -------------------------
    # TRANSPORT
    # -------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        allow_404: bool = False,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Optional[requests.Response]:
        url = path if path.startswith("http") else f"{self.api_url}{path}"
        try:
            response = self._session.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"[github] {method} {path} failed: {e}")
            raise ExternalAPIError(f"GitHub request failed: {e}") from e

        if allow_404 and response.status_code == 404:
            return None

        if response.status_code >= 400:
            body = _response_body(response)
            detail = body.get("message") if isinstance(body, dict) else body
            if response.status_code == 401:
                message = "Invalid GitHub token"
            else:
                message = f"GitHub API {method} {path} returned {response.status_code}"
                if detail:
                    message = f"{message}: {detail}"
            logger.error(f"[github] {message}")
            raise ExternalAPIError(message, status=response.status_code, body=body)

        return response

    # -------------------------
    # USER
    # -------------------------

    def get_user(self) -> Dict[str, Any]:
        return self._request("GET", "/user", timeout=10).json()

    # -------------------------
    # DEPLOY KEYS
    # -------------------------

    def list_deploy_keys(self, owner: str, repo: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/repos/{owner}/{repo}/keys").json()

    def add_deploy_key(
        self,
        owner: str,
        repo: str,
        title: str,
        key: str,
        read_only: bool = False,
    ) -> Dict[str, Any]:
        """Register a deploy key; an identical key already on the repo is returned as-is."""
        fingerprint = key_material(key)
        for existing in self.list_deploy_keys(owner, repo):
            if key_material(existing.get("key", "")) == fingerprint:
                logger.info(f"[github] deploy key already registered on {owner}/{repo} (id={existing.get('id')})")
                return existing

        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/keys",
            json={"title": title, "key": key.strip(), "read_only": read_only},
        )
        logger.info(f"[github] deploy key '{title}' added to {owner}/{repo}")
        return response.json()

    # -------------------------
    # ACTIONS SECRETS
    # -------------------------

    def get_actions_public_key(self, owner: str, repo: str) -> Dict[str, Any]:
        return self._request("GET", f"/repos/{owner}/{repo}/actions/secrets/public-key").json()

    def put_actions_secret(self, owner: str, repo: str, name: str, value: str) -> None:
        public_key = self.get_actions_public_key(owner, repo)
        self._request(
            "PUT",
            f"/repos/{owner}/{repo}/actions/secrets/{name}",
            json={
                "encrypted_value": seal_secret(public_key["key"], value),
                "key_id": public_key["key_id"],
            },
        )
        logger.info(f"[github] secret {name} stored on {owner}/{repo}")

    # -------------------------
    # CONTENTS
    # -------------------------

    def fetch_env_example(
        self,
        owner: str,
        repo: str,
        branches: Iterable[str] = ENV_EXAMPLE_BRANCHES,
        paths: Iterable[str] = ENV_EXAMPLE_PATHS,
    ) -> Optional[Tuple[str, str, str]]:
        """
        Look for an env template across branches and candidate paths.

        Tries the Contents API first, then raw.githubusercontent.com.

        Returns:
            (branch, path, content) or None if nothing matched
        """
        paths = list(paths)
        for branch in branches:
            for path in paths:
                content = self._fetch_raw_contents(owner, repo, path, branch)
                if content is None:
                    content = self._fetch_raw_host(owner, repo, path, branch)
                if content is not None:
                    logger.info(f"[github] found {path} on {owner}/{repo}@{branch}")
                    return branch, path, content
        return None

    def _fetch_raw_contents(self, owner: str, repo: str, path: str, ref: str) -> Optional[str]:
        try:
            response = self._request(
                "GET",
                f"/repos/{owner}/{repo}/contents/{quote(path)}",
                params={"ref": ref},
                headers={"Accept": "application/vnd.github.raw+json"},
                allow_404=True,
            )
        except ExternalAPIError as e:
            if e.status == 401:
                raise
            logger.debug(f"[github] contents API miss for {path}@{ref}: {e}")
            return None
        return response.text if response is not None else None

    def _fetch_raw_host(self, owner: str, repo: str, path: str, ref: str) -> Optional[str]:
        url = f"{self.raw_url}/{owner}/{repo}/{quote(ref)}/{quote(path)}"
        try:
            response = self._session.get(url, timeout=self.raw_timeout)
        except requests.RequestException as e:
            logger.debug(f"[github] raw fetch failed for {url}: {e}")
            return None
        if response.status_code == 200:
            return response.text
        return None

    def get_file(self, owner: str, repo: str, path: str, ref: str) -> Optional[RepoFile]:
        response = self._request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{quote(path)}",
            params={"ref": ref},
            allow_404=True,
        )
        if response is None:
            return None
        payload = response.json()
        if isinstance(payload, list) or payload.get("type") != "file":
            return None
        content = base64.b64decode(payload.get("content", "")).decode("utf-8")
        return RepoFile(path=path, content=content, sha=payload["sha"])

    def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        branch: str,
        sha: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("utf-8"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha
        response = self._request("PUT", f"/repos/{owner}/{repo}/contents/{quote(path)}", json=body)
        logger.info(f"[github] committed {path} to {owner}/{repo}@{branch}")
        return response.json()

    # -------------------------
    # BRANCHES / PULL REQUESTS
    # -------------------------

    def get_branch_sha(self, owner: str, repo: str, branch: str) -> Optional[str]:
        response = self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/ref/heads/{quote(branch)}",
            allow_404=True,
        )
        if response is None:
            return None
        return response.json()["object"]["sha"]

    def create_branch(self, owner: str, repo: str, branch: str, sha: str) -> None:
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        logger.info(f"[github] created branch {branch} on {owner}/{repo}")

    def create_pull_request(
        self,
        owner: str,
        repo: str,
        *,
        title: str,
        head: str,
        base: str,
        body: str = "",
    ) -> Dict[str, Any]:
        response = self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "head": head, "base": base, "body": body},
        )
        pr = response.json()
        logger.info(f"[github] opened PR #{pr.get('number')} on {owner}/{repo}")
        return pr


def _response_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]
