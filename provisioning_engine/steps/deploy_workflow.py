# provisioning_engine/steps/deploy_workflow.py
"""Upsert this server into the repository's deploy.yml on a fresh branch and open a PR."""

import logging
import re
import time
from typing import Any, Dict, List, Optional

import yaml

from provisioning_engine.config import settings
from provisioning_engine.core.errors import ProvisioningValidationError
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import (
    application_slug,
    derive_secret_name,
    parse_repository,
    validate_branch,
    validate_remote_path,
)
from provisioning_engine.steps.base import ProvisioningStep
from provisioning_engine.steps.templates import render_deploy_workflow

logger = logging.getLogger(__name__)

CONFIG_CANDIDATES = (
    ".github/workflows/deploy.yml",
    "deploy.yml",
    ".github/workflows/deploy.yaml",
    "deploy.yaml",
)
DEFAULT_CONFIG_PATH = "deploy.yml"

COMPOSER_OPTIONS = "--no-dev --optimize-autoloader --prefer-dist --no-interaction --ignore-platform-reqs"


def feature_branch_name(application_name: str, now_ms: Optional[int] = None) -> str:
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    name = re.sub(r"\W+", "-", application_name).strip("-") or "app"
    return f"deploy-update-{name}-{stamp}"


def host_entry(
    *,
    application: str,
    remote_user: str,
    hostname: str,
    deploy_path: str,
    branch: str,
    repository: str,
    host_alias: str,
) -> Dict[str, Any]:
    return {
        "application": application,
        "remote_user": remote_user,
        "hostname": hostname,
        "deploy_path": deploy_path,
        "branch": branch,
        "composer_options": COMPOSER_OPTIONS,
        "npm_build": "build",
        "repository": f"git@{host_alias}:{repository}.git",
    }


def _entry_name(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    for key in ("application", "name", "app"):
        value = entry.get(key)
        if isinstance(value, str):
            return value.strip()
    return None


def upsert_host(document: Any, entry: Dict[str, Any]) -> Dict[str, Any]:
    """Merge `entry` into hosts[] by application name; repeated runs converge on one entry."""
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ProvisioningValidationError("deploy config must be a YAML mapping")

    hosts = document.get("hosts")
    if hosts is None:
        hosts = []
    elif not isinstance(hosts, list):
        hosts = [hosts]

    name = entry["application"].strip()
    merged: List[Any] = []
    replaced = False
    for existing in hosts:
        if not replaced and _entry_name(existing) == name:
            merged.append({**existing, **entry})
            replaced = True
        else:
            merged.append(existing)
    if not replaced:
        merged.append(entry)

    document["hosts"] = merged
    return document


class DeployWorkflowUpdateStep(ProvisioningStep):
    kind = StepKind.DEPLOY_WORKFLOW_UPDATE
    title = "Deploy workflow update"
    required_fields = ("selectedRepo", "baseBranch", "sshPath")
    requires_ssh = False
    requires_github = True

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        owner, repo = parse_repository(inputs["selectedRepo"])
        inputs["selectedRepo"] = f"{owner}/{repo}"
        inputs["baseBranch"] = validate_branch(inputs["baseBranch"])
        inputs["sshPath"] = validate_remote_path(inputs["sshPath"], "sshPath")
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        github = ctx.github
        repository = ctx.get("selectedRepo")
        owner, repo = repository.split("/")
        base_branch = ctx.get("baseBranch")
        deploy_path = ctx.get("sshPath")
        slug = application_slug(ctx.application_name)

        base_sha = github.get_branch_sha(owner, repo, base_branch)
        created_from = None
        if base_sha is None:
            fallback = settings.fallback_base_branch
            fallback_sha = github.get_branch_sha(owner, repo, fallback) if fallback else None
            if fallback_sha is None:
                return StepResult.failed(
                    f"Base branch not found: {base_branch}",
                    status_code=404,
                    log={"error": f"Base branch not found: {base_branch}", "repository": repository},
                )
            github.create_branch(owner, repo, base_branch, fallback_sha)
            base_sha, created_from = fallback_sha, fallback
            logger.info(f"[deploy-workflow] created {base_branch} from {fallback}")

        feature_branch = feature_branch_name(ctx.application_name)
        github.create_branch(owner, repo, feature_branch, base_sha)

        existing = None
        for candidate in CONFIG_CANDIDATES:
            existing = github.get_file(owner, repo, candidate, feature_branch)
            if existing:
                break
        config_path = existing.path if existing else DEFAULT_CONFIG_PATH

        try:
            document = yaml.safe_load(existing.content) if existing else None
        except yaml.YAMLError as e:
            raise ProvisioningValidationError(f"Invalid YAML in {config_path}: {e}")

        entry = host_entry(
            application=ctx.application_name,
            remote_user=ctx.username,
            hostname=ctx.host,
            deploy_path=deploy_path,
            branch=base_branch,
            repository=repository,
            host_alias=f"github.com-{slug}",
        )
        document = upsert_host(document, entry)
        commit = github.put_file(
            owner,
            repo,
            config_path,
            yaml.safe_dump(document, sort_keys=False, width=120, default_flow_style=False),
            f"chore: update deploy.yml for {ctx.application_name}",
            feature_branch,
            sha=existing.sha if existing else None,
        )

        workflow_path = f".github/workflows/deploy-{slug}.yml"
        secret_name = ctx.application.private_key_secret_name or derive_secret_name(ctx.application_name)
        current_workflow = github.get_file(owner, repo, workflow_path, feature_branch)
        github.put_file(
            owner,
            repo,
            workflow_path,
            render_deploy_workflow(
                application=ctx.application_name,
                branch=base_branch,
                hostname=ctx.host,
                secret_name=secret_name,
                config_path=config_path,
                php_version=ctx.application.php_version or settings.default_php_version,
            ),
            f"chore: add deploy workflow for {ctx.application_name}",
            feature_branch,
            sha=current_workflow.sha if current_workflow else None,
        )

        pr = github.create_pull_request(
            owner,
            repo,
            title=f"Update deploy.yml for {ctx.application_name}",
            head=feature_branch,
            base=base_branch,
            body=f"This PR updates {config_path} to configure deployment for {ctx.application_name}.",
        )

        data = {
            "repository": repository,
            "baseBranch": base_branch,
            "baseBranchCreatedFrom": created_from,
            "featureBranch": feature_branch,
            "deployPath": config_path,
            "workflowPath": workflow_path,
            "prNumber": pr.get("number"),
            "prUrl": pr.get("html_url"),
        }
        return StepResult.ok(
            f"Pull request #{pr.get('number')} opened against {base_branch}",
            data,
            log={**data, "commit": (commit.get("commit") or {}).get("sha")},
            record_updates={"selected_repo": repository},
        )
