# provisioning_engine/steps/https_nginx.py
"""Nginx site + Let's Encrypt certificate via the webroot challenge."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from provisioning_engine.config import settings
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import validate_domain, validate_email, validate_remote_path
from provisioning_engine.steps import packages
from provisioning_engine.steps.base import ProvisioningStep, require_sudo
from provisioning_engine.steps.templates import RENEWAL_HOOK, render_http_site, render_https_site
from provisioning_engine.steps.templates.nginx import ACME_ROOT, DHPARAM_PATH

logger = logging.getLogger(__name__)

RENEWAL_HOOK_PATH = "/etc/letsencrypt/renewal-hooks/post/nginx-reload.sh"
FPM_SOCKET_PROBE = "ls -1 /run/php/php*-fpm.sock /run/php-fpm/www.sock 2>/dev/null | head -n1"


class HttpsNginxSetupStep(ProvisioningStep):
    kind = StepKind.HTTPS_NGINX_SETUP
    title = "HTTPS setup"
    required_fields = ("domain", "email")

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        inputs["domain"] = validate_domain(inputs["domain"])
        inputs["email"] = validate_email(inputs["email"])
        if inputs.get("pathname"):
            inputs["pathname"] = validate_remote_path(inputs["pathname"])
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        remote = ctx.remote
        domain = ctx.get("domain")
        email = ctx.get("email")
        base_path = ctx.get("pathname") or ctx.application.pathname or f"/var/www/{domain}"
        web_root = f"{base_path}/current/public"

        require_sudo(remote)
        manager = packages.detect_package_manager(remote)
        packages.install(remote, manager, ["nginx", "certbot"], label="install nginx and certbot")

        backup = self._backup_config(remote)
        remote.run(
            f"sudo -n test -f {DHPARAM_PATH} || sudo -n openssl dhparam -out {DHPARAM_PATH} 2048",
            label="generate dhparam",
            timeout=600,
        )
        remote.run(["sudo", "-n", "mkdir", "-p", ACME_ROOT], label="mkdir acme root", timeout=10)
        remote.run(["sudo", "-n", "chmod", "755", ACME_ROOT], label="chmod acme root", timeout=10)

        php_socket = self._php_socket(remote, ctx.application.php_version)
        config_file = self._site_path(remote, domain)

        cert_path = f"/etc/letsencrypt/live/{domain}/fullchain.pem"
        has_cert = remote.run(
            ["sudo", "-n", "test", "-f", cert_path],
            label="check certificate",
            timeout=10,
            allow_non_zero=True,
        ).ok

        issued = False
        if not has_cert:
            self._write_site(remote, config_file, render_http_site(domain, web_root, php_socket))
            remote.run(
                [
                    "sudo", "-n", "certbot", "certonly", "--webroot",
                    "-d", domain, "--email", email, "-w", ACME_ROOT,
                    "-n", "--agree-tos", "--keep-until-expiring",
                ],
                label="certbot",
                timeout=180,
            )
            issued = True

        self._write_site(remote, config_file, render_https_site(domain, web_root, php_socket))

        remote.run(["sudo", "-n", "mkdir", "-p", RENEWAL_HOOK_PATH.rsplit("/", 1)[0]], label="mkdir renewal hooks", timeout=10)
        remote.write_file(RENEWAL_HOOK_PATH, RENEWAL_HOOK, label="write renewal hook", sudo=True, mode="755")

        return StepResult.ok(
            f"HTTPS enabled for {domain}",
            {
                "domain": domain,
                "configFile": config_file,
                "certificate": cert_path,
                "certificateIssued": issued,
                "autoRenewalEnabled": True,
                "backup": backup,
            },
            log={"domain": domain, "configFile": config_file, "certificateIssued": issued, "backup": backup},
            record_updates={"domain": domain},
        )

    # -------------------------
    # HELPERS
    # -------------------------

    def _backup_config(self, remote) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H-%M-%S")
        archive = f"/etc/nginx/nginx_{stamp}.tar.gz"
        result = remote.run(
            [
                "sudo", "-n", "tar", "-czf", archive, "-C", "/etc/nginx", "--ignore-failed-read",
                "nginx.conf", "sites-available", "sites-enabled", "conf.d",
            ],
            label="backup nginx config",
            timeout=30,
            allow_non_zero=True,
        )
        if not result.ok:
            logger.warning(f"[https] nginx backup incomplete: {result.stderr.strip()}")
        return archive

    def _php_socket(self, remote, php_version) -> str:
        if php_version:
            preferred = f"/run/php/php{php_version}-fpm.sock"
            if remote.run(["test", "-S", preferred], label="check fpm socket", timeout=10, allow_non_zero=True).ok:
                return preferred
        found = remote.run(FPM_SOCKET_PROBE, label="find fpm socket", timeout=10, allow_non_zero=True).stdout.strip()
        return found or f"/run/php/php{php_version or settings.default_php_version}-fpm.sock"

    def _site_path(self, remote, domain: str) -> str:
        debian_layout = remote.run(
            ["test", "-d", "/etc/nginx/sites-available"],
            label="check nginx layout",
            timeout=10,
            allow_non_zero=True,
        ).ok
        if debian_layout:
            return f"/etc/nginx/sites-available/{domain}.conf"
        return f"/etc/nginx/conf.d/{domain}.conf"

    def _write_site(self, remote, config_file: str, content: str) -> None:
        remote.write_file(config_file, content, label="write nginx site", sudo=True, mode="644")
        if config_file.startswith("/etc/nginx/sites-available/"):
            enabled = config_file.replace("sites-available", "sites-enabled")
            remote.run(["sudo", "-n", "ln", "-sfn", config_file, enabled], label="enable site", timeout=10)
        remote.run(["sudo", "-n", "nginx", "-t"], label="nginx -t", timeout=30)
        remote.run(["sudo", "-n", "systemctl", "reload-or-restart", "nginx"], label="reload nginx", timeout=30)
