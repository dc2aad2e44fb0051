# provisioning_engine/steps/server_stack.py
"""PHP + Nginx + database server + Composer on apt, dnf or yum hosts."""

import logging
from typing import Any, Dict, List

from provisioning_engine.config import settings
from provisioning_engine.core.errors import ProvisioningValidationError
from provisioning_engine.core.models import StepContext, StepKind, StepResult
from provisioning_engine.core.validation import normalize_db_type, validate_php_version
from provisioning_engine.steps.base import ProvisioningStep, require_sudo
from provisioning_engine.steps import packages

logger = logging.getLogger(__name__)

PHP_EXTENSIONS = ["cli", "fpm", "common", "mbstring", "xml", "curl", "zip", "bcmath", "intl", "gd", "readline"]
PHP_DB_EXTENSIONS = {"MySQL": "mysql", "PostgreSQL": "pgsql"}

RPM_PHP_PACKAGES = ["php-cli", "php-fpm", "php-common", "php-mbstring", "php-xml", "php-pdo", "php-bcmath", "php-intl", "php-gd"]
RPM_PHP_DB_PACKAGES = {"MySQL": "php-mysqlnd", "PostgreSQL": "php-pgsql"}

DATABASE_PACKAGES = {
    "apt": {"MySQL": ["mariadb-server"], "PostgreSQL": ["postgresql", "postgresql-contrib"]},
    "rpm": {"MySQL": ["mariadb-server"], "PostgreSQL": ["postgresql-server", "postgresql-contrib"]},
}
DATABASE_SERVICES = {"MySQL": "mariadb", "PostgreSQL": "postgresql"}
DATABASE_VERSION_PROBES = {"MySQL": "mysql --version", "PostgreSQL": "psql --version"}

COMPOSER_INSTALL = (
    "command -v composer >/dev/null 2>&1 && exit 0; "
    "curl -sS https://getcomposer.org/installer -o /tmp/composer-setup.php "
    "&& sudo -n php /tmp/composer-setup.php --quiet --install-dir=/usr/local/bin --filename=composer; "
    "status=$?; rm -f /tmp/composer-setup.php; exit $status"
)


class ServerStackSetupStep(ProvisioningStep):
    kind = StepKind.SERVER_STACK_SETUP
    title = "Server stack setup"

    def normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        inputs["phpVersion"] = validate_php_version(inputs.get("phpVersion") or settings.default_php_version)
        database = inputs.get("database") or "MySQL"
        if str(database).lower() == "none":
            inputs["database"] = None
        else:
            try:
                inputs["database"] = normalize_db_type(database)
            except ProvisioningValidationError:
                raise ProvisioningValidationError(f"Unsupported database: {database} (use MySQL, PostgreSQL or none)")
        return inputs

    def perform(self, ctx: StepContext) -> StepResult:
        remote = ctx.remote
        php_version = ctx.get("phpVersion")
        database = ctx.get("database")

        require_sudo(remote)
        manager = packages.detect_package_manager(remote)
        packages.refresh_index(remote, manager)

        if manager == "apt":
            php_packages, services = self._install_apt(remote, php_version, database)
        else:
            php_packages, services = self._install_rpm(remote, manager, php_version, database)

        remote.run(COMPOSER_INSTALL, label="install composer", timeout=180)
        remote.run(
            ["sudo", "-n", "systemctl", "enable", "--now", *services],
            label="enable services",
            timeout=60,
        )

        versions = {
            "php": packages.command_output(remote, "php -v", "php version"),
            "nginx": packages.command_output(remote, "nginx -v 2>&1", "nginx version"),
            "composer": packages.command_output(remote, "composer --version --no-interaction 2>/dev/null", "composer version"),
        }
        if database:
            versions["database"] = packages.command_output(remote, DATABASE_VERSION_PROBES[database], "database version")

        updates: Dict[str, Any] = {"php_version": php_version}
        if database:
            updates["db_type"] = database

        return StepResult.ok(
            f"PHP {php_version}, Nginx{' and ' + database if database else ''} installed",
            {
                "packageManager": manager,
                "phpVersion": php_version,
                "database": database,
                "extensionsInstalled": php_packages,
                "versions": versions,
            },
            log={"packageManager": manager, "phpVersion": php_version, "database": database, "versions": versions},
            record_updates=updates,
        )

    # -------------------------
    # DEBIAN / UBUNTU
    # -------------------------

    def _install_apt(self, remote, php_version: str, database):
        packages.install(remote, "apt", ["ca-certificates", "curl", "unzip", "git", "acl", "software-properties-common"])

        available = remote.run(
            ["apt-cache", "show", f"php{php_version}-fpm"],
            label="check php packages",
            timeout=30,
            allow_non_zero=True,
        )
        if not available.ok:
            ppa = remote.run(
                ["sudo", "-n", "add-apt-repository", "-y", "ppa:ondrej/php"],
                label="add php repository",
                timeout=180,
                allow_non_zero=True,
            )
            if not ppa.ok:
                logger.warning(f"[server-stack] could not add ppa:ondrej/php: {ppa.stderr.strip()}")
            packages.refresh_index(remote, "apt")

        extensions = list(PHP_EXTENSIONS)
        if database:
            extensions.append(PHP_DB_EXTENSIONS[database])
        php_packages = [f"php{php_version}-{ext}" for ext in extensions]
        packages.install(remote, "apt", php_packages, label=f"install php{php_version}")
        packages.install(remote, "apt", ["nginx"])

        services: List[str] = ["nginx", f"php{php_version}-fpm"]
        if database:
            packages.install(remote, "apt", DATABASE_PACKAGES["apt"][database], label=f"install {database}")
            services.append(DATABASE_SERVICES[database])
        return php_packages, services

    # -------------------------
    # RHEL / FEDORA
    # -------------------------

    def _install_rpm(self, remote, manager: str, php_version: str, database):
        packages.install(remote, manager, ["curl", "unzip", "git", "acl"])

        if manager == "dnf":
            remote.run(["sudo", "-n", "dnf", "module", "reset", "-y", "php"], label="reset php module", timeout=60, allow_non_zero=True)
            stream = remote.run(
                ["sudo", "-n", "dnf", "module", "enable", "-y", f"php:{php_version}"],
                label="enable php module",
                timeout=60,
                allow_non_zero=True,
            )
            if not stream.ok:
                logger.warning(f"[server-stack] php:{php_version} stream unavailable, using distro default")

        php_packages = list(RPM_PHP_PACKAGES)
        if database:
            php_packages.append(RPM_PHP_DB_PACKAGES[database])
        packages.install(remote, manager, php_packages, label="install php")
        packages.install(remote, manager, ["nginx"])

        services: List[str] = ["nginx", "php-fpm"]
        if database:
            packages.install(remote, manager, DATABASE_PACKAGES["rpm"][database], label=f"install {database}")
            if database == "PostgreSQL":
                remote.run(
                    ["sudo", "-n", "postgresql-setup", "--initdb"],
                    label="initialize postgresql",
                    timeout=120,
                    allow_non_zero=True,
                )
            services.append(DATABASE_SERVICES[database])
        return php_packages, services
