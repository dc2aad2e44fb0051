"""Test step implementations against the fake host and fake GitHub."""

import json

import pytest
import yaml

from provisioning_engine.config import settings
from provisioning_engine.core.errors import ProvisioningValidationError
from provisioning_engine.core.models import StepContext
from provisioning_engine.domain.models import ApplicationRecord
from provisioning_engine.integrations.github import RepoFile
from provisioning_engine.steps.database_create import DatabaseCreateStep
from provisioning_engine.steps.deploy_key import DeployKeyStep, remove_host_block, upsert_host_block
from provisioning_engine.steps.deploy_workflow import DeployWorkflowUpdateStep, feature_branch_name, upsert_host
from provisioning_engine.steps.env_setup import EnvSetupStep
from provisioning_engine.steps.env_update import EnvUpdateStep
from provisioning_engine.steps.folder_setup import FolderSetupStep
from provisioning_engine.steps.https_nginx import RENEWAL_HOOK_PATH, HttpsNginxSetupStep
from provisioning_engine.steps.node_nvm import NodeNvmSetupStep
from provisioning_engine.steps.server_stack import ServerStackSetupStep
from provisioning_engine.steps.ssh_key_setup import SSHKeySetupStep


@pytest.fixture
def app_record():
    return ApplicationRecord(
        id=1,
        host="203.0.113.10",
        username="deploy",
        application_name="shop",
        ssh_private_key="KEY",
        github_token="ghp_test",
    )


def execute(step, application, remote=None, github=None, **fields):
    payload = {
        "host": application.host,
        "username": application.username,
        "applicationName": application.application_name,
        **fields,
    }
    inputs = step.validate(payload)
    return step.execute(StepContext(application, inputs, remote=remote, github=github))


class TestFolderSetup:

    def test_rerun_gives_same_commands(self, remote, app_record):
        """Test that folder setup twice runs the same repeatable commands and succeeds both times."""
        first = execute(FolderSetupStep(), app_record, remote, pathname="/var/www/shop")
        commands_once = list(remote.commands)
        second = execute(FolderSetupStep(), app_record, remote, pathname="/var/www/shop")

        assert first.success and second.success
        assert remote.commands == commands_once * 2
        assert "sudo -n mkdir -p /var/www/shop" in commands_once
        assert "sudo -n chown -R deploy:deploy /var/www/shop" in commands_once
        assert "sudo -n chmod -R 755 /var/www/shop" in commands_once
        assert first.data == {"pathname": "/var/www/shop", "owner": "deploy:deploy"}
        assert first.record_updates == {"pathname": "/var/www/shop"}

    def test_without_sudo_fails_fast(self, remote, app_record):
        remote.sudo = False

        result = execute(FolderSetupStep(), app_record, remote, pathname="/var/www/shop")

        assert not result.success
        assert result.status_code == 400
        assert "NOPASSWD" in result.message
        assert remote.ran("mkdir") == []

    def test_timeout_fails_with_label(self, remote, app_record):
        """Test that a hanging command surfaces as a failed result naming the command."""
        remote.hang("chown")

        result = execute(FolderSetupStep(), app_record, remote, pathname="/var/www/shop")

        assert not result.success
        assert result.status_code == 500
        assert "chown" in result.message
        assert result.error["type"] == "CommandTimeoutError"

    def test_rejects_path_traversal(self, app_record):
        with pytest.raises(ProvisioningValidationError):
            FolderSetupStep().validate({**_target(app_record), "pathname": "/var/www/../../etc"})


class TestDatabaseCreate:

    def test_mysql_sql_goes_over_stdin(self, remote, app_record):
        result = execute(
            DatabaseCreateStep(), app_record, remote,
            dbType="mysql", dbName="shop", dbUsername="shop_user", dbPassword="p'w; DROP",
        )

        assert result.success
        command = remote.ran("mysql")[0]
        assert command == "sudo -n mysql --batch"
        script = remote.stdin[command]
        assert "CREATE DATABASE IF NOT EXISTS `shop`" in script
        assert "CREATE USER IF NOT EXISTS 'shop_user'@'localhost' IDENTIFIED BY 'p''w; DROP'" in script
        assert result.data == {"dbType": "MySQL", "dbName": "shop", "dbUsername": "shop_user", "dbPort": 3306}
        assert result.database_config["db_password"] == "p'w; DROP"
        assert "p'w" not in json.dumps(result.log)

    def test_rerun_does_not_fail(self, remote, app_record):
        fields = dict(dbType="PostgreSQL", dbName="shop", dbUsername="shop", dbPassword="pw")

        first = execute(DatabaseCreateStep(), app_record, remote, **fields)
        second = execute(DatabaseCreateStep(), app_record, remote, **fields)

        assert first.success and second.success
        script = remote.stdin[remote.ran("psql")[0]]
        assert "IF NOT EXISTS (SELECT FROM pg_roles" in script
        assert "\\gexec" in script
        assert first.data["dbPort"] == 5432

    def test_identifier_injection_rejected(self, app_record):
        with pytest.raises(ProvisioningValidationError):
            DatabaseCreateStep().validate(
                {**_target(app_record), "dbType": "MySQL", "dbName": "shop`; DROP", "dbUsername": "u", "dbPassword": "p"}
            )

    def test_engine_error_fails_step(self, remote, app_record):
        remote.respond("mysql", stderr="ERROR 1045 (28000): Access denied", exit_code=1)

        result = execute(
            DatabaseCreateStep(), app_record, remote,
            dbType="MySQL", dbName="shop", dbUsername="shop", dbPassword="pw",
        )

        assert not result.success
        assert "Access denied" in result.message
        assert result.error["exitCode"] == 1


class TestEnvSetup:

    def test_writes_template_to_shared(self, remote, github, app_record):
        result = execute(EnvSetupStep(), app_record, remote, github, pathname="/var/www/shop", selectedRepo="acme/shop")

        assert result.success
        assert remote.files["/var/www/shop/shared/.env"] == github.env_example
        assert result.data["filePath"] == "/var/www/shop/shared/.env"
        assert result.data["verification"] == "exists"
        assert "/var/www/shop/shared" in remote.directories
        assert result.record_updates == {"pathname": "/var/www/shop", "selected_repo": "acme/shop"}

    def test_falls_back_to_stored_repository(self, remote, github, app_record):
        app_record.selected_repo = "acme/shop"

        result = execute(EnvSetupStep(), app_record, remote, github, pathname="/var/www/shop")

        assert result.success
        assert result.data["source"]["repository"] == "acme/shop"

    def test_missing_template(self, remote, github, app_record):
        github.env_example = None

        result = execute(EnvSetupStep(), app_record, remote, github, pathname="/var/www/shop", selectedRepo="acme/shop")

        assert not result.success
        assert result.status_code == 400
        assert ".env.example not found" in result.message
        assert remote.files == {}

    def test_acl_failure_tolerated(self, remote, github, app_record):
        remote.respond("setfacl", stderr="setfacl: command not found", exit_code=127)

        result = execute(EnvSetupStep(), app_record, remote, github, pathname="/var/www/shop", selectedRepo="acme/shop")

        assert result.success


class TestEnvUpdate:

    def test_patches_db_keys(self, remote, app_record):
        """Test A=1 is preserved and all DB_* keys are written."""
        remote.files["/var/www/shop/shared/.env"] = "A=1\n"

        result = execute(
            EnvUpdateStep(), app_record, remote,
            pathname="/var/www/shop", dbType="PostgreSQL", dbPort=5432, dbName="foo", dbUsername="bar", dbPassword="baz",
        )

        content = remote.files["/var/www/shop/shared/.env"]
        assert result.success
        assert content.splitlines()[0] == "A=1"
        for line in ("DB_CONNECTION=pgsql", "DB_HOST=localhost", "DB_PORT=5432", "DB_DATABASE=foo", "DB_USERNAME=bar", "DB_PASSWORD=baz"):
            assert line in content.splitlines()
        assert "DB_PASSWORD" not in result.data["updates"]
        assert "baz" not in result.data["verification"]
        assert "DB_DATABASE=foo" in result.data["verification"]

    def test_missing_env_file(self, remote, app_record):
        result = execute(
            EnvUpdateStep(), app_record, remote,
            pathname="/var/www/shop", dbType="MySQL", dbPort=3306, dbName="foo", dbUsername="bar",
        )

        assert not result.success
        assert "No such file" in result.message


class TestDeployKey:

    def test_generates_registers_and_configures(self, remote, github, app_record):
        remote.respond(r"^ssh -T", stderr="Hi acme/shop! You've successfully authenticated, but GitHub does not provide shell access.", exit_code=1)

        result = execute(DeployKeyStep(), app_record, remote, github, selectedRepo="https://github.com/acme/shop.git")

        assert result.success
        assert result.data["deployKeyName"] == "shop_deploy_key"
        assert result.data["hostAlias"] == "github.com-shop"
        assert result.data["repository"] == "acme/shop"
        assert result.data["connectionTested"] is True
        assert result.data["keyGenerated"] is True
        assert github.deploy_keys[0]["key"] == "ssh-ed25519 AAAAshop_deploy_key shop_deploy_key"
        assert "Host github.com-shop" in remote.files[".ssh/config"]

    def test_rerun_converges(self, remote, github, app_record):
        """Test that a second run reuses the key and keeps a single config block."""
        remote.files[".ssh/config"] = "Host other\n  HostName example.org\n"

        execute(DeployKeyStep(), app_record, remote, github, selectedRepo="acme/shop")
        second = execute(DeployKeyStep(), app_record, remote, github, selectedRepo="acme/shop")

        config = remote.files[".ssh/config"]
        assert second.success
        assert second.data["keyGenerated"] is False
        assert len(github.deploy_keys) == 1
        assert config.count("Host github.com-shop") == 1
        assert config.startswith("Host other\n  HostName example.org\n")
        assert len(remote.ran("ssh-keygen")) == 1

    def test_failed_ssh_test_does_not_fail_step(self, remote, github, app_record):
        remote.respond(r"^ssh -T", stderr="Permission denied (publickey).", exit_code=255)

        result = execute(DeployKeyStep(), app_record, remote, github, selectedRepo="acme/shop")

        assert result.success
        assert result.data["connectionTested"] is False
        assert "Permission denied" in result.data["testMessage"]


class TestSSHConfigBlocks:

    def test_remove_only_target_alias(self):
        config = (
            "Host keep\n  HostName a\n\n"
            "# Deploy key for acme/shop (shop)\nHost github.com-shop\n  HostName github.com\n\n"
            "Host keep-too\n  HostName b\n"
        )

        result = remove_host_block(config, "github.com-shop")

        assert "github.com-shop" not in result
        assert "# Deploy key for" not in result
        assert "Host keep\n" in result
        assert "Host keep-too\n" in result

    def test_upsert_twice_is_stable(self):
        once = upsert_host_block("", "acme/shop", "shop", "github.com-shop", "~/.ssh/shop_deploy_key")
        twice = upsert_host_block(once, "acme/shop", "shop", "github.com-shop", "~/.ssh/shop_deploy_key")

        assert once == twice


class TestSSHKeySetup:

    def test_secret_name_and_single_authorization(self, remote, github, app_record):
        app_record.application_name = "My App!"

        first = execute(SSHKeySetupStep(), app_record, remote, github, selectedRepo="acme/shop")
        second = execute(SSHKeySetupStep(), app_record, remote, github, selectedRepo="acme/shop")

        assert first.success and second.success
        assert first.data["secretName"] == second.data["secretName"] == "PRIVATE_KEY_MY_APP_"
        assert list(github.secrets) == ["PRIVATE_KEY_MY_APP_"]
        assert github.secrets["PRIVATE_KEY_MY_APP_"] == "PRIVATE KEY github_actions_My_App_\n"
        assert remote.files[".ssh/authorized_keys"].count("AAAAgithub_actions_My_App_") == 1
        assert first.data["publicKeyAppended"] is True
        assert second.data["publicKeyAppended"] is False
        assert "${{ secrets.PRIVATE_KEY_MY_APP_ }}" in first.data["instructions"]
        assert first.record_updates["private_key_secret_name"] == "PRIVATE_KEY_MY_APP_"


class TestServerStack:

    def test_apt_install(self, remote, app_record):
        remote.respond("command -v apt-get", stdout="apt\n")
        remote.respond(r"^php -v", stdout="PHP 8.2.10 (cli)\nCopyright")

        result = execute(ServerStackSetupStep(), app_record, remote, phpVersion="8.2", database="PostgreSQL")

        assert result.success
        assert remote.ran("add-apt-repository") == []
        install = remote.ran("apt-get install -y php8.2-cli")[0]
        assert "php8.2-pgsql" in install
        assert remote.ran("install -y postgresql postgresql-contrib")
        assert remote.ran("systemctl enable --now nginx php8.2-fpm postgresql")
        assert result.data["versions"]["php"] == "PHP 8.2.10 (cli)"
        assert result.record_updates == {"php_version": "8.2", "db_type": "PostgreSQL"}

    def test_adds_php_repository_when_missing(self, remote, app_record):
        remote.respond("command -v apt-get", stdout="apt\n")
        remote.respond("apt-cache show", exit_code=100)

        result = execute(ServerStackSetupStep(), app_record, remote, database="none")

        assert result.success
        assert remote.ran("add-apt-repository -y ppa:ondrej/php")
        assert result.data["database"] is None
        assert "db_type" not in result.record_updates

    def test_dnf_install(self, remote, app_record):
        remote.respond("command -v apt-get", stdout="dnf\n")

        result = execute(ServerStackSetupStep(), app_record, remote, database="MySQL")

        assert result.success
        assert remote.ran(r"dnf module enable -y php:8\.3")
        assert remote.ran("dnf install -y php-cli")
        assert remote.ran("systemctl enable --now nginx php-fpm mariadb")

    def test_unsupported_os(self, remote, app_record):
        remote.respond("command -v apt-get", stdout="unknown\n")

        result = execute(ServerStackSetupStep(), app_record, remote)

        assert not result.success
        assert result.status_code == 400

    def test_invalid_php_version(self, app_record):
        with pytest.raises(ProvisioningValidationError):
            ServerStackSetupStep().validate({**_target(app_record), "phpVersion": "8.3; reboot"})


class TestHttpsNginx:

    def test_issues_certificate_then_enables_tls(self, remote, app_record):
        remote.respond("command -v apt-get", stdout="apt\n")

        result = execute(HttpsNginxSetupStep(), app_record, remote, domain="Shop.Example.com", email="ops@example.com")

        config_file = "/etc/nginx/sites-available/shop.example.com.conf"
        assert result.success
        assert result.data["configFile"] == config_file
        assert result.data["certificateIssued"] is True
        assert result.data["autoRenewalEnabled"] is True
        certbot = remote.ran("certbot certonly")[0]
        assert "-d shop.example.com" in certbot
        assert "--email ops@example.com" in certbot
        # HTTP bootstrap, then the TLS site
        assert remote.commands.count(f"write {config_file}") == 2
        assert "ssl_certificate /etc/letsencrypt/live/shop.example.com/fullchain.pem;" in remote.files[config_file]
        assert "root /var/www/shop.example.com/current/public;" in remote.files[config_file]
        assert "try_files $uri $uri/ /index.php?$query_string;" in remote.files[config_file]
        assert remote.ran("ln -sfn")
        assert remote.ran("nginx -t")
        assert RENEWAL_HOOK_PATH in remote.files

    def test_existing_certificate_skips_certbot(self, remote, app_record):
        remote.respond("command -v apt-get", stdout="apt\n")
        remote.files["/etc/letsencrypt/live/shop.example.com/fullchain.pem"] = ""
        app_record.pathname = "/srv/shop"

        result = execute(HttpsNginxSetupStep(), app_record, remote, domain="shop.example.com", email="ops@example.com")

        assert result.success
        assert result.data["certificateIssued"] is False
        assert remote.ran("certbot certonly") == []
        assert "root /srv/shop/current/public;" in remote.files["/etc/nginx/sites-available/shop.example.com.conf"]

    def test_invalid_email(self, app_record):
        with pytest.raises(ProvisioningValidationError):
            HttpsNginxSetupStep().validate({**_target(app_record), "domain": "shop.example.com", "email": "nope"})


class TestNodeNvm:

    def test_installs_nvm_once(self, remote, app_record):
        remote.respond("nvm --version", stdout="nvm=0.40.1\nnode=v20.11.1\nnpm=10.2.4\n")

        first = execute(NodeNvmSetupStep(), app_record, remote, nodeVersion="20")
        remote.files[".nvm/nvm.sh"] = "# nvm"
        second = execute(NodeNvmSetupStep(), app_record, remote, nodeVersion="20")

        assert first.success and second.success
        assert first.data["nvmInstalled"] is True
        assert second.data["nvmInstalled"] is False
        assert len(remote.ran("nvm-sh/nvm/v0.40.1/install.sh")) == 1
        assert first.data["versions"] == {"nvm": "0.40.1", "node": "v20.11.1", "npm": "10.2.4"}
        assert remote.ran("nvm install 20 && nvm alias default 20")

    def test_defaults_to_lts(self, app_record):
        inputs = NodeNvmSetupStep().validate(_target(app_record))
        assert inputs["nodeVersion"] == "lts/*"


class TestDeployWorkflow:

    @pytest.fixture
    def repo_with_config(self, github):
        github.files["deploy.yml"] = RepoFile(
            path="deploy.yml",
            content=yaml.safe_dump({"import": ["recipe/laravel.php"], "hosts": [{"application": "blog", "hostname": "h1"}]}),
            sha="sha-0",
        )
        return github

    def test_upserts_host_and_opens_pr(self, repo_with_config, app_record):
        github = repo_with_config

        result = execute(
            DeployWorkflowUpdateStep(), app_record, None, github,
            selectedRepo="acme/shop", baseBranch="main", sshPath="/var/www/shop",
        )

        assert result.success
        document = yaml.safe_load(github.files["deploy.yml"].content)
        assert document["import"] == ["recipe/laravel.php"]
        assert [h["application"] for h in document["hosts"]] == ["blog", "shop"]
        entry = document["hosts"][1]
        assert entry["deploy_path"] == "/var/www/shop"
        assert entry["remote_user"] == "deploy"
        assert entry["repository"] == "git@github.com-shop:acme/shop.git"
        assert result.data["prNumber"] == 1
        assert result.data["prUrl"] == "https://github.com/acme/shop/pull/1"
        assert result.data["featureBranch"].startswith("deploy-update-shop-")
        assert "secrets.PRIVATE_KEY_SHOP" in github.files[".github/workflows/deploy-shop.yml"].content

    def test_rerun_does_not_duplicate_entry(self, repo_with_config, app_record):
        github = repo_with_config
        fields = dict(selectedRepo="acme/shop", baseBranch="main", sshPath="/var/www/shop")

        execute(DeployWorkflowUpdateStep(), app_record, None, github, **fields)
        execute(DeployWorkflowUpdateStep(), app_record, None, github, **{**fields, "sshPath": "/srv/shop"})

        hosts = yaml.safe_load(github.files["deploy.yml"].content)["hosts"]
        assert len(hosts) == 2
        assert hosts[1]["deploy_path"] == "/srv/shop"

    def test_creates_config_when_absent(self, github, app_record):
        result = execute(
            DeployWorkflowUpdateStep(), app_record, None, github,
            selectedRepo="acme/shop", baseBranch="main", sshPath="/var/www/shop",
        )

        assert result.success
        assert result.data["deployPath"] == "deploy.yml"
        assert yaml.safe_load(github.files["deploy.yml"].content)["hosts"][0]["application"] == "shop"

    def test_missing_base_branch_is_404(self, github, app_record):
        result = execute(
            DeployWorkflowUpdateStep(), app_record, None, github,
            selectedRepo="acme/shop", baseBranch="production", sshPath="/var/www/shop",
        )

        assert not result.success
        assert result.status_code == 404
        assert result.message == "Base branch not found: production"
        assert github.pull_requests == []

    def test_fallback_base_branch_opt_in(self, github, app_record, monkeypatch):
        monkeypatch.setattr(settings, "fallback_base_branch", "dev")
        github.branches["dev"] = "sha-dev"

        result = execute(
            DeployWorkflowUpdateStep(), app_record, None, github,
            selectedRepo="acme/shop", baseBranch="production", sshPath="/var/www/shop",
        )

        assert result.success
        assert github.branches["production"] == "sha-dev"
        assert result.data["baseBranchCreatedFrom"] == "dev"

    def test_invalid_yaml(self, github, app_record):
        github.files["deploy.yml"] = RepoFile(path="deploy.yml", content="hosts: [unclosed", sha="s")

        result = execute(
            DeployWorkflowUpdateStep(), app_record, None, github,
            selectedRepo="acme/shop", baseBranch="main", sshPath="/var/www/shop",
        )

        assert not result.success
        assert result.status_code == 400

    def test_feature_branch_name(self):
        assert feature_branch_name("My App!", now_ms=1700000000000) == "deploy-update-My-App-1700000000000"

    def test_upsert_matches_legacy_name_key(self):
        document = upsert_host({"hosts": [{"name": "shop", "hostname": "old"}]}, {"application": "shop", "hostname": "new"})

        assert document["hosts"] == [{"name": "shop", "hostname": "new", "application": "shop"}]


def _target(application):
    return {"host": application.host, "username": application.username, "applicationName": application.application_name}
