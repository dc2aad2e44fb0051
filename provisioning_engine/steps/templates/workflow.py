# provisioning_engine/steps/templates/workflow.py
"""GitHub Actions workflow that deploys one application with the stored CI key."""

import yaml


def render_deploy_workflow(
    *,
    application: str,
    branch: str,
    hostname: str,
    secret_name: str,
    config_path: str,
    php_version: str = "8.3",
) -> str:
    workflow = {
        "name": f"Deploy {application}",
        "on": {
            "push": {"branches": [branch]},
            "workflow_dispatch": {},
        },
        "concurrency": {"group": f"deploy-{application}", "cancel-in-progress": False},
        "jobs": {
            "deploy": {
                "runs-on": "ubuntu-latest",
                "steps": [
                    {"uses": "actions/checkout@v4"},
                    {
                        "name": "Setup PHP",
                        "uses": "shivammathur/setup-php@v2",
                        "with": {"php-version": php_version, "tools": "composer"},
                    },
                    {
                        "name": "Deploy",
                        "uses": "deployphp/action@v1",
                        "with": {
                            "private-key": "${{ secrets.%s }}" % secret_name,
                            "ssh-config": f"Host {hostname}\n  StrictHostKeyChecking accept-new\n",
                            "dep": f"deploy --file={config_path}",
                        },
                    },
                ],
            }
        },
    }
    return yaml.safe_dump(workflow, sort_keys=False, width=120)
