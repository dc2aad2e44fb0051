"""Configuration file templates rendered by the steps."""

from .nginx import render_http_site, render_https_site, RENEWAL_HOOK
from .workflow import render_deploy_workflow


__all__ = ["render_http_site", "render_https_site", "RENEWAL_HOOK", "render_deploy_workflow"]
