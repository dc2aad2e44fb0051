# provisioning_engine/steps/templates/nginx.py
"""Nginx site templates: HTTP-only bootstrap for the ACME challenge, then full TLS."""

from string import Template


ACME_ROOT = "/var/www/_letsencrypt"
DHPARAM_PATH = "/etc/nginx/dhparam.pem"

RENEWAL_HOOK = "#!/bin/bash\nnginx -t && systemctl reload nginx\n"


_ACME_LOCATION = """\
    location ^~ /.well-known/acme-challenge/ {
        root $acme_root;
    }
"""

_PHP_LOCATIONS = """\
    index index.php index.html;

    location / {
        try_files $$uri $$uri/ /index.php?$$query_string;
    }

    location ~ \\.php$$ {
        fastcgi_pass unix:$php_socket;
        fastcgi_param SCRIPT_FILENAME $$realpath_root$$fastcgi_script_name;
        include fastcgi_params;
        fastcgi_hide_header X-Powered-By;
    }

    location ~ /\\.(?!well-known) {
        deny all;
    }
"""


HTTP_SITE = Template("""\
# Managed by provisioning-engine: $domain (HTTP bootstrap)
server {
    listen 80;
    listen [::]:80;
    server_name $domain;
    root $web_root;

""" + _ACME_LOCATION + "\n" + _PHP_LOCATIONS + """}
""")


HTTPS_SITE = Template("""\
# Managed by provisioning-engine: $domain
server {
    listen 443 ssl http2;
    listen [::]:443 ssl http2;
    server_name $domain;
    root $web_root;

    ssl_certificate /etc/letsencrypt/live/$domain/fullchain.pem;
    ssl_certificate_key /etc/letsencrypt/live/$domain/privkey.pem;
    ssl_trusted_certificate /etc/letsencrypt/live/$domain/chain.pem;
    ssl_dhparam $dhparam;
    ssl_session_timeout 1d;
    ssl_session_cache shared:SSL:10m;
    ssl_protocols TLSv1.2 TLSv1.3;
    ssl_prefer_server_ciphers off;

    add_header Strict-Transport-Security "max-age=31536000" always;
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;

""" + _PHP_LOCATIONS + """}

server {
    listen 80;
    listen [::]:80;
    server_name $domain;

""" + _ACME_LOCATION + """
    location / {
        return 301 https://$$host$$request_uri;
    }
}
""")


def render_http_site(domain: str, web_root: str, php_socket: str) -> str:
    return HTTP_SITE.substitute(
        domain=domain,
        web_root=web_root,
        php_socket=php_socket,
        acme_root=ACME_ROOT,
    )


def render_https_site(domain: str, web_root: str, php_socket: str) -> str:
    return HTTPS_SITE.substitute(
        domain=domain,
        web_root=web_root,
        php_socket=php_socket,
        acme_root=ACME_ROOT,
        dhparam=DHPARAM_PATH,
    )
