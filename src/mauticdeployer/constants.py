"""Shared constants for MauticDeployer."""

DIR_MODE = 0o755
FILE_MODE = 0o644
SECRET_FILE_MODE = 0o600

WEB_CONTAINER = "mautibox_web"
DB_CONTAINER = "mautibox_db"
CRON_CONTAINER = "mautibox_cron"
STACK_CONTAINERS = (WEB_CONTAINER, DB_CONTAINER, CRON_CONTAINER)

MAUTIC_IMAGE_REPOSITORY = "mautic/mautic"
IMAGE_VARIANT_SUFFIX = "-apache"

COMPOSE_FILE = "docker-compose.yml"
DEPLOY_ENV_FILE = "deploy.env"
STACK_ENV_FILE = ".mautic_env"
DATA_DIRECTORIES = ("mautic_data", "mysql_data", "logs")
MANIFEST_FILE = "deploy-manifest.json"
STAGING_DIR = ".mauticdeployer-staging"

HEALTH_POLL_INTERVAL_SECONDS = 15
DIAGNOSTIC_INTERVAL_SECONDS = 30
DB_HEALTH_TIMEOUT_SECONDS = 180
WEB_HEALTH_TIMEOUT_SECONDS = 300
CONTAINER_SETTLE_SECONDS = 15
DIAGNOSTIC_DATA_DIRS = {DB_CONTAINER: "/var/lib/mysql"}

MAUTIC_ROOT = "/var/www/html"
MAUTIC_DOCROOT = f"{MAUTIC_ROOT}/docroot"
PLUGINS_DIR = f"{MAUTIC_DOCROOT}/plugins"
THEMES_DIR = f"{MAUTIC_DOCROOT}/themes"
TRANSLATIONS_DIR = f"{MAUTIC_DOCROOT}/translations"
BUNDLES_DIR = f"{MAUTIC_DOCROOT}/app/bundles"
MEDIA_HTACCESS_DIRS = (f"{MAUTIC_DOCROOT}/media/images", f"{MAUTIC_DOCROOT}/media/files")
WEB_USER = "www-data"
DEFAULT_CUSTOMISATION_DIR = "/var/www/templates/customisation"

INSTALL_COMMAND_TIMEOUT_SECONDS = 320
CACHE_CLEAR_TIMEOUT_SECONDS = 30

DOWNLOAD_CONNECT_TIMEOUT_SECONDS = 30.0
DOWNLOAD_TOTAL_TIMEOUT_SECONDS = 60.0
DOWNLOAD_RETRY_COUNT = 2

NGINX_SITES_AVAILABLE = "/etc/nginx/sites-available"
NGINX_SITES_ENABLED = "/etc/nginx/sites-enabled"
VHOST_DOMAIN_PLACEHOLDER = "DOMAIN_NAME"
VHOST_PORT_PLACEHOLDER = "PORT"
VHOST_PROXY_DIRECTIVE = "proxy_pass http://localhost:"
VHOST_TLS_DIRECTIVE = "listen 443 ssl"
VHOST_CLOSING_TOKEN = "}"
