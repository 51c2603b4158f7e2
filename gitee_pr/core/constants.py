"""Core constants shared by the client, token cache and gateway."""

# Gitee only accepts this scope set for the password grant.
OAUTH_SCOPE = "user_info pull_requests enterprises"

DEFAULT_BASE_URL = "https://gitee.com"
API_PREFIX = "/api/v5"
TOKEN_PATH = "/oauth/token"
DEFAULT_TIMEOUT_SECONDS = 30.0

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
TOKEN_REFRESH_BUFFER_SECONDS = 5 * 60
