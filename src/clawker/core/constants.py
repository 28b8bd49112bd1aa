"""
Backend-specific constants for clawker.

Centralizes names, label keys and in-container paths so the pipeline,
adapters and tests agree on a single source of truth.
"""

from __future__ import annotations

# ─────────────────────────────────────────────────────────────────────────────
# Naming
# ─────────────────────────────────────────────────────────────────────────────

NAME_PREFIX = "clawker"
NETWORK_NAME = "clawker-net"

# Container names are used as hostnames; keep them within a DNS label
MAX_CONTAINER_NAME_LENGTH = 63

# ─────────────────────────────────────────────────────────────────────────────
# Labels
# ─────────────────────────────────────────────────────────────────────────────

LABEL_PREFIX = "dev.clawker."
LABEL_MANAGED = LABEL_PREFIX + "managed"
LABEL_PROJECT = LABEL_PREFIX + "project"
LABEL_AGENT = LABEL_PREFIX + "agent"
LABEL_VERSION = LABEL_PREFIX + "version"
LABEL_IMAGE = LABEL_PREFIX + "image"
LABEL_CREATED = LABEL_PREFIX + "created"
LABEL_WORKDIR = LABEL_PREFIX + "workdir"
LABEL_PURPOSE = LABEL_PREFIX + "purpose"
MANAGED_LABEL_VALUE = "true"

# ─────────────────────────────────────────────────────────────────────────────
# Container user and paths
# ─────────────────────────────────────────────────────────────────────────────

CONTAINER_UID = 1001
CONTAINER_GID = 1001
CONTAINER_HOME = "/home/claude"
CONTAINER_CLAUDE_DIR = CONTAINER_HOME + "/.claude"
CONTAINER_PLUGINS_DIR = CONTAINER_CLAUDE_DIR + "/plugins"
CONTAINER_GITCONFIG_PATH = "/tmp/host-gitconfig"
CONTAINER_GPG_AGENT_PATH = CONTAINER_HOME + "/.gnupg/S.gpg-agent"
CONTAINER_SSH_AGENT_PATH = CONTAINER_HOME + "/.ssh/agent.sock"
DOCKER_SOCKET_PATH = "/var/run/docker.sock"
SOCKET_SERVER_PATH = "/usr/local/bin/clawker-socket-server"

DEFAULT_REMOTE_PATH = "/workspace"

# Image used for throwaway copy-to-volume helper containers
COPY_HELPER_IMAGE = "busybox:latest"

# ─────────────────────────────────────────────────────────────────────────────
# Host proxy
# ─────────────────────────────────────────────────────────────────────────────

HOST_PROXY_PORT = 18374
HOST_PROXY_ENV_VAR = "CLAWKER_HOST_PROXY"
HOST_PROXY_SERVICE = "clawker-host-proxy"

# ─────────────────────────────────────────────────────────────────────────────
# Keychain
# ─────────────────────────────────────────────────────────────────────────────

KEYCHAIN_SERVICE = "Claude Code-credentials"
KEYCHAIN_TIMEOUT_SECONDS = 3.0

# ─────────────────────────────────────────────────────────────────────────────
# Environment variables read on the host
# ─────────────────────────────────────────────────────────────────────────────

CLAUDE_CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"
CLAWKER_CONFIG_DIR_ENV = "CLAWKER_CONFIG_DIR"

PROJECT_CONFIG_FILENAME = "clawker.yaml"
SETTINGS_FILENAME = "settings.yaml"

# Default editor inside agent containers
DEFAULT_EDITOR = "nano"

# Domains the in-container firewall allows when no override is configured
DEFAULT_FIREWALL_DOMAINS = (
    "registry.npmjs.org",
    "api.anthropic.com",
    "sentry.io",
    "statsig.anthropic.com",
    "statsig.com",
    "marketplace.visualstudio.com",
    "vscode.blob.core.windows.net",
    "update.code.visualstudio.com",
    "registry-1.docker.io",
    "production.cloudflare.docker.com",
    "proxy.golang.org",
    "sum.golang.org",
    "docker.io",
    "pypi.org",
)
