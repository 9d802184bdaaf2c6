"""Centralized constants for the transfer engine."""

# SSH Configuration Options
SSH_NO_HOST_CHECK = "StrictHostKeyChecking=no"
SSH_NO_KNOWN_HOSTS = "UserKnownHostsFile=/dev/null"
SSH_ERROR_LOG_LEVEL = "LogLevel=ERROR"
SSH_CONTROL_PATH = "~/.ssh/db-transfer-%r@%h:%p"
SSH_CONTROL_PERSIST = "60s"

# Remote script preamble: abort on the first failing command or pipe stage
REMOTE_SCRIPT_PREAMBLE = "set -eo pipefail"

# Date/Time Formats
DUMP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Dump format magic markers
PGDUMP_CUSTOM_MAGIC = "PGDMP"
REDIS_RDB_MAGIC = "REDIS"
GZIP_MAGIC_HEX = "1f8b"

# Key-value partial dump format
REDIS_KEYS_HEADER = "# db-transfer redis-keys v1"
REDIS_KEY_MARKER = "KEY"

# Columnar dump format
CLICKHOUSE_HEADER = "-- db-transfer clickhouse v1"
CLICKHOUSE_SCHEMA_MARKER = "-- SCHEMA "
CLICKHOUSE_DATA_MARKER = "-- DATA "

# Record fields
SOURCE_KIND = "source_kind"
SOURCE_ID = "source_id"
TRANSFER_UUID = "transfer_uuid"

# Security-related field names for filtering
SECURITY_FIELDS = [
    "password",
    "passwd",
    "pwd",
    "token",
    "secret",
    "credential",
    "auth",
    "authorization",
    "private_key",
    "identity_file",
]
