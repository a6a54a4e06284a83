"""Lexical patterns the metric extractor and rules match against.

Targets are compared after import-alias resolution, so ``requests.post``
matches whether the file wrote ``requests.post`` or ``from requests import
post``.
"""

# codepolicy:domain=metrics

from __future__ import annotations

import math
import re
from collections import Counter

# ---------------------------------------------------------------------------
# Network and I/O
# ---------------------------------------------------------------------------

NETWORK_MODULES: tuple[str, ...] = (
    "requests",
    "httpx",
    "aiohttp",
    "urllib.request",
    "urllib3",
    "http.client",
    "boto3",
    "botocore",
    "grpc",
    "socket",
    "websockets",
    "smtplib",
    "ftplib",
    "paramiko",
)

HTTP_METHODS: frozenset[str] = frozenset({
    "get",
    "post",
    "put",
    "patch",
    "delete",
    "head",
    "options",
    "request",
    "send",
    "stream",
    "fetch",
    "urlopen",
})

# Methods whose repeated execution is not safe without an idempotency key.
MUTATING_METHODS: frozenset[str] = frozenset({"post", "patch"})

# Receivers that look like an HTTP/API client object (last dotted segment).
CLIENT_RECEIVER_RE = re.compile(
    r"(?:^|_)(?:client|session|http|api|conn|connection|transport|sess)s?$", re.IGNORECASE
)

CLIENT_CONSTRUCTORS: frozenset[str] = frozenset({
    "requests.Session",
    "requests.session",
    "httpx.Client",
    "httpx.AsyncClient",
    "aiohttp.ClientSession",
    "urllib3.PoolManager",
    "urllib3.HTTPConnectionPool",
    "urllib3.HTTPSConnectionPool",
    "http.client.HTTPConnection",
    "http.client.HTTPSConnection",
    "boto3.client",
    "boto3.resource",
    "boto3.session.Session",
    "grpc.insecure_channel",
    "grpc.secure_channel",
})

TIMEOUT_KEYWORDS: frozenset[str] = frozenset({
    "timeout",
    "connect_timeout",
    "read_timeout",
    "total_timeout",
    "timeout_seconds",
    "deadline",
})

TIMEOUT_CALLS: frozenset[str] = frozenset({
    "httpx.Timeout",
    "aiohttp.ClientTimeout",
    "urllib3.Timeout",
    "urllib3.util.Timeout",
    "asyncio.wait_for",
    "asyncio.timeout",
    "async_timeout.timeout",
    "anyio.fail_after",
    "anyio.move_on_after",
})

TIMEOUT_NAME_RE = re.compile(r"timeout", re.IGNORECASE)

FILE_IO_CALLS: frozenset[str] = frozenset({
    "open",
    "io.open",
    "os.remove",
    "os.unlink",
    "os.rename",
    "os.replace",
    "os.listdir",
    "os.scandir",
    "os.walk",
    "os.makedirs",
    "os.mkdir",
    "os.rmdir",
    "os.stat",
    "os.system",
    "os.popen",
    "shutil.copy",
    "shutil.copy2",
    "shutil.copyfile",
    "shutil.copytree",
    "shutil.move",
    "shutil.rmtree",
    "sqlite3.connect",
    "psycopg2.connect",
    "pymysql.connect",
    "pymongo.MongoClient",
    "redis.Redis",
    "input",
})

IO_MODULE_PREFIXES: tuple[str, ...] = ("subprocess.",)

FILE_IO_METHODS: frozenset[str] = frozenset({
    "read_text",
    "write_text",
    "read_bytes",
    "write_bytes",
    "unlink",
    "rmdir",
    "touch",
})

DB_RECEIVER_RE = re.compile(r"(?:^|_)(?:cursor|cur|conn|connection|db|database)$", re.IGNORECASE)
DB_METHODS: frozenset[str] = frozenset({"execute", "executemany", "executescript", "commit"})

BLOCKING_CALLS: frozenset[str] = frozenset({
    "time.sleep",
    "urllib.request.urlopen",
    "socket.create_connection",
    "os.system",
    "input",
})

BLOCKING_PREFIXES: tuple[str, ...] = ("requests.", "subprocess.")

# ---------------------------------------------------------------------------
# Retry, backoff and status codes
# ---------------------------------------------------------------------------

RETRY_DECORATORS: frozenset[str] = frozenset({
    "retry",
    "tenacity.retry",
    "backoff.on_exception",
    "backoff.on_predicate",
    "retrying.retry",
    "stamina.retry",
})

RETRY_CONSTRUCTORS: frozenset[str] = frozenset({
    "Retry",
    "urllib3.Retry",
    "urllib3.util.Retry",
    "urllib3.util.retry.Retry",
    "requests.adapters.Retry",
    "tenacity.Retrying",
    "tenacity.AsyncRetrying",
})

BACKOFF_CALLS: frozenset[str] = frozenset({
    "wait_exponential",
    "wait_random_exponential",
    "wait_exponential_jitter",
    "wait_incrementing",
    "expo",
    "fibo",
})

SLEEP_CALLS: frozenset[str] = frozenset({
    "sleep",
    "time.sleep",
    "asyncio.sleep",
    "trio.sleep",
    "anyio.sleep",
    "gevent.sleep",
})

ATTEMPT_CALLS: frozenset[str] = frozenset({"stop_after_attempt"})

ATTEMPT_KEYWORDS: frozenset[str] = frozenset({
    "max_tries",
    "tries",
    "attempts",
    "max_attempts",
    "total",
    "max_retries",
    "retries",
    "stop_max_attempt_number",
})

ATTEMPT_NAME_RE = re.compile(r"(?:retr(?:y|ies)|attempts?|tries)$", re.IGNORECASE)

# Literal targets whose numbers/collections describe a retried status set.
STATUS_COLLECTION_TARGET_RE = re.compile(r"status|code|forcelist|retr", re.IGNORECASE)
STATUS_NUMBER_TARGET_RE = re.compile(r"forcelist|retr", re.IGNORECASE)

# Conditions considered safe to retry.
TRANSIENT_STATUSES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504})

IDEMPOTENCY_RE = re.compile(r"idempoten", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Logging, naming and secrets
# ---------------------------------------------------------------------------

LOG_CALL_RE = re.compile(
    r"^(?:self\.|cls\.)?_?(?:log|logger|logging|LOG|LOGGER|structlog\.get_logger\(\))"
    r"\.(?:debug|info|warning|warn|error|exception|critical|log|msg)$"
)

SENSITIVE_NAME_RE = re.compile(
    r"passw(?:or)?d|passwd|pwd|secret|token|api_?key|apikey|private_?key|access_?key"
    r"|credential|auth(?!or)|ssn|social_security|credit_?card|card_?number|cvv|iban"
    r"|email|phone|birth|dob",
    re.IGNORECASE,
)

SECRET_NAME_RE = re.compile(
    r"(?:password|passwd|pwd|secret|token|credentials?"
    r"|(?:^|[_-])(?:api|secret|private|access|signing|auth|client|encryption)[_-]?key|^key)$",
    re.IGNORECASE,
)

OPAQUE_VALUE_RE = re.compile(r"^[A-Za-z0-9_\-+/=.:~]+$")

PLACEHOLDER_RE = re.compile(
    r"^(?:x+|\*+|changeme|change_me|placeholder|dummy|example|test|secret|password|your[-_].*)$",
    re.IGNORECASE,
)

GENERIC_CALLABLE_NAMES: frozenset[str] = frozenset({
    "do",
    "do_it",
    "doit",
    "handle",
    "process",
    "execute",
    "manage",
    "data",
    "stuff",
    "thing",
    "foo",
    "bar",
    "baz",
    "tmp",
    "temp",
    "func",
    "fn",
    "helper",
    "util",
    "misc",
})

VAGUE_MODULE_NAMES: frozenset[str] = frozenset({
    "utils",
    "util",
    "helpers",
    "helper",
    "misc",
    "stuff",
    "functions",
    "tools",
})

SHARED_DOMAINS: frozenset[str] = frozenset({
    "shared",
    "common",
    "core",
    "lib",
    "utils",
    "util",
    "helpers",
    "base",
})

ENTRYPOINT_STEMS: frozenset[str] = frozenset({
    "cli",
    "__main__",
    "main",
    "manage",
    "setup",
    "conftest",
})

SCRIPT_DIRS: frozenset[str] = frozenset({"scripts", "bin", "tests", "test", "examples"})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def matches_module(target: str, modules: tuple[str, ...]) -> bool:
    """True if *target* is one of *modules* or an attribute below one."""
    return any(target == mod or target.startswith(mod + ".") for mod in modules)


def last_segment(name: str) -> str:
    return name.rsplit(".", 1)[-1]


def shannon_entropy(value: str) -> float:
    """Shannon entropy of *value* in bits per character."""
    if not value:
        return 0.0
    counts = Counter(value)
    total = len(value)
    return -sum((n / total) * math.log2(n / total) for n in counts.values())


def is_non_transient(status: int) -> bool:
    """True for client-error (and permanent server-error) codes unsafe to retry."""
    if status in TRANSIENT_STATUSES:
        return False
    return 400 <= status < 500 or status in (501, 505)


def looks_opaque(value: str) -> bool:
    """True if *value* looks like a generated credential rather than prose."""
    if not OPAQUE_VALUE_RE.match(value):
        return False
    if value.lower().startswith(("http://", "https://")):
        return False
    if PLACEHOLDER_RE.match(value):
        return False
    if not any(ch.isalpha() for ch in value):
        return False
    # A single-case run of letters reads as a word or identifier.
    has_digit = any(ch.isdigit() for ch in value)
    mixed_case = any(ch.isupper() for ch in value) and any(ch.islower() for ch in value)
    return has_digit or mixed_case
