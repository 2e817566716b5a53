"""Secret redaction for log output."""

import json
import logging
import os
import re

# Env vars whose values should never reach the logs
_SECRET_ENV_VARS = [
    "GCLOUD_JSON_AUTH",
    "CLOUDSDK_AUTH_ACCESS_TOKEN",
    "GOOGLE_OAUTH_ACCESS_TOKEN",
]

# Fields of a service-account key that are secret on their own
_SECRET_JSON_FIELDS = ["private_key", "private_key_id"]

_MIN_SECRET_LENGTH = 8  # skip short values to avoid false positives


def _json_secrets(raw: str) -> set[str]:
    try:
        data = json.loads(raw)
    except ValueError:
        return set()
    if not isinstance(data, dict):
        return set()
    return {str(data[k]) for k in _SECRET_JSON_FIELDS if data.get(k)}


def _collect_secret_values() -> set[str]:
    values = set()
    for var in _SECRET_ENV_VARS:
        val = os.environ.get(var, "")
        if len(val) >= _MIN_SECRET_LENGTH:
            values.add(val)
            values |= _json_secrets(val)
    return {v for v in values if len(v) >= _MIN_SECRET_LENGTH}


def _build_patterns(values: set[str]) -> list[re.Pattern]:
    # Longest first, so a whole key file is replaced before its fragments
    return [re.compile(re.escape(v)) for v in sorted(values, key=len, reverse=True)]


_patterns: list[re.Pattern] | None = None


def _get_patterns() -> list[re.Pattern]:
    global _patterns
    if _patterns is None:
        _patterns = _build_patterns(_collect_secret_values())
    return _patterns


def redact_secrets(text: str) -> str:
    """Replace known secret values with '***'."""
    for pattern in _get_patterns():
        text = pattern.sub("***", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Logging filter that replaces secret values in log records with '***'.

    Handles both f-string messages (msg is pre-formatted) and %-style
    messages (msg + args).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if _get_patterns():
            record.msg = redact_secrets(str(record.msg))
            if isinstance(record.args, dict):
                record.args = {k: redact_secrets(v) if isinstance(v, str) else v for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(redact_secrets(a) if isinstance(a, str) else a for a in record.args)
        return True
