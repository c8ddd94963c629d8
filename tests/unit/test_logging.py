"""
Module: tests/unit/test_logging.py

What:
    Check the structured JSON logger: payload layout and recursive redaction
    of credential fields.

Why:
    Generation options carry controller secrets and node credentials, and
    logs are shipped off-router. A leaked secret cannot be recalled.
"""

import io
import json

from routeforge.utils.logging import REDACTED, JsonLogger


def test_log_line_layout():
    stream = io.StringIO()
    JsonLogger(stream=stream, component="routeforge.test").warning("template change rejected", engine="mihomo")
    payload = json.loads(stream.getvalue())
    assert payload["lvl"] == "WARN"
    assert payload["msg"] == "template change rejected"
    assert payload["component"] == "routeforge.test"
    assert payload["engine"] == "mihomo"
    assert "ts" in payload


def test_nested_credentials_are_redacted():
    stream = io.StringIO()
    logger = JsonLogger(stream=stream).child("routeforge.generator")
    logger.info(
        "options",
        secret="s3cret",
        nodes=[{"name": "hk-1", "password": "p", "uuid": "u"}, {"tag": "wg", "private_key": "k"}],
    )
    payload = json.loads(stream.getvalue())
    assert payload["component"] == "routeforge.generator"
    assert payload["secret"] == REDACTED
    assert payload["nodes"] == [
        {"name": "hk-1", "password": REDACTED, "uuid": REDACTED},
        {"tag": "wg", "private_key": REDACTED},
    ]
