from __future__ import annotations

import pytest

from crmsync.domain.error_codes import ErrorCode


@pytest.mark.parametrize(
    "code, status, expected",
    [
        ("NETWORK_ERROR", None, ErrorCode.NETWORK_ERROR),
        ("INVALID_JSON", 200, ErrorCode.INVALID_JSON),
        ("INVALID_RESPONSE", None, ErrorCode.INVALID_RESPONSE),
        ("HTTP_401", 401, ErrorCode.UNAUTHORIZED),
        ("HTTP_403", 403, ErrorCode.FORBIDDEN),
        ("HTTP_429", 429, ErrorCode.RATE_LIMITED),
        ("HTTP_503", 503, ErrorCode.SERVER_ERROR),
        ("HTTP_404", 404, ErrorCode.HTTP_ERROR),
        ("SOMETHING_ELSE", 400, ErrorCode.API_ERROR),
        (None, None, ErrorCode.API_ERROR),
    ],
)
def test_from_api_code(code, status, expected):
    assert ErrorCode.from_api_code(code, status) is expected


def test_taxonomy_has_only_produced_codes():
    assert {c.value for c in ErrorCode} == {
        "NETWORK_ERROR",
        "HTTP_ERROR",
        "INVALID_JSON",
        "INVALID_RESPONSE",
        "API_ERROR",
        "UNAUTHORIZED",
        "FORBIDDEN",
        "RATE_LIMITED",
        "SERVER_ERROR",
        "REPEATED_CURSOR",
        "MAX_PAGES_EXCEEDED",
        "DUPLICATE_CHECK_FAILED",
        "BATCH_WRITE_FAILED",
    }
