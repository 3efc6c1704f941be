#!/usr/bin/env python3
"""
Tests for the generation error classifier.

Inputs take every shape the remote capability produces: ApiCallError with a
JSON body, plain exceptions whose message is JSON, mappings and raw text.
"""

import json

from datamind.errors import ApiCallError, DownloadFailedError, NoArtifactError, OperationTimedOutError
from datamind.generation import ErrorKind, classify, extract_api_error
from datamind.generation.errors import parse_retry_delay


def _api_error(code, status, message, details=None):
    return {"error": {"code": code, "status": status, "message": message, "details": details or []}}


def _retry_info(delay):
    return {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": delay}


def test_rate_limit_with_retry_delay():
    body = _api_error(429, "RESOURCE_EXHAUSTED", "Quota exceeded", [_retry_info("7s")])
    result = classify(ApiCallError(429, json.dumps(body)))

    assert result.kind == ErrorKind.QUOTA_EXCEEDED
    assert result.retry_delay_seconds == 7
    assert result.user_message == "You've hit the API rate limit. Please try again in 7 seconds."
    assert result.credential_invalid is False
    print("✅ Rate limit with retry delay classified")


def test_rate_limit_fractional_delay_truncates():
    body = _api_error(429, "RESOURCE_EXHAUSTED", "Quota exceeded", [_retry_info("12.8s")])

    assert classify(body).retry_delay_seconds == 12


def test_rate_limit_without_delay_is_quota_message():
    result = classify(_api_error(429, None, "Too many requests"))

    assert result.kind == ErrorKind.QUOTA_EXCEEDED
    assert result.retry_delay_seconds is None
    assert "quota" in result.user_message.lower()


def test_rate_limit_ignores_malformed_delay():
    body = _api_error(None, "RESOURCE_EXHAUSTED", "Quota exceeded", [_retry_info("soon")])

    assert classify(body).retry_delay_seconds is None


def test_billing_restriction():
    body = _api_error(400, "FAILED_PRECONDITION", "Imagen API is only accessible to billed users at this time.")
    result = classify(Exception(json.dumps(body)))

    assert result.kind == ErrorKind.BILLING_RESTRICTED
    assert "Imagen" in result.user_message


def test_billing_restriction_from_raw_text():
    result = classify(RuntimeError("The Veo API is only accessible to billed users."))

    assert result.kind == ErrorKind.BILLING_RESTRICTED


def test_invalid_and_expired_credentials():
    invalid = _api_error(
        400,
        "INVALID_ARGUMENT",
        "API key not valid. Please pass a valid API key.",
        [{"@type": "type.googleapis.com/google.rpc.ErrorInfo", "reason": "API_KEY_INVALID"}],
    )
    expired = _api_error(400, "INVALID_ARGUMENT", "API key expired. Please renew the API key.")

    invalid_result = classify(invalid)
    expired_result = classify(expired)

    assert invalid_result.kind == ErrorKind.CREDENTIAL_INVALID
    assert expired_result.kind == ErrorKind.CREDENTIAL_EXPIRED
    assert invalid_result.user_message != expired_result.user_message
    assert "expired" in expired_result.user_message.lower()


def test_not_provisioned_sets_credential_flag():
    result = classify(_api_error(404, "NOT_FOUND", "Requested entity was not found."))

    assert result.kind == ErrorKind.CREDENTIAL_NOT_PROVISIONED
    assert result.credential_invalid is True
    assert result.retry_delay_seconds is None


def test_not_provisioned_from_raw_text():
    assert classify("Error: Requested entity was not found.").credential_invalid is True


def test_generic_api_error():
    result = classify(_api_error(500, "INTERNAL", "Backend exploded"))

    assert result.kind == ErrorKind.GENERIC_API_ERROR
    assert result.user_message == "An API error occurred: Backend exploded"


def test_generic_api_error_falls_back_to_status():
    result = classify({"code": 503, "status": "UNAVAILABLE"})

    assert result.user_message == "An API error occurred: UNAVAILABLE"


def test_api_error_without_message_or_status():
    result = classify({"code": 500})

    assert result.kind == ErrorKind.GENERIC_API_ERROR
    assert result.user_message == "An API error occurred: Unknown error"


def test_lifecycle_errors_keep_their_kind():
    assert classify(NoArtifactError("No audio data received from API.")).kind == ErrorKind.NO_ARTIFACT
    timed_out = classify(OperationTimedOutError("Video generation timed out after 5 minutes."))
    assert timed_out.kind == ErrorKind.TIMED_OUT
    assert timed_out.user_message == "Video generation timed out after 5 minutes."
    download = classify(DownloadFailedError("Failed to download video: Forbidden", status_code=403))
    assert download.kind == ErrorKind.DOWNLOAD_FAILED


def test_unexpected_error():
    result = classify(ValueError("boom"))

    assert result.kind == ErrorKind.UNEXPECTED_ERROR
    assert result.user_message == "An unexpected error occurred: boom"


def test_classify_never_raises():
    class Unprintable:
        def __str__(self):
            raise RuntimeError("no str")

    for value in (None, 42, b"\xff\xfe", "{not json", Unprintable(), {"error": "flat string"}):
        result = classify(value)
        assert result.user_message
    print("✅ Classifier total over odd inputs")


def test_extract_api_error_shapes():
    inner = {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "slow down"}

    assert extract_api_error({"error": inner}).code == 429
    assert extract_api_error(inner).status == "RESOURCE_EXHAUSTED"
    assert extract_api_error(json.dumps({"error": inner})).message == "slow down"
    assert extract_api_error(Exception(f"got status 429: {json.dumps({'error': inner})}")).code == 429
    assert extract_api_error({"unrelated": True}) is None
    assert extract_api_error("plain text") is None


def test_parse_retry_delay_prefers_retry_info():
    api_error = extract_api_error(
        _api_error(
            429,
            "RESOURCE_EXHAUSTED",
            "x",
            [{"@type": "type.googleapis.com/google.rpc.QuotaFailure", "retryDelay": "99s"}, _retry_info("3s")],
        )
    )

    assert parse_retry_delay(api_error) == 3


if __name__ == "__main__":
    test_rate_limit_with_retry_delay()
    test_invalid_and_expired_credentials()
    test_not_provisioned_sets_credential_flag()
    test_lifecycle_errors_keep_their_kind()
    test_classify_never_raises()
    print("🎉 All classifier tests passed!")
