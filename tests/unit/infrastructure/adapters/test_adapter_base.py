import asyncio
import json

import pytest

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.models.ai import TextGenerationOptions
from promptforge.infrastructure.adapters.base import (
    MessageBuilder, build_sampling_params, error_for_status, system_with_context, translate_error,
)


class StatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"status {status_code}")
        self.status_code = status_code


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code


class ResponseError(Exception):
    def __init__(self, status_code):
        super().__init__("wrapped response")
        self.response = FakeResponse(status_code)


@pytest.mark.parametrize("status, code", [
    (400, ErrorCode.INVALID_REQUEST),
    (401, ErrorCode.INVALID_API_KEY),
    (403, ErrorCode.PERMISSION_DENIED),
    (404, ErrorCode.MODEL_NOT_FOUND),
    (429, ErrorCode.RATE_LIMIT_EXCEEDED),
    (500, ErrorCode.SERVICE_UNAVAILABLE),
    (502, ErrorCode.SERVICE_UNAVAILABLE),
    (503, ErrorCode.SERVICE_UNAVAILABLE),
    (504, ErrorCode.SERVICE_UNAVAILABLE),
    (418, ErrorCode.UNKNOWN_ERROR),
])
def test_error_for_status_table(status, code):
    error = error_for_status(status, "details", "Vendor")
    assert error.code is code
    assert error.status_code == status


def test_translate_error_reads_status_from_attribute_or_response():
    assert translate_error(StatusError(401), "Vendor").code is ErrorCode.INVALID_API_KEY
    assert translate_error(ResponseError(503), "Vendor").code is ErrorCode.SERVICE_UNAVAILABLE


@pytest.mark.parametrize("error, code", [
    (asyncio.TimeoutError(), ErrorCode.TIMEOUT_ERROR),
    (TimeoutError(), ErrorCode.TIMEOUT_ERROR),
    (ConnectionRefusedError(), ErrorCode.NETWORK_ERROR),
    (OSError("unreachable"), ErrorCode.NETWORK_ERROR),
    (json.JSONDecodeError("bad", "doc", 0), ErrorCode.PARSE_ERROR),
    (KeyError("choices"), ErrorCode.PARSE_ERROR),
    (RuntimeError("weird"), ErrorCode.UNKNOWN_ERROR),
])
def test_translate_error_categories(error, code):
    translated = translate_error(error, "Vendor")
    assert translated.code is code
    assert translated.original_error is error
    assert translated.is_retryable


def test_translate_error_passes_adapter_errors_through():
    error = AdapterError("already normalized", ErrorCode.RATE_LIMIT_EXCEEDED, 429)
    assert translate_error(error, "Vendor") is error


def test_message_builder_orders_system_context_user():
    messages = (
        MessageBuilder()
        .add_system_prompt("be brief")
        .add_context("earlier answer")
        .add_user_message("question")
        .build()
    )
    assert [m["role"] for m in messages] == ["system", "assistant", "user"]
    assert messages[-1]["content"] == "question"


def test_message_builder_skips_empty_parts():
    messages = MessageBuilder().add_system_prompt(None).add_context("").add_user_message("hi").build()
    assert messages == [{"role": "user", "content": "hi"}]


def test_build_sampling_params_only_includes_set_values():
    options = TextGenerationOptions(model="m", temperature=0.2, extra={"seed": 7})
    assert build_sampling_params(options) == {"temperature": 0.2, "seed": 7}


def test_system_with_context_folds_previous_answer_into_system_text():
    assert system_with_context(None, None) is None
    assert system_with_context("be brief", None) == "be brief"
    combined = system_with_context("be brief", "Paris.")
    assert combined.startswith("be brief\n\n")
    assert combined.endswith("Paris.")
