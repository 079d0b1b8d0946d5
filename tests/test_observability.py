from __future__ import annotations

import json
import logging

import httpx
import pytest
from prometheus_client import REGISTRY

from ossclient.common.logging import JsonFormatter, mask_headers, setup_logging
from ossclient.infra.http.cancel import CancelToken
from ossclient.infra.http.executor import RequestExecutor
from ossclient.infra.http.transport import HttpxTransport


@pytest.fixture
def executor():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, headers={"x-oss-request-id": "rid-404"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RequestExecutor(HttpxTransport(client=client))


@pytest.fixture
def restore_logger():
    logger = logging.getLogger("ossclient")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def test_mask_headers():
    masked = mask_headers(
        {"Authorization": "OSS ak:sig", "x-oss-security-token": "tok", "Content-Type": "text/plain"}
    )
    assert masked == {
        "Authorization": "***",
        "x-oss-security-token": "***",
        "Content-Type": "text/plain",
    }


def test_json_formatter_includes_extra():
    record = logging.LogRecord("ossclient.http", logging.INFO, __file__, 1, "hello %s", ("x",), None)
    record.extra = {"status": 200, "request_id": "rid"}

    payload = json.loads(JsonFormatter().format(record))

    assert payload == {
        "level": "INFO",
        "logger": "ossclient.http",
        "message": "hello x",
        "status": 200,
        "request_id": "rid",
    }


def test_setup_logging_configures_package_logger(restore_logger):
    setup_logging("debug")

    assert restore_logger.level == logging.DEBUG
    assert restore_logger.propagate is False
    assert isinstance(restore_logger.handlers[0].formatter, JsonFormatter)


def test_setup_logging_defaults_to_settings_level(restore_logger, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "warning")

    setup_logging()

    assert restore_logger.level == logging.WARNING


@pytest.mark.asyncio
async def test_request_log_and_masked_headers(executor, caplog):
    with caplog.at_level(logging.DEBUG, logger="ossclient.http"):
        await executor.send(
            method="HEAD",
            url="https://examplebucket.oss-cn-hangzhou.aliyuncs.com/k",
            headers={"Authorization": "OSS ak:sig"},
            cancel_token=CancelToken(),
        )

    debug = [rec for rec in caplog.records if rec.levelno == logging.DEBUG]
    assert debug and debug[0].extra["headers"]["Authorization"] == "***"

    # 4xx 以 WARNING 记录，并带上服务端 request id
    warnings = [rec for rec in caplog.records if rec.levelno == logging.WARNING]
    assert warnings
    rec = warnings[-1]
    assert rec.extra["status"] == 404
    assert rec.extra["request_id"] == "rid-404"
    assert rec.extra["host"] == "examplebucket.oss-cn-hangzhou.aliyuncs.com"


@pytest.mark.asyncio
async def test_latency_metric_present(executor):
    await executor.send(
        method="HEAD",
        url="https://examplebucket.oss-cn-hangzhou.aliyuncs.com/k",
        headers={},
        cancel_token=CancelToken(),
    )
    count = REGISTRY.get_sample_value(
        "oss_client_request_duration_seconds_count", {"method": "HEAD"}
    )
    assert count is not None and count >= 1
    assert REGISTRY.get_sample_value("oss_client_requests_in_flight") == 0
