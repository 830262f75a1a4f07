import logging

from helpdesk.core.config import Settings
from helpdesk.core.logging import configure_logging, init_tracer, parse_otlp_headers, shutdown_tracer


def test_parse_otlp_headers_skips_malformed_items():
    headers = parse_otlp_headers("authorization=Bearer abc, x-team = ops ,broken,=empty")

    assert headers == {"authorization": "Bearer abc", "x-team": "ops"}
    assert parse_otlp_headers(None) == {}


def test_configure_logging_returns_service_logger():
    logger = configure_logging(Settings(log_level="debug"))

    assert logger.name == "helpdesk"
    assert logger.level == logging.DEBUG
    assert logging.getLogger("asyncpg").level == logging.WARNING


def test_tracer_disabled_by_default():
    provider = init_tracer(Settings(otel_enabled=False))

    assert provider is None
    shutdown_tracer(provider)
