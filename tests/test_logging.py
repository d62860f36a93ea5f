"""
Tests for dealnet/utils/logging.py - JSON formatter and correlation IDs.
"""
import json
import logging

from dealnet.utils.logging import (
    StructuredJsonFormatter,
    configure_structured_logging,
    generate_correlation_id,
    get_correlation_id,
    scrub_secrets,
    set_correlation_id,
)


def _record(msg="hello %s", args=("world",), **extra):
    record = logging.LogRecord("dealnet.test", logging.WARNING, __file__, 1, msg, args, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


class TestFormatter:
    def test_single_line_json(self):
        set_correlation_id("cid-1")
        line = StructuredJsonFormatter().format(_record())
        entry = json.loads(line)
        assert "\n" not in line
        assert entry["message"] == "hello world"
        assert entry["level"] == "WARNING"
        assert entry["module"] == "dealnet.test"
        assert entry["correlation_id"] == "cid-1"

    def test_structured_extras_included(self):
        entry = json.loads(StructuredJsonFormatter().format(
            _record(partner_key="acme", rule="token_invalid", action="warn", unrelated="x")
        ))
        assert entry["partner_key"] == "acme"
        assert entry["rule"] == "token_invalid"
        assert entry["action"] == "warn"
        assert "unrelated" not in entry


class TestCorrelationId:
    def test_generate_is_hex32(self):
        cid = generate_correlation_id()
        assert len(cid) == 32
        int(cid, 16)

    def test_set_and_get(self):
        set_correlation_id("xyz")
        assert get_correlation_id() == "xyz"


class TestConfigure:
    def test_installs_single_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_structured_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, StructuredJsonFormatter)
            assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestScrubSecrets:
    def test_masks_token_query_param(self):
        text = "GET /api/partners/acme/v1/deals?limit=5&token=acme-secret HTTP/1.1"
        scrubbed = scrub_secrets(text)
        assert "acme-secret" not in scrubbed
        assert "&token=[redacted]" in scrubbed
        assert "limit=5" in scrubbed

    def test_leaves_other_text_alone(self):
        assert scrub_secrets("tokens issued: 3") == "tokens issued: 3"

    def test_formatter_scrubs_message(self):
        entry = json.loads(StructuredJsonFormatter().format(
            _record(msg="calling %s", args=("/deals?token=abc",))
        ))
        assert entry["message"] == "calling /deals?token=[redacted]"


class TestSiteKey:
    def test_process_default_applied(self):
        entry = json.loads(StructuredJsonFormatter(site_key="trendsinusa").format(_record()))
        assert entry["site_key"] == "trendsinusa"

    def test_record_value_wins(self):
        entry = json.loads(StructuredJsonFormatter(site_key="trendsinusa").format(
            _record(site_key="othersite")
        ))
        assert entry["site_key"] == "othersite"
