import json
import logging

from observability.logging import ConsoleFormatter, JSONFormatter, bind_logger, setup_logging


def make_record(**extra):
    record = logging.LogRecord("pipelines.worker", logging.WARNING, __file__, 10, "Rejected: %s", ("bad",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_merges_context():
    entry = json.loads(JSONFormatter("crawlsearch-indexer").format(make_record(source_key="crawler:doc:1")))
    assert entry["service"] == "crawlsearch-indexer"
    assert entry["level"] == "WARNING"
    assert entry["message"] == "Rejected: bad"
    assert entry["source_key"] == "crawler:doc:1"
    assert "lineno" not in entry


def test_console_formatter_appends_context():
    line = ConsoleFormatter(use_colors=False).format(make_record(url="https://e.com/", source_key="k"))
    assert "WARNING" in line
    assert line.endswith("Rejected: bad [source_key=k url=https://e.com/]")


def test_bound_logger_adds_context(caplog):
    log = bind_logger(logging.getLogger("tests.bound"), source_key="crawler:doc:9")
    with caplog.at_level(logging.INFO, logger="tests.bound"):
        log.bind(url="https://e.com/").info("Indexed")
    (record,) = caplog.records
    assert record.source_key == "crawler:doc:9"
    assert record.url == "https://e.com/"


def test_setup_logging_json_file(tmp_path):
    log_file = tmp_path / "logs" / "indexer.jsonl"
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        setup_logging(level="debug", service_name="crawlsearch-test", log_file=str(log_file))
        logging.getLogger("tests.file").info("hello", extra={"document_id": "abc"})
        for handler in root.handlers:
            handler.flush()
        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["message"] == "hello"
        assert entry["document_id"] == "abc"
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
