import json

import pytest

from components.request_source import count_requests, iter_requests, request_producer


def test_txt_source_skips_blanks_and_comments(tmp_path):
    src = tmp_path / "urls.txt"
    src.write_text("# seed list\nhttp://a.test/1\n\n  /relative  \n", encoding="utf-8")
    assert list(iter_requests(src)) == ["http://a.test/1", "/relative"]


def test_csv_source_maps_columns(tmp_path):
    src = tmp_path / "urls.csv"
    src.write_text(
        "uri,method,category,note\n"
        "http://a.test/1,post,books,\n"
        ",GET,empty,\n"
        "http://a.test/2,,music,x\n",
        encoding="utf-8",
    )
    assert list(iter_requests(src)) == [
        {"uri": "http://a.test/1", "method": "POST", "category": "books"},
        {"uri": "http://a.test/2", "category": "music", "note": "x"},
    ]


def test_csv_source_requires_uri_column(tmp_path):
    src = tmp_path / "bad.csv"
    src.write_text("url\nhttp://a.test/\n", encoding="utf-8")
    with pytest.raises(ValueError):
        list(iter_requests(src))


def test_jsonl_source(tmp_path, caplog):
    src = tmp_path / "reqs.jsonl"
    lines = [
        json.dumps("http://a.test/1"),
        json.dumps({"uri": "http://a.test/2", "method": "POST", "json": {"q": 1}}),
        "{not json",
        json.dumps(5),
        "",
    ]
    src.write_text("\n".join(lines), encoding="utf-8")
    assert list(iter_requests(src)) == [
        "http://a.test/1",
        {"uri": "http://a.test/2", "method": "POST", "json": {"q": 1}},
    ]
    assert "invalid JSON" in caplog.text


def test_unsupported_extension(tmp_path):
    src = tmp_path / "urls.xml"
    src.write_text("<urls/>", encoding="utf-8")
    with pytest.raises(ValueError):
        list(iter_requests(src))


def test_producer_is_restartable_and_limited(tmp_path):
    src = tmp_path / "urls.txt"
    src.write_text("\n".join(f"http://a.test/{i}" for i in range(5)), encoding="utf-8")

    produce = request_producer(src, limit=3)
    assert list(produce()) == ["http://a.test/0", "http://a.test/1", "http://a.test/2"]
    assert list(produce()) == ["http://a.test/0", "http://a.test/1", "http://a.test/2"]
    assert count_requests(src) == 5
    assert count_requests(src, limit=2) == 2
