# SPDX-License-Identifier: MIT

import hashlib

import pandas as pd
import pytest

from drainminer.log_parser import LogParser, get_parameter_list, template_id
from drainminer.template_miner_config import TemplateMinerConfig

LOG_FORMAT = "<Date> <Time> <Level> <Content>"

LOG_LINES = [
    "2020-01-01 10:00:00 INFO user 1 login",
    "2020-01-01 10:00:01 INFO user 2 login",
    "garbage",
    "2020-01-01 10:00:02 WARN disk full on sda",
]


@pytest.fixture
def log_dir(tmp_path):
    (tmp_path / "test.log").write_text("\n".join(LOG_LINES) + "\n")
    return tmp_path


def test_template_id_is_short_md5():
    assert template_id("user <*> login") == hashlib.md5(b"user <*> login").hexdigest()[:8]
    assert len(template_id("")) == 8


def test_generate_logformat_regex():
    parser = LogParser(LOG_FORMAT)
    headers, regex = parser.generate_logformat_regex(LOG_FORMAT)

    assert headers == ["Date", "Time", "Level", "Content"]
    match = regex.search("2020-01-01  10:00:00 INFO hello big world")
    assert match.group("Level") == "INFO"
    assert match.group("Content") == "hello big world"
    assert regex.search("garbage") is None


def test_parse_enriches_every_line(log_dir):
    parser = LogParser(LOG_FORMAT, indir=str(log_dir), outdir=str(log_dir / "out"), st=0.5)
    df_log = parser.parse("test.log")

    assert list(df_log["LineId"]) == [1, 2, 3]
    assert list(df_log["Level"]) == ["INFO", "INFO", "WARN"]
    assert list(df_log["EventTemplate"]) == ["user <*> login", "user <*> login", "disk full on sda"]
    assert list(df_log["EventId"]) == [template_id("user <*> login")] * 2 + [template_id("disk full on sda")]
    assert list(df_log["ParameterList"]) == [["1"], ["2"], []]
    assert len(parser.drain.clusters) == 2


def test_parse_writes_structured_and_template_csv(log_dir):
    out_dir = log_dir / "out"
    parser = LogParser(LOG_FORMAT, indir=str(log_dir), outdir=str(out_dir), st=0.5)
    parser.parse("test.log")

    df_structured = pd.read_csv(out_dir / "test.log_structured.csv", dtype=str, keep_default_na=False)
    assert list(df_structured.columns) == ["LineId", "EventId", "EventTemplate", "Content", "ParameterList",
                                           "Date", "Time", "Level"]
    assert list(df_structured["ParameterList"]) == ["1", "2", ""]

    df_templates = pd.read_csv(out_dir / "test.log_templates.csv", dtype={"EventId": str})
    assert list(df_templates.columns) == ["EventId", "EventTemplate", "Occurrences"]
    assert list(df_templates["EventTemplate"]) == ["user <*> login", "disk full on sda"]
    assert list(df_templates["Occurrences"]) == [2, 1]


def test_reload_results(log_dir):
    parser = LogParser(LOG_FORMAT, indir=str(log_dir), outdir=str(log_dir / "out"), st=0.5)
    parser.parse("test.log")

    df_reloaded = parser.reload_results("test.log")
    assert list(df_reloaded["LineId"]) == [1, 2, 3]
    assert list(df_reloaded["ParameterList"]) == [["1"], ["2"], []]
    assert list(df_reloaded["Content"]) == ["user 1 login", "user 2 login", "disk full on sda"]
    assert list(df_reloaded["Time"]) == ["10:00:00", "10:00:01", "10:00:02"]


def test_reload_missing_results(tmp_path):
    parser = LogParser(LOG_FORMAT, outdir=str(tmp_path))
    with pytest.raises(FileNotFoundError):
        parser.reload_results("never_parsed.log")


def test_parse_without_saving(log_dir):
    out_dir = log_dir / "out"
    parser = LogParser(LOG_FORMAT, indir=str(log_dir), outdir=str(out_dir), keep_para=False)
    df_log = parser.parse("test.log", auto_save=False)

    assert not out_dir.exists()
    assert list(df_log["ParameterList"]) == [[], [], []]


def test_rex_masking_before_clustering(log_dir):
    parser = LogParser(LOG_FORMAT, indir=str(log_dir), outdir=str(log_dir / "out"), st=0.5, rex=[r"\d+"])
    df_log = parser.parse("test.log", auto_save=False)

    first = parser.drain.clusters[0]
    assert first.log_template_tokens == ("user", "<*>", "login")
    assert first.log_ids == [1, 2]
    # parameters are read from the raw content, not the masked one
    assert list(df_log["ParameterList"]) == [["1"], ["2"], []]


def test_protected_patterns_split_events(tmp_path):
    (tmp_path / "err.log").write_text("start ERR1 done\nstart ERR2 done\nstart ERR1 done\n")
    parser = LogParser("<Content>", indir=str(tmp_path), outdir=str(tmp_path / "out"), st=0.5,
                       protected_patterns=[r"^ERR\d+$"])
    df_log = parser.parse("err.log", auto_save=False)

    assert list(df_log["EventTemplate"]) == ["start ERR1 done", "start ERR2 done", "start ERR1 done"]
    assert [c.log_ids for c in parser.drain.clusters] == [[1, 3], [2]]


def test_repeated_runs_do_not_leak_state(log_dir):
    parser = LogParser(LOG_FORMAT, indir=str(log_dir), outdir=str(log_dir / "out"), st=0.5)
    first = parser.parse("test.log", auto_save=False).copy()
    second = parser.parse("test.log", auto_save=False)

    assert len(parser.drain.clusters) == 2
    assert list(first["EventTemplate"]) == list(second["EventTemplate"])


def test_empty_log(tmp_path):
    (tmp_path / "empty.log").write_text("")
    parser = LogParser(LOG_FORMAT, indir=str(tmp_path), outdir=str(tmp_path / "out"))
    df_log = parser.parse("empty.log")

    assert len(df_log) == 0
    assert (tmp_path / "out" / "empty.log_structured.csv").exists()


@pytest.mark.parametrize("template, content, expected", [
    ("user <*> login", "user 7 login", ["7"]),
    ("id=<*> done <*>", "id=42 done now", ["42", "now"]),
    ("user <*> login", "user 7 login again", []),
    ("", "user 7 login", []),
    ("user <*> login", "", []),
    ("static line", "static line", []),
])
def test_get_parameter_list(template, content, expected):
    assert get_parameter_list(template, content) == expected


def test_parameters_follow_extra_delimiters(tmp_path):
    (tmp_path / "kv.log").write_text("key=1 done\nkey=2 done\n")
    config = TemplateMinerConfig()
    config.drain_sim_th = 0.5
    config.drain_extra_delimiters = ["="]
    parser = LogParser("<Content>", indir=str(tmp_path), outdir=str(tmp_path / "out"), config=config)
    df_log = parser.parse("kv.log", auto_save=False)

    assert list(df_log["EventTemplate"]) == ["key <*> done", "key <*> done"]
    assert list(df_log["ParameterList"]) == [["1"], ["2"]]


def test_get_parameter_list_with_extra_delimiters():
    assert get_parameter_list("key <*> done", "key=7 done", extra_delimiters=["="]) == ["7"]
    assert get_parameter_list("key <*> done", "key=7 done") == []


def test_parser_leaves_config_log_format_alone():
    config = TemplateMinerConfig()
    parser = LogParser("<Date> <Content>", config=config)

    assert parser.log_format == "<Date> <Content>"
    assert config.log_format == "<Content>"
