import os
from dataclasses import dataclass

import pytest

from appframework.config import TemplateConfig
from appframework.template import TemplateError, Templater


def make_tree(root):
    res = root / "res-req"
    (res / "sub").mkdir(parents=True)
    (res / "a.yaml").write_text("name: [[ name ]]\n")
    (res / "sub" / "b.yml").write_text("ns: [[ namespace ]]\n")
    (res / "notes.txt").write_text("[[ untouched ]]\n")
    return res


DATA = {"name": "demo", "namespace": "app"}


def test_run_renders_yaml_files_in_name_order(tmp_path):
    make_tree(tmp_path)
    templater = Templater(DATA, "app", str(tmp_path), "res-req", None)
    assert templater.run("---\n") == "---\nname: demo\n---\nns: app\n"


def test_run_rewrites_working_copy_and_keeps_source(tmp_path):
    res = make_tree(tmp_path)
    templater = Templater(DATA, "app", str(tmp_path), "res-req", TemplateConfig())
    templater.run("")
    generated = tmp_path / "res-req-generated"
    assert templater.work_dir == str(generated)
    assert (generated / "a.yaml").read_text() == "name: demo\n"
    assert (generated / "notes.txt").read_text() == "[[ untouched ]]\n"
    assert (res / "a.yaml").read_text() == "name: [[ name ]]\n"


def test_stale_working_copy_is_replaced(tmp_path):
    make_tree(tmp_path)
    stale = tmp_path / "res-req-generated"
    stale.mkdir()
    (stale / "old.yaml").write_text("old: true\n")
    templater = Templater(DATA, "app", str(tmp_path), "res-req", None)
    assert templater.work_dir == str(stale)
    assert templater.run("") == "name: demo\nns: app\n"
    assert not os.path.exists(stale / "old.yaml")
    assert os.path.exists(stale / "a.yaml")


def test_missing_value_raises(tmp_path):
    res = tmp_path / "app"
    res.mkdir()
    (res / "x.yaml").write_text("v: [[ missing ]]\n")
    templater = Templater({}, "app", str(tmp_path), "app", None)
    with pytest.raises(TemplateError):
        templater.run("")


def test_custom_delimiters(tmp_path):
    res = tmp_path / "app"
    res.mkdir()
    (res / "x.yaml").write_text("v: << name >> [[ kept ]]\n")
    templater = Templater(DATA, "app", str(tmp_path), "app", TemplateConfig("<<", ">>"))
    assert templater.run("") == "v: demo [[ kept ]]\n"


def test_statements_and_dataclass_data(tmp_path):
    @dataclass
    class Spec:
        app_network: str
        enabled: bool

    res = tmp_path / "app"
    res.mkdir()
    (res / "x.yaml").write_text("net: [[ app_network ]][[% if enabled %]] on[[% endif %]]\n")
    templater = Templater(Spec("lan", True), "app", str(tmp_path), "app", None)
    assert templater.run("") == "net: lan on\n"


def test_empty_deployment_dir_rejected():
    with pytest.raises(ValueError):
        Templater(DATA, "app", "", "res-req", None)


def test_missing_source_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        Templater(DATA, "app", str(tmp_path), "absent", None)