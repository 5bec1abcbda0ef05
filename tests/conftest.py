"""Shared pytest fixtures for xcgen tests."""

import os
import stat

import pytest

from xcgen.bazel.query import parse_query_xml
from xcgen.testing import FakeQueryRunner

# Workspace used across tests:
#   //app        App (ios_application), Lib (objc_library), AppTests (ios_test -> App)
#   //tests      all_tests (suite: AppTests + nested), nested (suite: UITests)
#   //tests/ui   UITests (ios_test, test_host -> App)
SAMPLE_QUERY_XML = """<?xml version="1.1" encoding="UTF-8" standalone="no"?>
<query version="2">
  <rule class="ios_application" location="/ws/app/BUILD:1:1" name="//app:App">
    <list name="tags"/>
  </rule>
  <rule class="objc_library" location="/ws/app/BUILD:8:1" name="//app:Lib"/>
  <rule class="ios_test" location="/ws/app/BUILD:12:1" name="//app:AppTests">
    <label name="xctest_app" value="//app:App"/>
    <list name="tags">
      <string value="unit"/>
    </list>
  </rule>
  <rule class="ios_test" location="/ws/tests/ui/BUILD:1:1" name="//tests/ui:UITests">
    <label name="test_host" value="//app:App"/>
  </rule>
  <rule class="test_suite" location="/ws/tests/BUILD:1:1" name="//tests:all_tests">
    <list name="tests">
      <label value="//app:AppTests"/>
      <label value="//tests:nested"/>
    </list>
  </rule>
  <rule class="test_suite" location="/ws/tests/BUILD:9:1" name="//tests:nested">
    <list name="tests">
      <label value="//tests/ui:UITests"/>
    </list>
  </rule>
</query>
"""


@pytest.fixture
def query_xml():
    return SAMPLE_QUERY_XML


@pytest.fixture
def sample_entries():
    return parse_query_xml(SAMPLE_QUERY_XML)


@pytest.fixture
def fake_runner():
    return FakeQueryRunner(xml=SAMPLE_QUERY_XML)


@pytest.fixture
def workspace(tmp_path):
    """A directory with a WORKSPACE file and a couple of BUILD packages."""
    root = tmp_path / "ws"
    (root / "app").mkdir(parents=True)
    (root / "tests" / "ui").mkdir(parents=True)
    (root / "WORKSPACE").write_text("")
    (root / "app" / "BUILD").write_text("")
    (root / "tests" / "BUILD").write_text("")
    (root / "tests" / "ui" / "BUILD.bazel").write_text("")
    return root


@pytest.fixture
def bazel_binary(tmp_path):
    """An executable placeholder standing in for the bazel binary."""
    path = tmp_path / "bin" / "bazel"
    path.parent.mkdir()
    path.write_text("#!/bin/sh\nexit 0\n")
    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path
