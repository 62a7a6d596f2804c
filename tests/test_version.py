from brokkr.version import VERSION, version_string


def test_release_default():
    assert version_string() == "1.3.10-rel"


def test_debug_includes_commit_count():
    assert version_string(commit_count="5", debug=True) == f"{VERSION}-dbg+5"


def test_release_ignores_commit_count():
    assert version_string("rel", "42", False) == version_string()


def test_explicit_build_type_used():
    result = version_string(build_type="custom")
    assert result.startswith(VERSION + "-")
    assert result.endswith("custom")
    assert "+" not in result