import pytest

from blueberry import fmt


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path, monkeypatch):
    """Point HOME and XDG_CONFIG_HOME into tmp_path so no test touches ~/.bb-history."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    fmt.init(color=False, no_color=True)
    return home
