from unittest.mock import patch

from learnstudio.main import run


def test_run_serves_app_with_uvicorn(monkeypatch):
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "9100")

    with patch("uvicorn.run") as mock_run:
        run()

    mock_run.assert_called_once()
    args, kwargs = mock_run.call_args
    assert args[0] == "learnstudio.main:app"
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 9100
    assert kwargs["reload"] is False
