import server


class _DummyUvicorn:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def run(self, app, **kwargs) -> None:
        self.calls.append({"app": app, **kwargs})


def test_main_serves_app_with_local_defaults(monkeypatch) -> None:
    dummy_uvicorn = _DummyUvicorn()
    app = object()
    monkeypatch.setattr(server, "create_app", lambda: app)
    monkeypatch.setattr(server, "uvicorn", dummy_uvicorn)
    monkeypatch.delenv("HOST", raising=False)
    monkeypatch.delenv("PORT", raising=False)

    server.main()

    assert dummy_uvicorn.calls == [{"app": app, "host": "127.0.0.1", "port": 3000}]


def test_main_reads_host_and_port_from_env(monkeypatch) -> None:
    dummy_uvicorn = _DummyUvicorn()
    app = object()
    monkeypatch.setattr(server, "create_app", lambda: app)
    monkeypatch.setattr(server, "uvicorn", dummy_uvicorn)
    monkeypatch.setenv("HOST", "0.0.0.0")
    monkeypatch.setenv("PORT", "9100")

    server.main()

    assert dummy_uvicorn.calls == [{"app": app, "host": "0.0.0.0", "port": 9100}]


def test_create_app_reads_settings_from_env(monkeypatch, bridge_env) -> None:
    monkeypatch.setattr(server, "load_env", lambda: None)
    monkeypatch.setenv("BRIDGE_DEBUG", "false")

    app = server.create_app()

    assert app.state.flow.client_id == "patreon-client"
    assert app.state.flow.redirect_uri == "https://bridge.example.com/callback"
    assert app.state.session_store.name == "memory"
