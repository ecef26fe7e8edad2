from scheduling import main
from scheduling.core import config
from scheduling.main import app, root


def test_root_reports_status() -> None:
    assert root() == {'status': 'Scheduling API Running'}


def test_app_mounts_scheduling_routes() -> None:
    paths = app.openapi()['paths']

    assert {'post', 'get'} <= set(paths['/availability/slots'])
    assert 'patch' in paths['/availability/slots/{availability_id}']
    assert {'post', 'get'} <= set(paths['/bookings'])
    assert 'post' in paths['/bookings/{booking_id}/cancel']
    assert 'post' in paths['/bookings/{booking_id}/reschedule']


def test_run_serves_app_with_configured_address(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(main.uvicorn, 'run', lambda *args, **kwargs: calls.append((args, kwargs)))

    main.run()

    assert calls == [(('scheduling.main:app',), {'host': config.API_HOST, 'port': config.API_PORT})]
