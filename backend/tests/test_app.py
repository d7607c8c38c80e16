# Overview: Pytest coverage for the app factory, error mapping and CLI commands.

import logging

import pytest

from posengine import create_app
from posengine.engine import Engine, get_engine
from posengine.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from posengine.models import Location, PaymentMethod, StockLevel, ZReport


@pytest.fixture
def bare_app():
    """Fresh app for routes registered by the test itself."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'POS_VARIANCE_THRESHOLD_CENTS': 250,
        'POS_MAX_DISCOUNT_PCT': 20,
    })

    def _raise(exc):
        def view():
            raise exc
        return view

    app.add_url_rule('/bad-input', 'bad_input', _raise(ValidationError("insufficient payment", {"paid_cents": 10})))
    app.add_url_rule('/stale', 'stale', _raise(ConflictError("Cannot move sale from VOIDED to VOIDED")))
    app.add_url_rule('/missing', 'missing', _raise(NotFoundError("Sale", {"sale_id": 3})))
    app.add_url_rule('/manager', 'manager', _raise(ForbiddenError("Manager approval is required to void a sale")))
    app.add_url_rule('/boom', 'boom', _raise(RuntimeError("driver exploded")))
    return app


class TestAppFactory:
    def test_engine_is_registered(self, app):
        with app.app_context():
            engine = get_engine()
        assert isinstance(engine, Engine)
        assert engine.shifts.variance_threshold_cents == 500
        assert engine.sales.max_discount_pct == 10

    def test_config_overrides_reach_engine(self, bare_app):
        engine = bare_app.extensions["posengine"]
        assert engine.shifts.variance_threshold_cents == 250
        assert engine.sales.max_discount_pct == 20

    def test_log_level_from_config(self):
        logger = logging.getLogger("posengine")
        previous = logger.level
        try:
            create_app({'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:', 'LOG_LEVEL': 'debug'})
            assert logger.level == logging.DEBUG
        finally:
            logger.setLevel(previous)


class TestErrorMapping:
    def test_validation_error_is_400(self, bare_app):
        response = bare_app.test_client().get('/bad-input')
        assert response.status_code == 400
        assert response.get_json() == {"error": "insufficient payment", "details": {"paid_cents": 10}}

    def test_conflict_error_is_409(self, bare_app):
        response = bare_app.test_client().get('/stale')
        assert response.status_code == 409
        assert "VOIDED" in response.get_json()["error"]

    def test_not_found_is_404(self, bare_app):
        response = bare_app.test_client().get('/missing')
        assert response.status_code == 404
        assert response.get_json()["error"] == "Sale not found"

    def test_forbidden_is_403(self, bare_app):
        assert bare_app.test_client().get('/manager').status_code == 403

    def test_unexpected_error_is_500(self, bare_app):
        response = bare_app.test_client().get('/boom')
        assert response.status_code == 500
        assert response.get_json() == {"error": "Internal server error"}

    def test_http_errors_pass_through(self, bare_app):
        response = bare_app.test_client().get('/no-such-route')
        assert response.status_code == 404


class TestCli:
    def test_system_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['system', 'init'])
        assert result.exit_code == 0, result.output
        assert "Created location: MAIN" in result.output

        result = runner.invoke(args=['system', 'init'])
        assert result.exit_code == 0, result.output
        assert "Using existing location: MAIN" in result.output

        assert db_session.query(Location).count() == 1
        assert db_session.query(PaymentMethod).count() == 3

    def test_stock_commands(self, app, db_session, location, second_location, variant):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            'stock', 'receive', '--location-id', str(location.id), '--variant-id', str(variant.id),
            '--quantity', '12', '--actor-id', '1',
        ])
        assert result.exit_code == 0, result.output
        assert "on hand: 12" in result.output

        result = runner.invoke(args=[
            'stock', 'adjust', '--location-id', str(location.id), '--variant-id', str(variant.id),
            '--delta', '-20', '--reason', 'COUNT', '--actor-id', '1',
        ])
        assert result.exit_code != 0
        assert "negative inventory" in result.output

        result = runner.invoke(args=[
            'stock', 'transfer', '--from-location-id', str(location.id),
            '--to-location-id', str(second_location.id), '--variant-id', str(variant.id),
            '--quantity', '5', '--actor-id', '1',
        ])
        assert result.exit_code == 0, result.output

        level = db_session.query(StockLevel).filter_by(location_id=second_location.id).one()
        assert level.quantity_on_hand == 5

        result = runner.invoke(args=['stock', 'low-stock', '--location-id', str(location.id)])
        assert f"variant {variant.id}: available 7" in result.output

    def test_zreport_generate(self, app, db_session, location):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['zreport', 'generate', '--location-id', str(location.id), '--date', '2024-01-15'])
        assert result.exit_code == 0, result.output
        assert "Z-MAIN-20240115" in result.output
        assert db_session.query(ZReport).count() == 1

        result = runner.invoke(args=['zreport', 'generate', '--location-id', str(location.id), '--date', '2024-01-15'])
        assert result.exit_code != 0
        assert "already generated" in result.output

    def test_outbox_dispatch(self, app, db_session, engine):
        engine.outbox.publish_event("sale-completed", {"sale_id": 1}, location_id=1)

        result = app.test_cli_runner().invoke(args=['outbox', 'dispatch'])
        assert result.exit_code == 0, result.output
        assert "delivered 1" in result.output
