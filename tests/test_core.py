"""Tests for configuration validation, log redaction and database setup."""

import pytest
from sqlalchemy import func, select

from creem_sync.core.config import Settings, validate_webhook_secret
from creem_sync.core.exceptions import ConfigurationError
from creem_sync.core.logging import redact_sensitive
from creem_sync.db.base import close_db, get_session_factory, init_db
from creem_sync.db.models import Customer

pytestmark = pytest.mark.unit


class TestValidateWebhookSecret:
    def test_missing_secret_fails_in_production(self):
        with pytest.raises(ConfigurationError, match="CREEM_WEBHOOK_SECRET"):
            validate_webhook_secret(Settings(debug=False, creem_webhook_secret=""))

    def test_present_secret_passes(self):
        validate_webhook_secret(Settings(debug=False, creem_webhook_secret="whsec_live"))

    def test_debug_mode_skips_check(self):
        validate_webhook_secret(Settings(debug=True, creem_webhook_secret=""))

    def test_secret_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("CREEM_WEBHOOK_SECRET", "whsec_from_env")

        assert Settings().creem_webhook_secret == "whsec_from_env"


class TestRedactSensitive:
    def test_secrets_and_signatures_are_masked(self):
        event = redact_sensitive(None, "info", {"event": "x", "signature": "abc", "secret": "whsec_1", "event_id": "e"})

        assert event["signature"] == "[redacted]"
        assert event["secret"] == "[redacted]"
        assert event["event_id"] == "e"


@pytest.mark.integration
class TestInitDb:
    async def test_init_creates_schema_and_close_resets(self, tmp_path):
        await init_db(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
        try:
            async with get_session_factory()() as session:
                count = (await session.execute(select(func.count()).select_from(Customer))).scalar_one()
            assert count == 0
        finally:
            await close_db()

        with pytest.raises(RuntimeError, match="init_db"):
            get_session_factory()
