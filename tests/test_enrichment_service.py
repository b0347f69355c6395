"""Tests for enrichment dispatch and webhook reconciliation services."""
from urllib.parse import parse_qs, urlparse

import pytest

from prospector.config import settings
from prospector.core.exceptions import ConfigurationError, PersistenceError, ProspectorException, ValidationError
from prospector.models import LeadRecord
from prospector.repositories.enrichment_log_repo import EnrichmentLogRepository
from prospector.repositories.lead_repo import LeadRepository
from prospector.schemas.enrichment import RevealPreferences
from prospector.services.enrichment_service import EnrichmentService, build_webhook_url, parse_enrich_request
from prospector.services.webhook_service import WebhookService, webhook_preferences

from conftest import InMemoryRecordStore, fetch_logs, make_apollo

TARGET_COLUMNS = {
    "id", "first_name", "last_name", "title", "email", "email_status",
    "primary_phone", "phone_numbers", "enrichment_status", "updated_at",
}

APOLLO_PERSON = {
    "id": "apollo-1",
    "first_name": "Ada",
    "last_name": "Lovelace",
    "title": "CTO",
    "city": "London",
    "email": "ada@acme.com",
    "phone_numbers": [{"type": "mobile", "sanitized_number": "+15550001"}],
}


def target_store(**kwargs):
    return InMemoryRecordStore(TARGET_COLUMNS, rows={"rec-1": {"id": "rec-1"}}, **kwargs)


class FlushFailingStore(InMemoryRecordStore):
    """Leaves the shared session needing a rollback, as a failed flush does."""

    def __init__(self, session):
        super().__init__(TARGET_COLUMNS, rows={"rec-1": {"id": "rec-1"}})
        self.session = session

    async def exists(self, table_name, record_id):
        self.session.add(LeadRecord(id="dup", batch_run_id="b2"))
        await self.session.flush()
        return True


class TestParseEnrichRequest:

    def test_defaults_table_name(self):
        record_id, table_name, lead = parse_enrich_request({"record_id": " rec-1 ", "lead": {"first_name": "A"}})
        assert record_id == "rec-1"
        assert table_name == settings.DEFAULT_TARGET_TABLE
        assert lead == {"first_name": "A"}

    @pytest.mark.parametrize("body", [
        {},
        {"record_id": "rec-1"},
        {"lead": {"first_name": "A"}},
        {"record_id": "rec-1", "lead": {}},
        {"record_id": "rec-1", "lead": "Ada"},
    ])
    def test_missing_fields(self, body):
        with pytest.raises(ValidationError):
            parse_enrich_request(body)

    @pytest.mark.parametrize("table_name", ["people_search_leads", "search_progress", "public.enrichment_logs", "PEOPLE_SEARCH_LEADS"])
    def test_service_tables_rejected(self, table_name):
        with pytest.raises(ValidationError) as exc_info:
            parse_enrich_request({"record_id": "lead-1", "table_name": table_name, "lead": {"apollo_id": "a1"}})
        assert exc_info.value.status_code == 400


def test_webhook_url_carries_context(monkeypatch):
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://prospector.example.com/")
    url = build_webhook_url("rec-1", "my_leads", RevealPreferences(reveal_email=True, reveal_phone=False))
    parsed = urlparse(url)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://prospector.example.com/api/apollo-webhook"
    assert parse_qs(parsed.query) == {
        "record_id": ["rec-1"],
        "table_name": ["my_leads"],
        "reveal_email": ["true"],
        "reveal_phone": ["false"],
    }


class TestEnrichmentService:

    async def test_immediate_match_completes(self, apollo, apollo_stub, log_repo):
        apollo_stub.queue("/people/bulk_match", 200, {"matches": [APOLLO_PERSON]})
        store = target_store()
        service = EnrichmentService(apollo, store, log_repo, row_check_delay=0)

        result = await service.enrich({"record_id": "rec-1", "lead": {"apollo_id": "apollo-1"}})

        assert result["success"] is True
        assert result["enrichment_status"] == "completed"
        assert result["data_found"] is True
        assert result["removed_columns"] == ["city"]
        assert store.rows["rec-1"]["email"] == "ada@acme.com"
        assert store.rows["rec-1"]["primary_phone"] == "+15550001"

    async def test_uses_bulk_match_for_known_id(self, apollo, apollo_stub, log_repo):
        service = EnrichmentService(apollo, target_store(), log_repo, row_check_delay=0)
        await service.enrich({"record_id": "rec-1", "lead": {"id": "apollo-9"}})

        call = apollo_stub.calls_to("/people/bulk_match")[0]
        assert call["body"] == {"details": [{"id": "apollo-9"}]}
        assert apollo_stub.calls_to("/people/match") == []

    async def test_no_immediate_person_is_pending(self, apollo, apollo_stub, log_repo):
        store = target_store()
        service = EnrichmentService(apollo, store, log_repo, row_check_delay=0)

        result = await service.enrich({"record_id": "rec-1", "lead": {"first_name": "Ada", "domain": "acme.com"}})

        assert result["enrichment_status"] == "pending"
        assert result["data_found"] is False
        assert store.rows["rec-1"]["enrichment_status"] == "pending"
        assert len(apollo_stub.calls_to("/people/match")) == 1

    async def test_remote_error_marks_failed(self, apollo, apollo_stub, log_repo):
        apollo_stub.queue("/people/match", 500, {"error": "boom"})
        store = target_store()
        service = EnrichmentService(apollo, store, log_repo, row_check_delay=0)

        result = await service.enrich({"record_id": "rec-1", "lead": {"first_name": "Ada"}})

        assert result["success"] is False
        assert result["enrichment_status"] == "failed"
        assert store.rows["rec-1"]["enrichment_status"] == "failed"
        assert log_repo.entries[0]["details"]["error"] == "Apollo API call failed: Apollo API Error (500)"

    async def test_phone_reveal_off_writes_no_phone(self, apollo, apollo_stub, log_repo):
        apollo_stub.queue("/people/bulk_match", 200, {"matches": [APOLLO_PERSON]})
        store = target_store()
        service = EnrichmentService(apollo, store, log_repo, row_check_delay=0)

        result = await service.enrich({
            "record_id": "rec-1",
            "lead": {"apollo_id": "apollo-1"},
            "enrichment_level": "basic",
        })

        assert "primary_phone" not in store.rows["rec-1"]
        assert "phone_numbers" not in result["extracted_data"]
        assert result["requested_reveal"]["phone"] is False
        assert apollo_stub.calls_to("/people/bulk_match")[0]["params"]["reveal_phone_number"] == "false"

    async def test_single_audit_entry(self, apollo, apollo_stub, log_repo):
        apollo_stub.queue("/people/bulk_match", 200, {"matches": [APOLLO_PERSON]})
        service = EnrichmentService(apollo, target_store(), log_repo, row_check_delay=0)

        await service.enrich({"record_id": "rec-1", "lead": {"apollo_id": "apollo-1"}})

        assert len(log_repo.entries) == 1
        details = log_repo.entries[0]["details"]
        assert details["match_method"] == "apollo_id"
        assert details["match_found"] is True
        assert details["email_found"] == "ada@acme.com"
        assert details["phone_count"] == 1
        assert details["db_update_count"] == 1
        assert details["row_check_found"] is True
        assert details["removed_columns"] == ["city"]
        assert details["apollo_data"] == APOLLO_PERSON

    async def test_row_created_late(self, apollo, apollo_stub, log_repo):
        store = target_store(visible_after=2)
        service = EnrichmentService(apollo, store, log_repo, row_check_attempts=3, row_check_delay=0)

        await service.enrich({"record_id": "rec-1", "lead": {"first_name": "Ada"}})

        details = log_repo.entries[0]["details"]
        assert details["row_check_found"] is True
        assert details["row_check_attempts"] == 3

    async def test_update_failure_raises(self, apollo, apollo_stub, log_repo):
        store = InMemoryRecordStore({"id"}, rows={"rec-1": {"id": "rec-1"}})
        service = EnrichmentService(apollo, store, log_repo, row_check_delay=0)

        with pytest.raises(PersistenceError) as exc_info:
            await service.enrich({"record_id": "rec-1", "lead": {"first_name": "Ada"}})

        assert exc_info.value.message.startswith("Database update failed: No valid columns remain")
        assert log_repo.entries[0]["status"] == "failed"

    async def test_missing_api_key(self, apollo_stub, log_repo):
        apollo = make_apollo(apollo_stub, api_key="")
        service = EnrichmentService(apollo, target_store(), log_repo, row_check_delay=0)
        with pytest.raises(ConfigurationError):
            await service.enrich({"record_id": "rec-1", "lead": {"first_name": "Ada"}})
        await apollo.aclose()
        assert apollo_stub.calls == []
        assert log_repo.entries == []

    async def test_unexpected_error_is_logged(self, apollo, apollo_stub, log_repo):
        class ExplodingStore(InMemoryRecordStore):
            async def exists(self, table_name, record_id):
                raise RuntimeError("kaboom")

        service = EnrichmentService(apollo, ExplodingStore(TARGET_COLUMNS), log_repo, row_check_delay=0)
        with pytest.raises(Exception) as exc_info:
            await service.enrich({"record_id": "rec-1", "lead": {"first_name": "Ada"}})

        assert exc_info.value.status_code == 500
        assert log_repo.entries[-1]["status"] == "error"
        assert log_repo.entries[-1]["details"] == {"error": "kaboom"}
        assert log_repo.rollbacks == 1

    async def test_error_after_failed_flush_is_still_logged(self, apollo, db_session, new_session):
        async with new_session() as session:
            await LeadRepository(session).upsert_many([{"id": "dup", "batch_run_id": "b1"}])

        service = EnrichmentService(apollo, FlushFailingStore(db_session), EnrichmentLogRepository(db_session), row_check_delay=0)
        with pytest.raises(ProspectorException) as exc_info:
            await service.enrich({"record_id": "rec-1", "lead": {"first_name": "Ada"}})

        assert exc_info.value.status_code == 500
        logs = await fetch_logs(new_session, "rec-1")
        assert [log.status for log in logs] == ["error"]


class TestWebhookPreferences:

    def test_defaults_on(self):
        prefs = webhook_preferences(None, "garbage")
        assert prefs.reveal_email is True
        assert prefs.reveal_phone is True

    def test_explicit_false(self):
        assert webhook_preferences("true", "false").reveal_phone is False


class TestWebhookService:

    async def test_applies_person(self, log_repo):
        store = target_store()
        service = WebhookService(store, log_repo, row_check_delay=0)

        status_code, payload = await service.reconcile("rec-1", "enriched_leads", "true", "true", {"person": APOLLO_PERSON})

        assert status_code == 200
        assert payload == {"received": True, "processed": True}
        assert store.rows["rec-1"]["enrichment_status"] == "completed"
        assert store.rows["rec-1"]["email"] == "ada@acme.com"

    async def test_phone_flag_from_query(self, log_repo):
        store = target_store()
        service = WebhookService(store, log_repo, row_check_delay=0)

        await service.reconcile("rec-1", "enriched_leads", "true", "false", {"person": APOLLO_PERSON})

        assert "phone_numbers" not in store.rows["rec-1"]
        assert log_repo.entries[0]["details"]["phone_count"] == 0

    async def test_missing_query_params(self, log_repo):
        service = WebhookService(target_store(), log_repo, row_check_delay=0)
        status_code, payload = await service.reconcile("rec-1", None, None, None, {"person": APOLLO_PERSON})
        assert status_code == 400
        assert "error" in payload
        assert len(log_repo.entries) == 1

    async def test_unrecognized_payload(self, log_repo):
        store = target_store()
        service = WebhookService(store, log_repo, row_check_delay=0)

        status_code, payload = await service.reconcile("rec-1", "enriched_leads", None, None, {"status": "ok"})

        assert status_code == 200
        assert payload["processed"] is False
        assert payload["reason"]
        assert store.update_calls == []
        assert len(log_repo.entries) == 1

    async def test_absent_row_still_processed(self, log_repo):
        store = InMemoryRecordStore(TARGET_COLUMNS)
        service = WebhookService(store, log_repo, row_check_attempts=3, row_check_delay=0)

        status_code, payload = await service.reconcile("rec-1", "enriched_leads", None, None, {"people": [APOLLO_PERSON]})

        assert status_code == 200
        assert payload == {"received": True, "processed": True}
        assert store.exists_calls == 3
        assert len(log_repo.entries) == 1
        assert log_repo.entries[0]["details"]["row_check_found"] is False

    async def test_update_failure_is_500(self, log_repo):
        store = InMemoryRecordStore({"id"}, rows={"rec-1": {"id": "rec-1"}})
        service = WebhookService(store, log_repo, row_check_delay=0)

        status_code, payload = await service.reconcile("rec-1", "enriched_leads", None, None, {"person": APOLLO_PERSON})

        assert status_code == 500
        assert "No valid columns remain" in payload["error"]
        assert len(log_repo.entries) == 1

    async def test_service_table_rejected(self, log_repo):
        store = target_store()
        service = WebhookService(store, log_repo, row_check_delay=0)

        status_code, payload = await service.reconcile(
            "lead-1", "people_search_leads", None, None, {"person": APOLLO_PERSON},
        )

        assert status_code == 400
        assert "cannot be an enrichment target" in payload["error"]
        assert store.exists_calls == 0
        assert store.update_calls == []
        assert [entry["status"] for entry in log_repo.entries] == ["webhook_rejected"]

    async def test_row_check_error_still_updates(self, log_repo):
        class UnreadableStore(InMemoryRecordStore):
            async def exists(self, table_name, record_id):
                raise PersistenceError("Row check on 'enriched_leads' failed: connection reset")

        store = UnreadableStore(TARGET_COLUMNS, rows={"rec-1": {"id": "rec-1"}})
        service = WebhookService(store, log_repo, row_check_attempts=2, row_check_delay=0)

        status_code, payload = await service.reconcile("rec-1", "enriched_leads", None, None, {"person": APOLLO_PERSON})

        assert status_code == 200
        assert payload == {"received": True, "processed": True}
        assert len(store.update_calls) == 1
        assert store.rows["rec-1"]["email"] == "ada@acme.com"
        assert log_repo.entries[0]["details"]["row_check_found"] is False

    async def test_crash_rolls_back_before_logging(self, log_repo):
        class ExplodingStore(InMemoryRecordStore):
            async def update(self, table_name, record_id, values):
                raise RuntimeError("kaboom")

        service = WebhookService(ExplodingStore(TARGET_COLUMNS), log_repo, row_check_delay=0)

        status_code, payload = await service.reconcile("rec-1", "enriched_leads", None, None, {"person": APOLLO_PERSON})

        assert status_code == 500
        assert payload == {"error": "kaboom"}
        assert log_repo.rollbacks == 1
        assert log_repo.entries[-1]["status"] == "error"

    async def test_error_after_failed_flush_is_still_logged(self, db_session, new_session):
        async with new_session() as session:
            await LeadRepository(session).upsert_many([{"id": "dup", "batch_run_id": "b1"}])

        service = WebhookService(FlushFailingStore(db_session), EnrichmentLogRepository(db_session), row_check_delay=0)
        status_code, _ = await service.reconcile("rec-1", "enriched_leads", None, None, {"person": APOLLO_PERSON})

        assert status_code == 500
        logs = await fetch_logs(new_session, "rec-1")
        assert [log.status for log in logs] == ["error"]
