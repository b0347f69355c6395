# Models package - tables owned by the prospecting pipeline
from prospector.models.lead import LeadRecord
from prospector.models.progress import SearchProgress
from prospector.models.enrichment_log import EnrichmentLog, LogStatus

# Tables the enrichment endpoints must never write to
SERVICE_TABLES = frozenset({
    LeadRecord.__tablename__,
    SearchProgress.__tablename__,
    EnrichmentLog.__tablename__,
})


def is_service_table(table_name: str) -> bool:
    """True for service-owned tables, schema-qualified or not, any case."""
    name = (table_name or "").strip().strip('"').lower()
    return name.rsplit(".", 1)[-1].strip('"') in SERVICE_TABLES
