"""EventStore: SQLite-backed history of ComplianceEvent processing records."""

import sqlalchemy as sa
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import create_async_engine

from core.config import DEFAULT_EVENT_STORE_URL
from events.models import ComplianceEvent, EventStatus

# ── Schema ───────────────────────────────────────────────────────────────────

_metadata = sa.MetaData()

_events = sa.Table(
    "compliance_events",
    _metadata,
    sa.Column("event_id",     sa.String,  primary_key=True),
    sa.Column("event_type",   sa.String,  nullable=False, index=True),
    sa.Column("tenant_id",    sa.String,  nullable=False, index=True),
    sa.Column("status",       sa.String,  nullable=False),
    sa.Column("triggered_at", sa.String,  nullable=False),   # ISO-8601, sorts lexically
    sa.Column("state_json",   sa.Text,    nullable=False),   # full Pydantic JSON
)


# ── Store ────────────────────────────────────────────────────────────────────

class EventStore:
    """Persist and query ComplianceEvent records."""

    def __init__(self, db_url: str = DEFAULT_EVENT_STORE_URL):
        self._engine = create_async_engine(db_url, echo=False)

    async def init(self) -> None:
        """Create tables if they don't exist. Call once at startup."""
        async with self._engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)

    async def save(self, event: ComplianceEvent) -> None:
        """Insert or update an event record (upsert)."""
        row = {
            "event_id":     event.event_id,
            "event_type":   event.event_type,
            "tenant_id":    event.tenant_id,
            "status":       event.status.value,
            "triggered_at": event.triggered_at.isoformat(),
            "state_json":   event.model_dump_json(),
        }
        async with self._engine.begin() as conn:
            await conn.execute(
                sqlite_insert(_events)
                .values(**row)
                .on_conflict_do_update(
                    index_elements=["event_id"],
                    set_={k: row[k] for k in ("status", "state_json")},
                )
            )

    async def get(self, event_id: str) -> ComplianceEvent | None:
        """Return the stored event, or None when the id is unknown."""
        async with self._engine.connect() as conn:
            row = (await conn.execute(
                sa.select(_events.c.state_json).where(_events.c.event_id == event_id)
            )).fetchone()
        return ComplianceEvent.model_validate_json(row.state_json) if row else None

    async def query(
        self,
        tenant_id: str | None = None,
        event_type: str | None = None,
        status: EventStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ComplianceEvent], int | None]:
        """Return one page of events, newest first, and the next offset (None at the end)."""
        query = sa.select(_events.c.state_json)
        if tenant_id:
            query = query.where(_events.c.tenant_id == tenant_id)
        if event_type:
            query = query.where(_events.c.event_type == event_type)
        if status:
            query = query.where(_events.c.status == status.value)
        # one extra row tells us whether another page exists
        query = (query.order_by(_events.c.triggered_at.desc(), _events.c.event_id)
                 .limit(limit + 1).offset(offset))

        async with self._engine.connect() as conn:
            rows = (await conn.execute(query)).fetchall()
        events = [ComplianceEvent.model_validate_json(r.state_json) for r in rows[:limit]]
        next_offset = offset + limit if len(rows) > limit else None
        return events, next_offset

    async def close(self) -> None:
        await self._engine.dispose()
