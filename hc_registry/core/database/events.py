import json
from typing import Any

from esdbclient import EventStoreDBClient, NewEvent, StreamState

from hc_registry.core.models.base import Event, EventTypes
from hc_registry.logging_config import logger
from hc_registry.settings import settings

EVENT_STREAM_NAME = "events"

_esdb_client: EventStoreDBClient | None = None


def get_esdb_client() -> EventStoreDBClient | None:
    """Return the EventStoreDB client, or None when event logging is not configured."""
    global _esdb_client

    if not settings.ESDB_CONNECTION_STRING:
        return None

    if _esdb_client is None:
        _esdb_client = EventStoreDBClient(uri=settings.ESDB_CONNECTION_STRING)

    return _esdb_client


def _to_new_event(event_type: EventTypes, event: Event) -> NewEvent:
    return NewEvent(
        type=event_type.value,
        data=event.model_dump_json().encode(),
        metadata=json.dumps({"entity_name": event.entity_name}).encode(),
    )


def create_event(
    entity_id: int,
    entity_name: str,
    event_type: EventTypes,
    esdb_client: EventStoreDBClient | None,
    attributes_before: dict[str, Any] | None = None,
    attributes_after: dict[str, Any] | None = None,
) -> None:
    """Append a single audit event describing a change to a registry entity."""
    if esdb_client is None:
        logger.debug(f"Event logging disabled, skipping {event_type} for {entity_name} {entity_id}")
        return

    event = Event(
        entity_id=entity_id,
        entity_name=entity_name,
        attributes_before=attributes_before,
        attributes_after=attributes_after,
    )
    esdb_client.append_to_stream(
        EVENT_STREAM_NAME,
        current_version=StreamState.ANY,
        events=[_to_new_event(event_type, event)],
    )

