from __future__ import annotations

import json
from datetime import timezone
from typing import Sequence

from pydantic import TypeAdapter
from sqlalchemy import desc, select

from backend.app.models.graph import InstrumentPreset, StudioGraph
from backend.app.models.studio import StudioDocument
from backend.app.storage.db import StudioRecord

_PRESETS_ADAPTER = TypeAdapter(list[InstrumentPreset])


class StudioRepository:
    def __init__(self, db_session_factory):
        self._db_session_factory = db_session_factory

    def create(self, document: StudioDocument) -> StudioDocument:
        with self._db_session_factory() as db:
            record = StudioRecord(
                id=document.id,
                name=document.name,
                description=document.description,
                graph_json=document.graph.model_dump_json(),
                presets_json=self._dump_presets(document.presets),
                created_at=document.created_at,
                updated_at=document.updated_at,
            )
            db.add(record)
        return document

    def get(self, studio_id: str) -> StudioDocument | None:
        with self._db_session_factory() as db:
            record = db.get(StudioRecord, studio_id)
            if not record:
                return None
            return self._to_document(record)

    def list(self) -> Sequence[StudioDocument]:
        with self._db_session_factory() as db:
            stmt = select(StudioRecord).order_by(desc(StudioRecord.updated_at))
            return [self._to_document(record) for record in db.scalars(stmt).all()]

    def update(self, studio_id: str, document: StudioDocument) -> StudioDocument | None:
        with self._db_session_factory() as db:
            record = db.get(StudioRecord, studio_id)
            if not record:
                return None

            record.name = document.name
            record.description = document.description
            record.graph_json = document.graph.model_dump_json()
            record.presets_json = self._dump_presets(document.presets)
            record.updated_at = document.updated_at
            db.add(record)

            return self._to_document(record)

    def delete(self, studio_id: str) -> bool:
        with self._db_session_factory() as db:
            record = db.get(StudioRecord, studio_id)
            if not record:
                return False
            db.delete(record)
        return True

    @staticmethod
    def _dump_presets(presets: list[InstrumentPreset]) -> str:
        return _PRESETS_ADAPTER.dump_json(presets).decode("utf-8")

    @staticmethod
    def _to_document(record: StudioRecord) -> StudioDocument:
        created_at = record.created_at
        updated_at = record.updated_at

        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)

        return StudioDocument(
            id=record.id,
            name=record.name,
            description=record.description,
            graph=StudioGraph.model_validate(json.loads(record.graph_json)),
            presets=_PRESETS_ADAPTER.validate_python(json.loads(record.presets_json or "[]")),
            created_at=created_at,
            updated_at=updated_at,
        )
