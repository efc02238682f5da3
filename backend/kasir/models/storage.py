from __future__ import annotations

from ..extensions import db


class KvEntry(db.Model):
    """
    One key of the local durable key-value store.

    The value is an opaque serialized blob (JSON bytes for every collection the
    core writes). version_id is bumped on every update and checked by the
    UPDATE's WHERE clause, so a writer holding a stale version gets a
    StaleDataError instead of silently clobbering a newer value.
    """
    __tablename__ = "kv_entries"

    key = db.Column(db.String(128), primary_key=True)
    value = db.Column(db.LargeBinary, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<KvEntry key={self.key!r} version={self.version_id} bytes={len(self.value or b'')}>"
