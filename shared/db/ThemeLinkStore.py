"""
Storage of entity ↔ theme links.
"""

from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from shared.db.database import Database
from shared.db.tables import EntityThemeLinkRecord
from shared.exceptions.pipeline_errors import StorageUnavailableError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.clock import utc_now
from shared.models.theme import EntityThemeLink


class ThemeLinkStore:
    def __init__(self, database: Database, helper_config: HelperConfig):
        self.database = database
        self.logging = helper_config.get_logger()

    def replace_links(self, entity_id: str, links: list[EntityThemeLink], now: datetime | None = None) -> None:
        """Replace all links of an entity in one transaction.

        Readers see either the old or the new set, never a mix. An empty list
        clears the entity's links.

        Raises:
            ValueError: If a link belongs to another entity or a theme appears twice.
            StorageUnavailableError: If the database cannot be written.
        """
        codes = [link.theme_code for link in links]
        if len(codes) != len(set(codes)):
            raise ValueError(f"Duplicate theme codes in links of '{entity_id}'.")
        for link in links:
            if link.entity_id != entity_id:
                raise ValueError(f"Link for '{link.entity_id}' passed while replacing links of '{entity_id}'.")

        now = now or utc_now()
        with self.database.session() as session:
            try:
                session.execute(delete(EntityThemeLinkRecord).where(EntityThemeLinkRecord.entity_id == entity_id))
                session.add_all(
                    EntityThemeLinkRecord(
                        entity_id=entity_id,
                        theme_code=link.theme_code,
                        similarity=link.similarity,
                        chunk_index=link.chunk_index,
                        created_at=now,
                    )
                    for link in links
                )
                session.commit()
            except OperationalError as exc:
                session.rollback()
                raise StorageUnavailableError(f"Link store unavailable: {exc}") from exc
        self.logging.debug("Stored %d theme links for '%s'.", len(links), entity_id)

    def get_links_for_entity(self, entity_id: str) -> list[EntityThemeLink]:
        """Return the links of an entity, best first (ties by theme code). Empty if not tagged yet."""
        statement = (
            select(EntityThemeLinkRecord)
            .where(EntityThemeLinkRecord.entity_id == entity_id)
            .order_by(EntityThemeLinkRecord.similarity.desc(), EntityThemeLinkRecord.theme_code.asc())
        )
        with self.database.session() as session:
            return [self._to_link(record) for record in session.exec(statement).all()]

    def get_entities_for_theme(self, theme_code: str, threshold: float | None = None, top_n: int | None = None) -> list[EntityThemeLink]:
        """Return the links of a theme, best first (ties by entity id).

        Args:
            theme_code (str): The theme.
            threshold (float | None): Only links with similarity >= threshold.
            top_n (int | None): At most this many links.
        """
        statement = select(EntityThemeLinkRecord).where(EntityThemeLinkRecord.theme_code == theme_code)
        if threshold is not None:
            statement = statement.where(EntityThemeLinkRecord.similarity >= threshold)
        statement = statement.order_by(EntityThemeLinkRecord.similarity.desc(), EntityThemeLinkRecord.entity_id.asc())
        if top_n is not None:
            statement = statement.limit(top_n)
        with self.database.session() as session:
            return [self._to_link(record) for record in session.exec(statement).all()]

    @staticmethod
    def _to_link(record: EntityThemeLinkRecord) -> EntityThemeLink:
        return EntityThemeLink(
            entity_id=record.entity_id,
            theme_code=record.theme_code,
            similarity=record.similarity,
            chunk_index=record.chunk_index,
        )
