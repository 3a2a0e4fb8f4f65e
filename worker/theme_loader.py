"""Theme catalog maintenance entry point.

Embeds the themes of a JSON file and upserts them into the theme collection.
The file holds a list of objects with ``code``, ``label`` and optionally
``description`` and ``embedding`` (entries with an embedding are stored as-is;
themes already stored with the same label and description keep their vector).

Usage:
    python -m worker.theme_loader themes.json
"""

import argparse
import asyncio
import json
from pathlib import Path

from pydantic import BaseModel

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.vector.VectorStoreInterface import VectorStoreInterface
from shared.clients.vector.VectorStoreManager import VectorStoreManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.theme import ThemeCatalogEntry


class ThemeDefinition(BaseModel):
    code: str
    label: str
    description: str | None = None
    embedding: list[float] | None = None

    def embedding_text(self) -> str:
        return f"{self.label}: {self.description}" if self.description else self.label


def read_theme_file(path: Path) -> list[ThemeDefinition]:
    """Parse and validate a theme definition file.

    Raises:
        ValueError: If the file is not a list of theme objects or codes repeat.
    """
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a JSON list of themes.")
    definitions = [ThemeDefinition(**item) for item in raw]
    codes = [definition.code for definition in definitions]
    if len(codes) != len(set(codes)):
        raise ValueError(f"{path} contains duplicate theme codes.")
    return definitions


async def load_themes(
    definitions: list[ThemeDefinition],
    embed_client: EmbedClientInterface,
    vector_store: VectorStoreInterface,
) -> int:
    """Upsert theme definitions, embedding only those without a usable vector.

    A definition uses, in order: the embedding given in the file, the vector
    already stored for its code when label and description are unchanged, or
    a freshly computed embedding.

    Returns:
        int: The number of stored themes.
    """
    stored = {theme.code: theme for theme in await vector_store.do_fetch_themes()}
    vectors: dict[str, list[float]] = {}
    for definition in definitions:
        current = stored.get(definition.code)
        if definition.embedding is not None:
            vectors[definition.code] = definition.embedding
        elif current is not None and (current.label, current.description) == (definition.label, definition.description):
            vectors[definition.code] = current.embedding

    missing = [definition for definition in definitions if definition.code not in vectors]
    if missing:
        computed = await embed_client.do_embed([definition.embedding_text() for definition in missing])
        vectors.update((definition.code, vector) for definition, vector in zip(missing, computed))

    entries = [
        ThemeCatalogEntry(
            code=definition.code,
            label=definition.label,
            description=definition.description,
            embedding=vectors[definition.code],
        )
        for definition in definitions
    ]
    await vector_store.do_upsert_themes(entries)
    return len(entries)


async def main(path: Path) -> None:
    """Load a theme file into the configured vector store."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    embed_client = EmbedClientManager(helper_config=config).get_client()
    vector_store = VectorStoreManager(helper_config=config).get_client()

    try:
        definitions = read_theme_file(path)
        await embed_client.boot()
        await vector_store.boot()
        await vector_store.do_healthcheck()
        await vector_store.do_ensure_collections(embed_client.get_dimension())
        stored = await load_themes(definitions, embed_client, vector_store)
        logger.info("Loaded %d themes from %s.", stored, path)
    finally:
        await embed_client.close()
        await vector_store.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Embed and store theme catalog entries.")
    parser.add_argument("path", type=Path, help="JSON file with theme definitions")
    args = parser.parse_args()
    asyncio.run(main(args.path))
