"""Construction and lifecycle of the pipeline object graph.

Every component receives its collaborators explicitly; this is the single
place that wires them from configuration. Used by the worker runner and the
API lifespan.
"""

from services.chunking.TextChunker import TextChunker
from services.embedding_worker.EmbeddingWorker import EmbeddingWorker
from services.embedding_worker.WorkerPool import WorkerPool
from services.query.QueryService import QueryService
from services.theme_tagging.ThemeCatalog import ThemeCatalog
from services.theme_tagging.ThemeTagger import ThemeTagger
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.vector.VectorStoreManager import VectorStoreManager
from shared.db.JobQueue import JobQueue
from shared.db.ThemeLinkStore import ThemeLinkStore
from shared.db.database import Database
from shared.exceptions.pipeline_errors import CatalogUnavailableError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import ChunkerOptions, TaggerSettings, WorkerSettings


class PipelineContext:
    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self.helper_config = helper_config

        # settings
        self.worker_settings = WorkerSettings.from_config(helper_config)
        self.tagger_settings = TaggerSettings.from_config(helper_config)
        self.chunker_options = ChunkerOptions.from_config(helper_config)

        # clients and storage
        self.database = Database(helper_config)
        self.embed_client = EmbedClientManager(helper_config).get_client()
        self.vector_store = VectorStoreManager(helper_config).get_client()
        self.job_queue = JobQueue(self.database, helper_config, self.worker_settings)
        self.link_store = ThemeLinkStore(self.database, helper_config)

        # services
        self.catalog = ThemeCatalog(self.vector_store, helper_config)
        self.tagger = ThemeTagger(helper_config, self.vector_store, self.catalog, self.link_store, self.tagger_settings)
        self.chunker = TextChunker(self.chunker_options)
        self.worker = EmbeddingWorker(
            helper_config,
            self.job_queue,
            self.chunker,
            self.embed_client,
            self.vector_store,
            self.tagger,
            self.worker_settings,
        )
        self.pool = WorkerPool(helper_config, self.worker, self.job_queue, self.worker_settings)
        self.query_service = QueryService(
            helper_config,
            self.job_queue,
            self.vector_store,
            self.embed_client,
            self.link_store,
            self.catalog,
        )

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        """Create tables, boot and health-check the clients, prepare the collections.

        The embedding client is booted first because the collections are sized
        by its dimension.
        """
        self.database.create_all()

        await self.embed_client.boot()
        await self.embed_client.do_healthcheck()
        await self.vector_store.boot()
        await self.vector_store.do_healthcheck()
        await self.vector_store.do_ensure_collections(self.embed_client.get_dimension())

        try:
            await self.catalog.load()
        except CatalogUnavailableError as e:
            # jobs fail with catalog_unavailable until the catalog is loaded
            self.logging.error("Theme catalog not usable yet: %s", e)

    async def close(self) -> None:
        if self.pool.is_running():
            await self.pool.stop()
        await self.embed_client.close()
        await self.vector_store.close()
        self.database.dispose()
