from shared.helper.HelperConfig import HelperConfig
from shared.clients.vector.VectorStoreInterface import VectorStoreInterface


class VectorStoreManager:
    """
    Instantiates the vector store selected by VECTOR_ENGINE.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the vector engine from ENV configuration.

        Returns:
            str: The capitalised engine name, e.g. "Qdrant".
        """
        engine = self.helper_config.get_string_val("VECTOR_ENGINE", default="qdrant")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> VectorStoreInterface:
        """
        Imports shared.clients.vector.<engine>.VectorStore<Engine> and instantiates it.

        Returns:
            VectorStoreInterface: The configured vector store.

        Raises:
            ValueError: If the engine is not supported.
        """
        engine = self._get_engine_from_env()
        class_name = f"VectorStore{engine}"
        try:
            module = __import__(
                f"shared.clients.vector.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported vector engine specified: '{engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated vector store for engine: %s", engine)
        return client

    def get_client(self) -> VectorStoreInterface:
        """
        Returns the instantiated vector store.

        Returns:
            VectorStoreInterface: The vector store instance.
        """
        return self.client
