from qdrant_client import QdrantClient, models
import logging

from .config import Settings
from .errors import VectorStoreError

logger = logging.getLogger(__name__)


def create_qdrant_client(settings: Settings) -> QdrantClient:
    logger.info(f"Connecting to Qdrant at: {settings.qdrant_url}")
    return QdrantClient(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key,
        timeout=settings.qdrant_timeout_seconds,
    )


def ensure_collection_exists(client: QdrantClient, collection_name: str, vector_size: int = 1536):
    """Checks if a collection exists in Qdrant and creates it if it doesn't.

    An existing collection is used as-is; its vector size and distance are not
    compared against ``vector_size``.
    """
    try:
        exists = client.collection_exists(collection_name=collection_name)
    except Exception as e:
        logger.error(
            f"Failed to list Qdrant collections: {e}. Qdrant may not be running or reachable."
        )
        raise VectorStoreError("Failed to connect to Qdrant", e)

    if exists:
        logger.info(f"Using existing Qdrant collection: {collection_name}")
        return

    logger.info(f"Collection '{collection_name}' not found. Creating it.")
    try:
        client.create_collection(
            collection_name=collection_name,
            vectors_config=models.VectorParams(size=vector_size, distance=models.Distance.COSINE),
        )
    except Exception as e:
        logger.error(f"Failed to create Qdrant collection '{collection_name}': {e}")
        raise VectorStoreError(f"Failed to create collection '{collection_name}'", e)
    logger.info(f"Collection '{collection_name}' created successfully.")
