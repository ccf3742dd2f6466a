"""Deterministic offline providers, used when no API key is configured."""

import hashlib
import logging
import re

import numpy as np

from clients.base import Embedder, TextGenerator

logger = logging.getLogger(__name__)

STUB_DIMENSION = 256
# Hashed bag-of-words vectors score lower than model embeddings; a one-word
# query against a four-word product name lands at 0.5.
STUB_SIMILARITY_THRESHOLD = 0.3

_TOKEN = re.compile(r"[a-z0-9]+")


class StubEmbedder(Embedder):
    """Hashed bag-of-words embedding.

    Each lowercase token is hashed into one of ``dim`` buckets and the vector
    is L2-normalised, so texts sharing words score a positive cosine
    similarity. md5 keeps bucket assignment stable across processes.
    """

    def __init__(self, dim: int = STUB_DIMENSION):
        self.dim = dim

    async def embed(self, text: str) -> list[float]:
        vec = np.zeros(self.dim, dtype=np.float64)
        for token in _TOKEN.findall((text or "").lower()):
            h = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dim
            vec[h] += 1.0
        nrm = np.linalg.norm(vec)
        if nrm > 0:
            vec /= nrm
        return vec.tolist()


class StubTextGenerator(TextGenerator):
    is_mock = True

    async def generate(self, prompt: str, system_prompt: str | None = None) -> str:
        logger.info("Mock text generation for prompt: %s", prompt[:100])
        return f"Mock response to: {prompt[:50]}..."
