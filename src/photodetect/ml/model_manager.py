"""Model manager: download, load, cache, and evict ONNX models.

Handles locating the detection model (a local file or a Hugging Face Hub
download), creating and caching ONNX InferenceSessions per execution mode,
and TTL-based eviction.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import onnxruntime
from huggingface_hub import hf_hub_download
from onnxruntime import ExecutionMode, InferenceSession, SessionOptions

if TYPE_CHECKING:
    from photodetect.config import Settings

logger = logging.getLogger(__name__)

ACCELERATED_PROVIDER = "CUDAExecutionProvider"
CPU_PROVIDER = "CPUExecutionProvider"


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is available locally and return its file path."""
        ...

    def get_session(self, model_name: str, accelerated: bool = False) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def acceleration_available(self) -> bool:
        """Return whether the accelerated execution provider is installed."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def unload_idle_models(self) -> None:
        """Unload models that have exceeded their TTL."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _CachedSession:
    session: InferenceSession
    last_used: float


class OnnxModelManager:
    """Locates, loads, caches, and evicts ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._sessions: dict[tuple[str, bool], _CachedSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, downloading it from the Hub if needed.

        Raises:
            FileNotFoundError: If a configured ``model_path`` does not exist.
            RuntimeError: If neither ``model_path`` nor ``model_repo_id`` is set.
        """
        if self._settings.model_path is not None:
            path = Path(self._settings.model_path)
            if not path.is_file():
                raise FileNotFoundError(f"Model file not found: {path}")
            return path

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise RuntimeError("No model source configured: set PHOTODETECT_MODEL_PATH or PHOTODETECT_MODEL_REPO_ID")

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=f"{model_name}.onnx",
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_session(self, model_name: str, accelerated: bool = False) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        key = (model_name, accelerated)
        with self._lock:
            cached = self._sessions.get(key)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.session

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._build_providers(accelerated),
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(key)
            if existing is not None:
                existing.last_used = time.monotonic()
                return existing.session
            self._sessions[key] = _CachedSession(
                session=session,
                last_used=time.monotonic(),
            )
            logger.info("Loaded session for %s (accelerated=%s)", model_name, accelerated)
            return session

    def acceleration_available(self) -> bool:
        """Return whether ONNX Runtime was built with the accelerated provider."""
        return ACCELERATED_PROVIDER in onnxruntime.get_available_providers()

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return sorted({name for name, _ in self._sessions})

    def unload_idle_models(self) -> None:
        """Remove sessions that have exceeded the configured TTL."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [key for key, cached in self._sessions.items() if (now - cached.last_used) > ttl]
            for key in expired:
                del self._sessions[key]
                logger.info("Evicted idle session for %s (accelerated=%s)", *key)

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self, accelerated: bool) -> list[str | tuple[str, dict[str, object]]]:
        if accelerated:
            return [
                (
                    ACCELERATED_PROVIDER,
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                CPU_PROVIDER,
            ]
        return [CPU_PROVIDER]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True
        return opts
