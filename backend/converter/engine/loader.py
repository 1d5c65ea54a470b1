"""Codec engine lifecycle: load, initialize, warm up, hand out, tear down."""
import asyncio
import importlib
import inspect
import logging
from typing import Any, Callable, Optional

from converter.config import ENGINE_PATH
from converter.errors import ConversionError, EngineLoadError

logger = logging.getLogger("converter.engine")


def resolve_factory(path: str) -> Callable[[], Any]:
    """Import ``package.module:attr`` and return the attribute."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise EngineLoadError(f"Engine path must look like 'module:factory', got {path!r}")
    module = importlib.import_module(module_name)
    target: Any = module
    for part in attr.split("."):
        target = getattr(target, part)
    return target


async def _call_hook(hook: Callable[[], Any]) -> None:
    if inspect.iscoroutinefunction(hook):
        await hook()
    else:
        await asyncio.to_thread(hook)


class EngineLoader:
    """Owns the engine handle. ``ready`` is derived, never stored."""

    def __init__(self, factory: Optional[Callable[[], Any]] = None, path: Optional[str] = None):
        self._factory = factory
        self._path = path or ENGINE_PATH
        self._engine: Any = None
        self._error: Optional[str] = None
        self._loading = False
        self._load_task: Optional[asyncio.Future] = None

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def engine(self) -> Any:
        return self._engine

    @property
    def ready(self) -> bool:
        return not self._loading and self._error is None and self._engine is not None

    async def load(self, path: Optional[str] = None) -> Any:
        """Load the engine. Concurrent callers share the outstanding load instead of starting another."""
        if self._load_task is not None and not self._load_task.done():
            logger.debug("Engine load already in progress; joining it")
            return await asyncio.shield(self._load_task)
        if self.ready:
            return self._engine
        self._load_task = asyncio.ensure_future(self._load(path))
        return await self._load_task

    async def _load(self, path: Optional[str]) -> Any:
        self._loading = True
        self._error = None
        self._engine = None
        try:
            try:
                engine = await self._instantiate(path)
                initialize = getattr(engine, "initialize", None)
                if callable(initialize):
                    await _call_hook(initialize)
            except Exception as e:
                self._error = f"Failed to load codec engine: {e}"
                logger.exception("Codec engine load failed")
                raise EngineLoadError(self._error) from e

            warmup = getattr(engine, "warmup", None)
            if callable(warmup):
                try:
                    await _call_hook(warmup)
                except Exception as e:
                    logger.warning("Codec engine warm-up failed (continuing): %s", e)

            self._engine = engine
            logger.info("Codec engine ready: %s", type(engine).__name__)
            return engine
        finally:
            self._loading = False

    async def _instantiate(self, path: Optional[str]) -> Any:
        if path:
            factory = resolve_factory(path)
        elif self._factory is not None:
            factory = self._factory
        else:
            factory = resolve_factory(self._path)
        engine = factory()
        if inspect.isawaitable(engine):
            engine = await engine
        return engine

    def acquire(self) -> Any:
        """Return the engine handle, or fail with a not-ready error."""
        if not self.ready:
            raise ConversionError.not_ready()
        return self._engine

    async def release(self) -> None:
        """Tear the engine down. Cleanup failures are logged, never raised."""
        engine = self._engine
        self._engine = None
        self._error = None
        if engine is None:
            return
        cleanup = getattr(engine, "cleanup", None)
        if callable(cleanup):
            try:
                await _call_hook(cleanup)
            except Exception as e:
                logger.warning("Codec engine cleanup failed: %s", e)
        logger.info("Codec engine released")

    async def __aenter__(self) -> "EngineLoader":
        await self.load()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()
