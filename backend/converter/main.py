"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from converter import __version__
from converter.api.routes import router
from converter.config import CORS_ORIGINS, logger as config_logger
from converter.runtime import ConverterRuntime

logging.getLogger("uvicorn").setLevel(logging.INFO)


def create_app(runtime: Optional[ConverterRuntime] = None) -> FastAPI:
    runtime = runtime or ConverterRuntime()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.start()
        config_logger.info("Converter API started")
        yield
        config_logger.info("Converter API shutting down")
        await runtime.stop()

    app = FastAPI(
        title="Image Converter API",
        description="Convert images between formats with progress, cancellation and performance reports.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    import uvicorn
    from converter.config import HOST, PORT
    uvicorn.run("converter.main:app", host=HOST, port=PORT)


if __name__ == "__main__":
    main()
