"""Main FastAPI application."""

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from blocks import __version__
from blocks.api.endpoints import router
from blocks.utils.logging import setup_logging

setup_logging()

# Create FastAPI application
app = FastAPI(
    title="Blocks",
    description=(
        "A conversational AI application builder that streams assistant replies "
        "and generates HTML pages and data analysis reports through tools."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    tags_metadata=[
        {
            "name": "Chat",
            "description": "Stream an assistant turn, including tool calls, as server-sent events.",
        },
        {
            "name": "Conversations",
            "description": "Create, list, rename and delete conversations and read their messages.",
        },
        {
            "name": "Pages",
            "description": "Pages generated by the create_page tool.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

cors_origins = os.getenv("BLOCKS_CORS_ORIGINS", "http://localhost:5173").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in cors_origins if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("blocks.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
