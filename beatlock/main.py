"""FastAPI application - serves the beat sync API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beatlock.api.upload import router as upload_router
from beatlock.api.websocket import router as ws_router

app = FastAPI(title="Beatlock", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(upload_router, prefix="/api")
app.include_router(ws_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


def run():
    import uvicorn
    from beatlock.config import settings
    uvicorn.run(
        "beatlock.main:app",
        host=settings.host,
        port=settings.port,
    )
