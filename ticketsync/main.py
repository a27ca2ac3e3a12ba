from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from ticketsync.api.tickets import router as tickets_router
from ticketsync.logging import configure_logging

configure_logging()

app = FastAPI(title="ticketsync")
app.include_router(tickets_router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
