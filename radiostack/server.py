"""RadioStack admin server.

Exposes:
  GET  /health     : liveness check
  /admin/...       : admin API (see :mod:`radiostack.admin_api`)

Start with::

    radiostack-server
    # or
    uvicorn radiostack.server:app --host 0.0.0.0 --port 5200
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI

from radiostack import __version__
from radiostack.admin_api import router as admin_router

logger = logging.getLogger(__name__)

app = FastAPI(title="RadioStack", version=__version__)
app.include_router(admin_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "radiostack", "version": __version__}


def main():
    import uvicorn
    host = os.environ.get("RADIOSTACK_HOST", "0.0.0.0")
    port = int(os.environ.get("RADIOSTACK_PORT", "5200"))
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting RadioStack server on %s:%d", host, port)
    uvicorn.run("radiostack.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
