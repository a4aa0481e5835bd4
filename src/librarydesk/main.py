import logging
from fastapi import FastAPI
from librarydesk.config import settings
from librarydesk.db import init_db
from librarydesk.api.router import router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title=settings.APP_NAME)
app.include_router(router)

@app.on_event("startup")
async def on_startup():
    await init_db()
    logging.getLogger(__name__).info("%s iniciado (env=%s)", settings.APP_NAME, settings.ENV)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("librarydesk.main:app", host="0.0.0.0", port=settings.PORT)
