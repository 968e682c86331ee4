from fastapi import FastAPI

from dns_engine.api.errors import register_error_handlers
from dns_engine.api.routes.certificates import router as certificates_router
from dns_engine.api.routes.records import router as records_router
from dns_engine.api.routes.users import router as users_router

app = FastAPI(title="DNS Engine API")
register_error_handlers(app)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(users_router)
app.include_router(records_router)
app.include_router(certificates_router)
