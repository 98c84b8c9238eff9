# file: main.py

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assistmate.config import settings
from assistmate.controllers.auth import router as auth_router
from assistmate.controllers.chats import router as chats_router
from assistmate.controllers.notifications import router as notifications_router
from assistmate.controllers.requests import router as requests_router
from assistmate.controllers.users import router as users_router
from assistmate.database.connection import init_db
from assistmate.services.firebase_auth import init_firebase
from assistmate.utils.errors import register_exception_handlers

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="AssistMate API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(users_router, prefix="/users", tags=["users"])
app.include_router(requests_router, prefix="/requests", tags=["requests"])
app.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
app.include_router(chats_router, tags=["chats"])


@app.get("/")
async def root():
    return {"message": "AssistMate API is running"}


@app.on_event("startup")
async def startup_event():
    init_firebase()
    await init_db()
    logger.info("AssistMate API started in %s mode", settings.environment)
