from fastapi import APIRouter

from threadbot.api.bot_config import router as bot_config_router
from threadbot.api.cron import router as cron_router
from threadbot.api.jobs import router as jobs_router
from threadbot.api.prompts import router as prompts_router
from threadbot.api.telegram import router as telegram_router
from threadbot.api.users import router as users_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(telegram_router, prefix="/api", tags=["telegram"])
api_router.include_router(cron_router, prefix="/api", tags=["cron"])
api_router.include_router(bot_config_router, prefix="/api", tags=["bot-config"])
api_router.include_router(prompts_router, prefix="/api", tags=["prompts"])
api_router.include_router(users_router, prefix="/api", tags=["users"])
api_router.include_router(jobs_router, prefix="/api", tags=["jobs"])
