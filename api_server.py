#!/usr/bin/env python3
"""
APK Search Bot server - Telegram webhook endpoint, health check and a small
JSON API over the catalog client. Falls back to long polling when no webhook
URL is configured.
"""

import sys
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from telegram import Update
from telegram.ext import Application

from apkpure_client import APKPureClient, RetrievalError
from bot_config import BotConfig, ConfigError
from bot_handlers import CommandDispatcher, build_application

SERVICE_NAME = "APK Search Bot"
SERVICE_VERSION = "1.0.0"
WEBHOOK_PATH = "/api/bot"


def create_client(config: BotConfig) -> APKPureClient:
    return APKPureClient(
        base_url=config.base_url,
        search_limit=config.search_limit,
        page_timeout=config.page_timeout,
        binary_timeout=config.binary_timeout,
        debug=config.debug,
    )


def create_app(
    config: Optional[BotConfig] = None,
    application: Optional[Application] = None,
    client: Optional[APKPureClient] = None,
) -> FastAPI:
    config = config or BotConfig.from_env()
    client = client or create_client(config)
    if application is None:
        application = build_application(config, CommandDispatcher(client, config), webhook=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await application.initialize()
        if config.webhook_url:
            await application.bot.set_webhook(config.webhook_url, allowed_updates=Update.ALL_TYPES)
            print(f"[Server] Webhook set to: {config.webhook_url}", file=sys.stderr)
        await application.start()

        print(f"[Server] {SERVICE_NAME} started ({config.environment})", file=sys.stderr)
        yield

        await application.stop()
        await application.shutdown()
        await client.aclose()
        print("[Server] Stopped", file=sys.stderr)

    app = FastAPI(title=SERVICE_NAME, version=SERVICE_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def status_payload() -> Dict[str, Any]:
        return {
            "status": "Bot is running!",
            "service": SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": config.environment,
        }

    @app.get("/")
    async def root() -> Dict[str, Any]:
        return status_payload()

    @app.get(WEBHOOK_PATH)
    async def webhook_status() -> Dict[str, Any]:
        return status_payload()

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        return {"status": "healthy"}

    @app.post(WEBHOOK_PATH)
    async def webhook(request: Request) -> PlainTextResponse:
        # Telegram redelivers on non-2xx, so failures are logged and acknowledged
        try:
            payload = await request.json()
            update = Update.de_json(payload, application.bot)
            await application.update_queue.put(update)
        except Exception as e:
            print(f"[Webhook Error] {type(e).__name__}: {e}", file=sys.stderr)
        return PlainTextResponse("OK")

    @app.get("/search/{query}")
    async def search_apps(query: str, limit: Optional[int] = Query(None, ge=1)) -> Dict[str, Any]:
        """Search for apps on APKPure"""
        try:
            results = await client.search(query, limit=limit)
        except RetrievalError as e:
            print(f"[Search Error] {query}: {e}", file=sys.stderr)
            raise HTTPException(status_code=502, detail=str(e))

        return {
            "success": True,
            "query": query,
            "count": len(results),
            "results": [asdict(result) for result in results],
            "source": "apkpure",
        }

    @app.get("/info/{package_name}")
    async def get_app_info(package_name: str) -> Dict[str, Any]:
        try:
            details = await client.fetch_details(package_name)
        except RetrievalError as e:
            print(f"[Info Error] {package_name}: {e}", file=sys.stderr)
            raise HTTPException(status_code=502, detail=str(e))

        return {
            "package_name": package_name,
            **asdict(details),
            "found": details.found,
            "source": "apkpure",
        }

    return app


def run_polling(config: BotConfig):
    client = create_client(config)

    async def close_client(application: Application):
        await client.aclose()

    application = build_application(config, CommandDispatcher(client, config), post_shutdown=close_client)
    print("[Server] No webhook URL, running in polling mode", file=sys.stderr)
    application.run_polling(drop_pending_updates=True, allowed_updates=Update.ALL_TYPES)


def main():
    try:
        config = BotConfig.from_env()
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)

    print(f"🤖 {SERVICE_NAME} starting...", file=sys.stderr)

    if config.webhook_url:
        uvicorn.run(create_app(config), host="0.0.0.0", port=config.port, log_level="info", workers=1)
    else:
        run_polling(config)


if __name__ == "__main__":
    main()
