"""Typed application keys."""

from __future__ import annotations

from aiohttp import web

from smartsan.service import SmartSanService

SERVICE_KEY = web.AppKey("smartsan_service", SmartSanService)
