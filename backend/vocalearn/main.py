import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .controller import ModeController
from .services import TutorServices
from .sessions import SessionRegistry
from .settings import settings
from .routers import practice
from .routers import relay

VERSION = "2.0.0"


def create_app(services: Optional[TutorServices] = None) -> FastAPI:
	@asynccontextmanager
	async def lifespan(app: FastAPI):
		logging.basicConfig(
			level=settings.log_level.upper(),
			format="%(asctime)s %(levelname)s %(name)s: %(message)s",
		)
		own_services = services is None
		app.state.services = services or TutorServices.from_settings(settings)
		app.state.registry = SessionRegistry()
		app.state.controller = ModeController(app.state.services, app.state.registry)
		logging.getLogger(__name__).info("Tutor services ready: %s", app.state.services.status())
		try:
			yield
		finally:
			if own_services:
				await app.state.services.aclose()

	app = FastAPI(title="VocaLearn Tutor API", version=VERSION, lifespan=lifespan)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=settings.cors_origins,
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	app.include_router(practice.router)
	app.include_router(relay.router)

	@app.get("/")
	def banner():
		return {
			"service": "VocaLearn Backend",
			"version": VERSION,
			"status": "running",
			"endpoints": ["/languages", "/scenarios", "/api/practice/start", "/ws"],
		}

	@app.get("/info")
	def info(request: Request):
		return {"status": "ok", **request.app.state.services.status()}

	return app


app = create_app()
