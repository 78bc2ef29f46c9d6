"""
learnflow - ASGI Entrypoints

Factories for uvicorn:

    uvicorn api.main:lms_app --factory --port 3000
    uvicorn api.main:reco_app --factory --port 3000

Each factory initializes observability for its service, wires the services
from the process configuration and creates missing tables on startup.
"""
from fastapi import FastAPI

from api.lms import create_lms_app
from api.reco import create_reco_app
from config import get_config
from core.bootstrap import build_lms_services, build_reco_services
from observability import setup_observability


def lms_app() -> FastAPI:
    config = get_config()
    setup_observability(service_name="lms", config=config.observability)
    return create_lms_app(build_lms_services(config), create_tables=True)


def reco_app() -> FastAPI:
    config = get_config()
    setup_observability(service_name="reco", config=config.observability)
    return create_reco_app(build_reco_services(config), create_tables=True)
