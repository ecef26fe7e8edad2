import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from scheduling.core import config
from scheduling.database import engine, ensure_scheduling_schema
from scheduling.routes import availability_routes, booking_routes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.validate_runtime_config()
    try:
        await ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
    yield
    await engine.dispose()


app = FastAPI(title='Therapist Scheduling API', lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.get('/')
def root():
    return {'status': 'Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/bookings')


def run() -> None:
    uvicorn.run('scheduling.main:app', host=config.API_HOST, port=config.API_PORT)


if __name__ == '__main__':
    run()
