from fastapi import FastAPI
from tortoise.contrib.fastapi import RegisterTortoise

from config.settings import DATABASE_URL

MODELS = ["apps.filesystem.models"]


def db_config(db_url: str) -> dict:
    return {
        "connections": {"default": db_url},
        "apps": {
            "models": {
                "models": MODELS,
                "default_connection": "default",
            },
        },
        "use_tz": True,
        "timezone": "UTC",
    }


TORTOISE_ORM = db_config(DATABASE_URL)


def register_db(app: FastAPI, db_url: str | None = None, generate_schemas: bool = True) -> RegisterTortoise:
    """ORM setup for the app lifespan, used as `async with register_db(app):`.

    RegisterTortoise keeps the connections visible to request handlers, which
    run outside the lifespan task.
    """
    config = TORTOISE_ORM if db_url is None else db_config(db_url)
    return RegisterTortoise(app, config=config, generate_schemas=generate_schemas)
