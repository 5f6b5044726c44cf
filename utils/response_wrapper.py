import functools

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.responses import Response


def response_wrapper(view, message: str = "success"):
    """Wrap a view's return value as {"message": ..., "data": ...}.

    Responses returned by the view are passed through untouched. Pydantic
    models are encoded with their camelCase aliases.
    """

    @functools.wraps(view)
    async def wrapper(*args, **kwargs):
        result = await view(*args, **kwargs)
        if isinstance(result, Response):
            return result
        return JSONResponse({"message": message, "data": jsonable_encoder(result, by_alias=True)})

    return wrapper
