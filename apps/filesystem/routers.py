# filesystem/routers.py
from fastapi import APIRouter
from utils.response_wrapper import response_wrapper
from .views import apply_transaction, commit, delete_file, list_directory, stat_file

router = APIRouter()

router.get("/api/v1/fs/stat")(response_wrapper(stat_file))
router.get("/api/v1/fs/list")(response_wrapper(list_directory))
router.post("/api/v1/fs/commit")(response_wrapper(commit))
router.post("/api/v1/fs/transact")(response_wrapper(apply_transaction))
router.post("/api/v1/fs/delete")(response_wrapper(delete_file))
