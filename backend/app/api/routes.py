from fastapi import APIRouter

from app.api.chats import router as chats_router

router = APIRouter()

router.include_router(chats_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Edify realtime API"}
