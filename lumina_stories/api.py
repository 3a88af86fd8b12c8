from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from .errors import StorageError, StoryNotFoundError
from .models.story_state import SavedStory, StoryState
from .storage import LibraryStore


class SaveStoryRequest(BaseModel):
    state: StoryState
    id: Optional[str] = Field(default=None, description="Existing story id, if renaming")


class StorySummary(BaseModel):
    id: str
    title: str
    genre: str
    progress: int
    last_modified: float


class SaveStoryResponse(BaseModel):
    success: bool = True
    id: str


def create_app(store: LibraryStore) -> FastAPI:
    app = FastAPI(
        title="Lumina Stories Library",
        description="Saved stories for the Lumina Stories writer",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "library": str(store.library_dir)}

    @app.get("/api/stories", response_model=list[StorySummary])
    def list_stories():
        try:
            stories = store.list_stories()
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return [
            StorySummary(
                id=s.id,
                title=s.state.title,
                genre=s.state.genre,
                progress=s.progress,
                last_modified=s.last_modified,
            )
            for s in stories
        ]

    @app.get("/api/stories/{story_id}", response_model=SavedStory)
    def get_story(story_id: str):
        try:
            return store.get(story_id)
        except StoryNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.post("/api/stories", response_model=SaveStoryResponse)
    def save_story(request: SaveStoryRequest):
        """Upsert by title: saving an existing title updates that entry."""
        try:
            saved = store.save(request.state, story_id=request.id)
        except StorageError as e:
            logger.error(f"Save failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return SaveStoryResponse(id=saved.id)

    @app.delete("/api/stories/{story_id}")
    def delete_story(story_id: str):
        try:
            store.delete(story_id)
        except StoryNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"success": True}

    return app
