from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skillsync.api.routes import skills, sync

app = FastAPI(title="SkillSync API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(skills.router)
app.include_router(sync.router)
