from fastapi import FastAPI

from .routes import router

app = FastAPI(title="Emby Wrapped", description="Year in review for Emby users")

# Include routes
app.include_router(router)
